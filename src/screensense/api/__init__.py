"""FastAPI endpoints for ScreenSense.

This sub-package provides REST API endpoints for:
- Semantic element search and screen history
- Index statistics and retention maintenance
- Screen watcher control and status
"""

from .app import create_app
from .routes import elements_router, index_router, watcher_router

__all__ = [
    "create_app",
    "elements_router",
    "index_router",
    "watcher_router",
]
