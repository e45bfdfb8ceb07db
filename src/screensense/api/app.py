"""FastAPI application factory for ScreenSense."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.config import config
from ..core.context import AppContext
from ..core.exceptions import ScreenSenseError, ValidationError
from ..core.logger import get_logger
from .routes import elements_router, index_router, watcher_router

log = get_logger("api")

API_VERSION = "0.1.0"


def _status_code(exc: ScreenSenseError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    return 500


def create_app(
    context: AppContext,
    start_watcher: bool = False,
    start_cleanup: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The application owns the context lifecycle: it is initialised on startup
    and closed on shutdown.

    Args:
        context: Shared services the routes operate on.
        start_watcher: Start the screen watcher once the index is ready.
        start_cleanup: Start the periodic retention jobs.

    Returns:
        Configured FastAPI application instance.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.initialize()
        if start_cleanup:
            context.cleanup.start()
        if start_watcher:
            result = await context.watcher.start()
            if not result["success"]:
                log.warning(f"Screen watcher not started: {result['message']}")
        yield
        await context.close()

    app = FastAPI(
        title="ScreenSense API",
        description="Semantic index of on-screen UI elements",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.context = context

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.config.cors_origins or config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add request logging middleware
    @app.middleware("http")
    async def log_requests(request, call_next):
        log.info(f"API Request: {request.method} {request.url}")
        response = await call_next(request)
        log.info(f"API Response: {response.status_code}")
        return response

    @app.exception_handler(ScreenSenseError)
    async def handle_screensense_error(request: Request, exc: ScreenSenseError):
        status_code = _status_code(exc)
        if status_code >= 500:
            log.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            log.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(status_code=status_code, content={"success": False, "error": exc.to_dict()})

    # Include routers
    app.include_router(elements_router, prefix="/api/v1/elements", tags=["elements"])
    app.include_router(index_router, prefix="/api/v1/index", tags=["index"])
    app.include_router(watcher_router, prefix="/api/v1/watcher", tags=["watcher"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "ScreenSense API",
            "version": API_VERSION,
            "watcher": context.watcher.state.value,
        }

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "message": "ScreenSense API",
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    log.info("FastAPI application created successfully")
    return app
