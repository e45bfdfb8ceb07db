"""Background screen watching with change detection and error backoff."""

from .change_detector import ChangeResult, ScreenChangeDetector
from .pipeline import CapturePipeline
from .screen_watcher import ScreenWatcher, WatcherConfig, WatcherState

__all__ = [
    "CapturePipeline",
    "ChangeResult",
    "ScreenChangeDetector",
    "ScreenWatcher",
    "WatcherConfig",
    "WatcherState",
]
