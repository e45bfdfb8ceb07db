"""ScreenSense structured logging system."""

from __future__ import annotations

import os
import sys
from typing import Any, Optional

from loguru import logger

from .config import config

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level:<8}</level> | "
    "<magenta>{extra[component]:<10}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[component]} | {name}:{line} | {message}"


class Logger:
    """Component-tagged wrapper around the shared *Loguru* logger.

    Handlers are installed once for the process by :meth:`configure`; every
    ``Logger`` only binds its component name, so modules create their own
    with :func:`get_logger`.
    """

    _configured = False

    def __init__(self, component: str = "core") -> None:
        self.component = component
        self._logger = logger.bind(component=component)
        if not Logger._configured:
            self.configure()

    @classmethod
    def configure(
        cls,
        level: Optional[str] = None,
        log_dir: Optional[str] = None,
        to_file: Optional[bool] = None,
    ) -> None:
        """(Re)install the console and file handlers.

        Arguments default to the values in :data:`config`; the entry point
        calls this again after applying command line overrides.
        """
        level = level or config.log_level
        log_dir = log_dir or config.log_dir
        to_file = config.log_to_file if to_file is None else to_file

        logger.remove()
        logger.configure(extra={"component": "core"})
        logger.add(sys.stderr, format=_CONSOLE_FORMAT, level=level, colorize=True)

        if to_file:
            os.makedirs(log_dir, exist_ok=True)
            logger.add(
                os.path.join(log_dir, "screensense_{time:YYYY-MM-DD}.log"),
                format=_FILE_FORMAT,
                level="DEBUG",
                rotation="1 day",
                retention="14 days",
                compression="zip",
                enqueue=True,
            )
            # Errors are kept longer for post-mortems of watcher backoffs.
            logger.add(
                os.path.join(log_dir, "errors_{time:YYYY-MM-DD}.log"),
                format=_FILE_FORMAT,
                level="ERROR",
                rotation="1 day",
                retention="60 days",
                compression="zip",
                enqueue=True,
            )
        cls._configured = True

    def _emit(self, level: str, message: str, **kwargs: Any) -> None:
        # depth=2 attributes the record to the caller, not to this wrapper
        self._logger.opt(depth=2).log(level, message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._emit("DEBUG", message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._emit("INFO", message, **kwargs)

    def success(self, message: str, **kwargs: Any) -> None:
        self._emit("SUCCESS", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._emit("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._emit("ERROR", message, **kwargs)

    def exception(self, message: str) -> None:
        """Log *message* at ERROR with the active traceback."""
        self._logger.opt(depth=1, exception=True).error(message)

    # ------------------------------------------------------------------
    # Domain records
    # ------------------------------------------------------------------
    def log_capture(self, screen_id: str, elements: int, duration_ms: float) -> None:
        """One completed capture-and-index cycle."""
        self._emit("DEBUG", f"CAPTURE: {screen_id} | {elements} elements | {duration_ms:.0f}ms")

    def log_search(self, query: str, results: int, duration_ms: float) -> None:
        self._emit("DEBUG", f"SEARCH: {query!r} -> {results} results | {duration_ms:.1f}ms")

    def log_performance(self, operation: str, duration_ms: float) -> None:
        self._emit("DEBUG", f"PERFORMANCE: {operation} took {duration_ms:.2f}ms")


def get_logger(component: str) -> Logger:
    """Logger whose records carry *component* in the component column."""
    return Logger(component)


# Global logger instance
log = Logger()
