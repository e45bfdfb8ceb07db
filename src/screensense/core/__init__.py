"""Core components of ScreenSense."""

from .config import Config, config
from .exceptions import (
    CaptureTimeoutError,
    ModelUnavailableError,
    ScreenSenseError,
    StorageError,
    TransientCaptureError,
    ValidationError,
)
from .logger import Logger, log

__all__ = [
    "CaptureTimeoutError",
    "Config",
    "Logger",
    "ModelUnavailableError",
    "ScreenSenseError",
    "StorageError",
    "TransientCaptureError",
    "ValidationError",
    "config",
    "log",
]
