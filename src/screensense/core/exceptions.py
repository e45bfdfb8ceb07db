"""Error taxonomy for ScreenSense.

Collaborator-level failures (a single detector or OCR engine) are downgraded
to a fallback or an empty contribution where they happen. Storage and
embedding failures propagate to the caller so the screen watcher can back off.
"""

from __future__ import annotations

from typing import Any


class ScreenSenseError(Exception):
    """Base class for all ScreenSense errors."""

    kind = "screensense_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Structured form returned to query callers."""
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class TransientCaptureError(ScreenSenseError):
    """Screenshot or window context momentarily unavailable."""

    kind = "transient_capture_error"


class CaptureTimeoutError(TransientCaptureError):
    """A capture stage (capture, detect, embed, store) exceeded its timeout."""

    kind = "capture_timeout"


class ModelUnavailableError(ScreenSenseError):
    """A detection or embedding model failed to load or errored at call time."""

    kind = "model_unavailable"


class StorageError(ScreenSenseError):
    """Vector store read or write failure."""

    kind = "storage_error"


class ValidationError(ScreenSenseError):
    """Malformed query rejected before it reaches the store."""

    kind = "validation_error"
