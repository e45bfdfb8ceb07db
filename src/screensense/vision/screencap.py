"""Desktop screenshot capture.

Frames are grabbed with ``mss`` and converted through Pillow. A fresh ``mss``
instance is opened per call, so a grabber can be used from any worker thread.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import mss
import numpy as np
from PIL import Image

from ..core.exceptions import TransientCaptureError
from ..core.logger import log


class ScreenGrabber:
    """Capture the physical display as RGB frames or PNG files."""

    def __init__(self, monitor: int = 1) -> None:
        # Index 0 is the combined virtual screen, 1 the primary monitor.
        self.monitor = monitor

    def grab_image(self) -> Image.Image:
        """Return the current screen as a PIL image.

        Raises:
            TransientCaptureError: If the display cannot be read.
        """
        try:
            with mss.mss() as sct:
                monitors = sct.monitors
                target = monitors[self.monitor] if self.monitor < len(monitors) else monitors[0]
                shot = sct.grab(target)
                return Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")
        except Exception as exc:
            raise TransientCaptureError(f"Screenshot capture failed: {exc}") from exc

    def grab(self) -> np.ndarray:
        """Return the current screen as an ``HxWx3`` uint8 RGB array."""
        return np.asarray(self.grab_image())

    def capture(self, save_path: str, image: Optional[Image.Image] = None) -> str:
        """Save a PNG screenshot to *save_path* and return the path."""
        image = image or self.grab_image()
        Path(os.path.dirname(save_path) or ".").mkdir(parents=True, exist_ok=True)
        image.save(save_path, format="PNG")
        log.debug(f"Screenshot saved to {save_path}")
        return save_path
