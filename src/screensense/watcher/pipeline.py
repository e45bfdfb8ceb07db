"""Capture pipeline: screenshot, OCR, detection and screen state assembly."""

from __future__ import annotations

import asyncio
import os
from typing import Optional

import numpy as np
from loguru import logger
from PIL import Image

from ..core.exceptions import ScreenSenseError, TransientCaptureError
from ..utils.helpers import now_ms, with_timeout
from ..vision.detection import DetectionChain
from ..vision.models import ScreenDimensions, UIScreenState, WindowInfo
from ..vision.ocr import OCREngine
from ..vision.screencap import ScreenGrabber
from ..vision.state_builder import ScreenStateBuilder
from ..vision.window import WindowDetector


class CapturePipeline:
    """Produce a :class:`UIScreenState` for the current screen.

    OCR and detection failures only reduce what the screen state contains.
    The capture fails when the screenshot cannot be taken or when nothing at
    all was recognised.
    """

    def __init__(
        self,
        grabber: ScreenGrabber,
        ocr_engine: Optional[OCREngine],
        detection_chain: Optional[DetectionChain],
        builder: Optional[ScreenStateBuilder] = None,
        window_detector: Optional[WindowDetector] = None,
        screenshot_dir: Optional[str] = None,
        save_screenshots: bool = False,
    ) -> None:
        self.grabber = grabber
        self.ocr_engine = ocr_engine
        self.detection_chain = detection_chain
        self.builder = builder or ScreenStateBuilder()
        self.window_detector = window_detector or WindowDetector()
        self.screenshot_dir = screenshot_dir
        self.save_screenshots = save_screenshots

    async def initialize(self) -> None:
        if self.detection_chain is not None:
            await self.detection_chain.initialize()

    async def detect_window(self) -> Optional[WindowInfo]:
        """The focused window, or ``None`` if nothing has focus."""
        return await asyncio.to_thread(self.window_detector.detect_active_window)

    async def run(
        self,
        window: WindowInfo,
        fast_mode: bool = True,
        timeout: Optional[float] = None,
    ) -> UIScreenState:
        """Capture and analyse the screen.

        Parameters
        ----------
        window : WindowInfo
            Focused window the capture is attributed to.
        fast_mode : bool
            Skip the detection chain and build from OCR alone.
        timeout : float, optional
            Bound in seconds for each stage.

        Raises
        ------
        TransientCaptureError
            If the screenshot fails or nothing is detected.
        CaptureTimeoutError
            If the capture or detection stage times out.
        """
        timestamp = now_ms()
        try:
            frame = await with_timeout(asyncio.to_thread(self.grabber.grab), timeout, "capture")
        except ScreenSenseError:
            raise
        except Exception as exc:
            raise TransientCaptureError(f"Screenshot capture failed: {exc}") from exc

        frame = np.asarray(frame)
        if frame.ndim < 2 or frame.size == 0:
            raise TransientCaptureError("Screenshot capture returned an empty frame")
        height, width = frame.shape[:2]

        words = []
        if self.ocr_engine is not None:
            try:
                ocr_result = await with_timeout(self.ocr_engine.analyze(frame), timeout, "ocr")
                words = ocr_result.words
            except Exception as exc:
                logger.warning(f"OCR unavailable for this capture: {exc}")

        detections = []
        detection_method = "ocr-only"
        if not fast_mode and self.detection_chain is not None:
            outcome = await with_timeout(self.detection_chain.detect(frame), timeout, "detect")
            detections = outcome.elements
            detection_method = outcome.provider or "ocr-only"

        if not detections and not words:
            raise TransientCaptureError("Nothing detected on screen")

        screenshot_path = None
        if self.save_screenshots and self.screenshot_dir:
            screenshot_path = os.path.join(self.screenshot_dir, f"screen_{timestamp}.png")
            await asyncio.to_thread(
                self.grabber.capture, screenshot_path, Image.fromarray(frame.astype(np.uint8))
            )

        return self.builder.build(
            detections,
            words,
            window,
            ScreenDimensions(int(width), int(height)),
            timestamp=timestamp,
            detection_method=detection_method,
            screenshot_path=screenshot_path,
        )
