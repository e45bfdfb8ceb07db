"""Cheap screen change detection used to gate the capture pipeline.

Frames are downscaled and compared against the last accepted frame with one
of three strategies:

* ``hash``: md5 of the frame bytes. Any pixel change flips it.
* ``sampling``: centre pixels of a grid of regions. Bounded cost, the default.
* ``pixels``: every pixel. Most accurate, meant for offline validation.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Optional, Union

import cv2  # type: ignore
import numpy as np
from loguru import logger

from ..core.config import CHANGE_DETECTION_METHODS

FrameSource = Callable[[], Union[np.ndarray, Awaitable[np.ndarray]]]


@dataclass(slots=True)
class ChangeResult:
    changed: bool
    change_percent: float
    method: str
    comparison_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ScreenChangeDetector:
    """Decide whether the screen differs from the last accepted capture.

    Parameters
    ----------
    frame_source : callable
        Returns the current frame as an ``HxWx3`` (or ``HxWx4``) uint8 array.
        May be a coroutine function; plain callables run in a worker thread.
    method : str
        One of ``hash``, ``sampling`` or ``pixels``.
    change_threshold : float
        Fraction of changed samples (or pixels) at which the screen counts
        as changed.
    downscale_factor : int
        Integer shrink factor applied before comparison.
    sample_grid : int
        Regions per side for the sampling strategy.
    pixel_threshold : int
        Summed absolute RGB difference above which a pixel counts as changed.
    debounce_ms : int
        A change detected within this window of the last accepted change is
        reported as unchanged.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        method: str = "sampling",
        change_threshold: float = 0.05,
        downscale_factor: int = 4,
        sample_grid: int = 4,
        pixel_threshold: int = 30,
        debounce_ms: int = 100,
    ) -> None:
        if method not in CHANGE_DETECTION_METHODS:
            raise ValueError(f"Unknown change detection method {method!r}")
        self.frame_source = frame_source
        self.method = method
        self.change_threshold = change_threshold
        self.downscale_factor = max(1, int(downscale_factor))
        self.sample_grid = max(1, int(sample_grid))
        self.pixel_threshold = pixel_threshold
        self.debounce_ms = debounce_ms

        self._last_frame: Optional[np.ndarray] = None
        self._last_hash: Optional[str] = None
        self._last_change_time: Optional[float] = None
        self.stats = {
            "total_comparisons": 0,
            "changes_detected": 0,
            "debounced": 0,
            "errors": 0,
            "average_change_percent": 0.0,
            "average_comparison_ms": 0.0,
        }

        logger.info(
            f"ScreenChangeDetector initialized (method={method}, threshold={change_threshold}, "
            f"downscale={self.downscale_factor}, grid={self.sample_grid}x{self.sample_grid})"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def has_changed(self) -> ChangeResult:
        """Compare the current frame against the last accepted one."""
        start = time.perf_counter()
        self.stats["total_comparisons"] += 1

        try:
            frame = await self._capture_for_comparison()

            if self._last_frame is None:
                self._accept(frame)
                return self._finish(ChangeResult(True, 1.0, "first-capture"), start)

            if self.method == "hash":
                result = self._compare_by_hash(frame)
            elif self.method == "sampling":
                result = self._compare_by_sampling(frame)
            else:
                result = self._compare_by_pixels(frame)

            if result.changed:
                if self._within_debounce():
                    self.stats["debounced"] += 1
                    return self._finish(ChangeResult(False, result.change_percent, "debounced"), start)

                self._accept(frame)
                changes = self.stats["changes_detected"]
                self.stats["average_change_percent"] = (
                    self.stats["average_change_percent"] * (changes - 1) + result.change_percent
                ) / changes

            return self._finish(result, start)

        except Exception as exc:
            logger.error(f"Screen change detection failed: {exc}")
            self.stats["errors"] += 1
            return ChangeResult(
                changed=True,
                change_percent=1.0,
                method="error-fallback",
                comparison_ms=(time.perf_counter() - start) * 1000,
                error=str(exc),
            )

    def reset(self) -> None:
        """Forget the baseline; the next call reports a first capture."""
        self._last_frame = None
        self._last_hash = None
        self._last_change_time = None
        logger.debug("ScreenChangeDetector reset")

    def get_stats(self) -> dict[str, Any]:
        total = self.stats["total_comparisons"]
        return {
            **self.stats,
            "method": self.method,
            "change_rate": f"{self.stats['changes_detected'] / total * 100:.1f}%" if total else "N/A",
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _capture_for_comparison(self) -> np.ndarray:
        if inspect.iscoroutinefunction(self.frame_source):
            frame = await self.frame_source()
        else:
            frame = await asyncio.to_thread(self.frame_source)
            if inspect.isawaitable(frame):
                frame = await frame

        if frame is None:
            raise ValueError("Frame source returned no data")

        frame = np.asarray(frame)
        if frame.ndim == 2:
            frame = np.stack([frame] * 3, axis=-1)
        if frame.ndim != 3 or frame.shape[2] < 3:
            raise ValueError(f"Unsupported frame shape {frame.shape}")
        frame = np.ascontiguousarray(frame[:, :, :3], dtype=np.uint8)

        if self.downscale_factor > 1:
            height, width = frame.shape[:2]
            target = (max(1, width // self.downscale_factor), max(1, height // self.downscale_factor))
            frame = cv2.resize(frame, target, interpolation=cv2.INTER_NEAREST)
        return frame

    def _accept(self, frame: np.ndarray) -> None:
        self._last_frame = frame
        self._last_hash = self._compute_hash(frame)
        self._last_change_time = time.monotonic()
        self.stats["changes_detected"] += 1

    def _within_debounce(self) -> bool:
        if self.debounce_ms <= 0 or self._last_change_time is None:
            return False
        return (time.monotonic() - self._last_change_time) * 1000 < self.debounce_ms

    def _finish(self, result: ChangeResult, start: float) -> ChangeResult:
        result.comparison_ms = (time.perf_counter() - start) * 1000
        total = self.stats["total_comparisons"]
        self.stats["average_comparison_ms"] = (
            self.stats["average_comparison_ms"] * (total - 1) + result.comparison_ms
        ) / total
        return result

    @staticmethod
    def _compute_hash(frame: np.ndarray) -> str:
        return hashlib.md5(frame.tobytes()).hexdigest()

    def _compare_by_hash(self, frame: np.ndarray) -> ChangeResult:
        changed = self._compute_hash(frame) != self._last_hash
        return ChangeResult(changed, 1.0 if changed else 0.0, "hash")

    def _compare_by_sampling(self, frame: np.ndarray) -> ChangeResult:
        if frame.shape != self._last_frame.shape:
            return ChangeResult(True, 1.0, "sampling")

        height, width = frame.shape[:2]
        grid = self.sample_grid
        region_w = width // grid
        region_h = height // grid
        xs = np.minimum(np.arange(grid) * region_w + region_w // 2, width - 1)
        ys = np.minimum(np.arange(grid) * region_h + region_h // 2, height - 1)

        current = frame[np.ix_(ys, xs)].astype(np.int16)
        previous = self._last_frame[np.ix_(ys, xs)].astype(np.int16)
        diff = np.abs(current - previous).sum(axis=2)

        change_percent = float(np.count_nonzero(diff > self.pixel_threshold)) / (grid * grid)
        return ChangeResult(change_percent >= self.change_threshold, change_percent, "sampling")

    def _compare_by_pixels(self, frame: np.ndarray) -> ChangeResult:
        if frame.shape != self._last_frame.shape:
            return ChangeResult(True, 1.0, "pixels")

        diff = np.abs(frame.astype(np.int16) - self._last_frame.astype(np.int16)).sum(axis=2)
        change_percent = float(np.count_nonzero(diff > self.pixel_threshold)) / diff.size
        return ChangeResult(change_percent >= self.change_threshold, change_percent, "pixels")
