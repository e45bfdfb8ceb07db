"""Screen watcher: the background capture loop feeding the semantic index.

The loop ticks at a configured frame rate. Each tick asks the change detector
whether the screen moved, and only then runs the capture pipeline and indexes
the result. Ticks never overlap, and repeated failures pause the loop for a
cool-down before it resumes on its own.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..core.config import Config
from ..core.exceptions import ScreenSenseError, ValidationError
from ..core.logger import get_logger
from ..index.semantic_index import SemanticIndex
from ..utils.helpers import now_ms, with_timeout
from .change_detector import ScreenChangeDetector
from .pipeline import CapturePipeline

log = get_logger("watcher")


class WatcherState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass(slots=True)
class WatcherConfig:
    """Runtime settings of the capture loop."""

    fps: float = 2.0
    enabled: bool = True
    capture_on_change: bool = True
    fast_mode: bool = True
    max_retries: int = 3
    retry_delay: float = 5.0
    stage_timeout: Optional[float] = 30.0

    @classmethod
    def from_config(cls, config: Config) -> WatcherConfig:
        return cls(
            fps=config.watcher_fps,
            enabled=config.watcher_enabled,
            capture_on_change=config.watcher_capture_on_change,
            fast_mode=config.watcher_fast_mode,
            max_retries=config.watcher_max_retries,
            retry_delay=config.watcher_retry_delay,
            stage_timeout=config.watcher_stage_timeout,
        )

    @property
    def interval(self) -> float:
        """Seconds between tick starts."""
        return 1.0 / self.fps

    def merge(self, partial: dict[str, Any]) -> WatcherConfig:
        """Return a copy with the non-``None`` values of *partial* applied.

        Raises:
            ValidationError: On unknown keys or out-of-range values.
        """
        known = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(partial) - known)
        if unknown:
            raise ValidationError(f"Unknown watcher config keys: {', '.join(unknown)}")

        merged = dataclasses.replace(
            self, **{key: value for key, value in partial.items() if value is not None}
        )
        if merged.fps <= 0:
            raise ValidationError("fps must be positive")
        if merged.max_retries < 1:
            raise ValidationError("max_retries must be at least 1")
        if merged.retry_delay < 0:
            raise ValidationError("retry_delay must not be negative")
        if merged.stage_timeout is not None and merged.stage_timeout <= 0:
            raise ValidationError("stage_timeout must be positive")
        return merged

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def _fresh_stats() -> dict[str, Any]:
    return {
        "total_captures": 0,
        "successful_captures": 0,
        "failed_captures": 0,
        "skipped_captures": 0,
        "skipped_no_change": 0,
        "average_processing_time": 0.0,
        "last_error": None,
        "change_detection": {
            "total_checks": 0,
            "changes_detected": 0,
            "average_change_percent": 0.0,
        },
    }


class ScreenWatcher:
    """Timed, change-aware capture loop with error backoff.

    State machine: ``stopped -> running <-> paused -> stopped``. Control
    operations (``pause``, ``resume``, ``update_config``, ``stop``) take
    effect between ticks and never interrupt one in flight.
    """

    def __init__(
        self,
        pipeline: CapturePipeline,
        semantic_index: SemanticIndex,
        change_detector: Optional[ScreenChangeDetector] = None,
        config: Optional[WatcherConfig] = None,
    ) -> None:
        self.pipeline = pipeline
        self.semantic_index = semantic_index
        self.change_detector = change_detector
        self.config = config or WatcherConfig()

        self.state = WatcherState.STOPPED
        self.error_count = 0
        self.capture_count = 0
        self.last_capture_time: Optional[int] = None
        self.last_screen_state: Optional[dict[str, Any]] = None
        self.stats = _fresh_stats()

        self._tick_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._resume_task: Optional[asyncio.Task] = None

        log.info(
            f"ScreenWatcher initialized (fps={self.config.fps}, "
            f"interval={self.config.interval * 1000:.0f}ms, "
            f"capture_on_change={self.config.capture_on_change})"
        )

    @property
    def is_running(self) -> bool:
        return self.state is not WatcherState.STOPPED

    @property
    def is_paused(self) -> bool:
        return self.state is WatcherState.PAUSED

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------
    async def start(self) -> dict[str, Any]:
        """Initialise collaborators and begin ticking."""
        if self.state is not WatcherState.STOPPED:
            log.warning("ScreenWatcher already running")
            return {"success": False, "message": "Already running"}

        try:
            await self.semantic_index.initialize()
            await self.pipeline.initialize()
        except ScreenSenseError as exc:
            log.error(f"Failed to start ScreenWatcher: {exc}")
            return {"success": False, "message": exc.message, "error": exc.to_dict()}

        self.stats = _fresh_stats()
        self.error_count = 0
        self.capture_count = 0
        if self.change_detector is not None:
            self.change_detector.reset()

        self.state = WatcherState.RUNNING
        self._wakeup = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop())
        log.info(f"ScreenWatcher started (fps={self.config.fps})")
        return {"success": True, "message": "ScreenWatcher started", "config": self.config.to_dict()}

    async def stop(self) -> dict[str, Any]:
        """Stop ticking once the in-flight tick, if any, completes."""
        if self.state is WatcherState.STOPPED:
            log.warning("ScreenWatcher not running")
            return {"success": False, "message": "Not running"}

        self.state = WatcherState.STOPPED
        self._cancel_auto_resume()
        self._wakeup.set()
        if self._loop_task is not None:
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        total = self.stats["total_captures"]
        success_rate = self.stats["successful_captures"] / total * 100 if total else 0.0
        log.info(f"ScreenWatcher stopped ({total} captures, {success_rate:.1f}% successful)")
        return {"success": True, "message": "ScreenWatcher stopped", "stats": self.get_status()["stats"]}

    def pause(self) -> dict[str, Any]:
        if self.state is WatcherState.STOPPED:
            return {"success": False, "message": "Not running"}
        # An explicit pause outlasts any pending error-backoff resume.
        self._cancel_auto_resume()
        self.state = WatcherState.PAUSED
        log.info("ScreenWatcher paused")
        return {"success": True, "message": "Paused"}

    def resume(self) -> dict[str, Any]:
        if self.state is WatcherState.STOPPED:
            return {"success": False, "message": "Not running"}
        self._cancel_auto_resume()
        self.error_count = 0
        self.state = WatcherState.RUNNING
        log.info("ScreenWatcher resumed")
        return {"success": True, "message": "Resumed"}

    def update_config(self, partial: dict[str, Any]) -> dict[str, Any]:
        """Merge *partial* into the config; a new fps applies from the next wait."""
        old_fps = self.config.fps
        self.config = self.config.merge(partial)
        if self.config.fps != old_fps and self.state is not WatcherState.STOPPED:
            self._wakeup.set()
            log.info(f"ScreenWatcher rescheduled (fps {old_fps} -> {self.config.fps})")
        return {"success": True, "message": "Config updated", "config": self.config.to_dict()}

    async def capture_now(self) -> dict[str, Any]:
        """Run one capture immediately, bypassing pause and change detection."""
        log.info("Manual capture triggered")
        async with self._tick_lock:
            return await self._perform_capture(forced=True)

    def get_status(self) -> dict[str, Any]:
        stats = {
            **self.stats,
            "change_detection": {
                **self.stats["change_detection"],
                "enabled": self.config.capture_on_change and self.change_detector is not None,
                "method": self.change_detector.method if self.change_detector else None,
                "detector": self.change_detector.get_stats() if self.change_detector else None,
            },
            "capture_count": self.capture_count,
            "error_count": self.error_count,
        }
        return {
            "state": self.state.value,
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "config": self.config.to_dict(),
            "stats": stats,
            "last_capture_time": self.last_capture_time,
            "last_screen_state": self.last_screen_state,
        }

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self.state is not WatcherState.STOPPED:
            started = loop.time()
            await self._tick()

            # Sleep until the next tick; an fps change or stop wakes us early.
            while self.state is not WatcherState.STOPPED:
                remaining = self.config.interval - (loop.time() - started)
                if remaining <= 0:
                    break
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    break

    async def _tick(self) -> None:
        if self.state is WatcherState.PAUSED or not self.config.enabled:
            self.stats["skipped_captures"] += 1
            return
        async with self._tick_lock:
            if self.state is WatcherState.RUNNING:
                await self._perform_capture(forced=False)

    async def _perform_capture(self, forced: bool) -> dict[str, Any]:
        """Run one capture cycle and update the stats.

        A stage timeout counts the tick as failed. When the ``index`` stage
        times out, the store write already handed to its worker thread is not
        interrupted and may still commit, so the screen can be persisted even
        though the tick is reported as failed.
        """
        start = time.perf_counter()
        timeout = self.config.stage_timeout
        self.stats["total_captures"] += 1

        try:
            # 1. Skip unchanged screens
            if not forced and self.config.capture_on_change and self.change_detector is not None:
                change = await with_timeout(self.change_detector.has_changed(), timeout, "change detection")
                detection_stats = self.stats["change_detection"]
                detection_stats["total_checks"] += 1
                if not change.changed:
                    log.debug(f"No screen change detected ({change.method}), skipping capture")
                    self.stats["skipped_no_change"] += 1
                    self.stats["skipped_captures"] += 1
                    return {
                        "success": True,
                        "skipped": True,
                        "reason": "no-change",
                        "change_percent": change.change_percent,
                    }
                detection_stats["changes_detected"] += 1
                changes = detection_stats["changes_detected"]
                detection_stats["average_change_percent"] = (
                    detection_stats["average_change_percent"] * (changes - 1) + change.change_percent
                ) / changes

            # 2. Active window context
            window = await with_timeout(self.pipeline.detect_window(), timeout, "window detection")
            if window is None:
                log.debug("No active window, skipping capture")
                self.stats["skipped_captures"] += 1
                return {"success": True, "skipped": True, "reason": "no-window"}

            # 3. Detection, OCR and screen state assembly
            screen_state = await self.pipeline.run(
                window, fast_mode=self.config.fast_mode and not forced, timeout=timeout
            )

            # 4. Embed and persist
            await with_timeout(self.semantic_index.index_screen_state(screen_state), timeout, "index")

        except Exception as exc:
            return self._record_failure(exc)

        # 5. Bookkeeping
        processing_ms = (time.perf_counter() - start) * 1000
        self.last_capture_time = now_ms()
        self.last_screen_state = {
            "screen_id": screen_state.id,
            "timestamp": screen_state.timestamp,
            "app": screen_state.app,
            "window_title": screen_state.window_title,
            "element_count": len(screen_state.nodes),
        }
        self.capture_count += 1
        self.stats["successful_captures"] += 1
        successes = self.stats["successful_captures"]
        self.stats["average_processing_time"] = (
            self.stats["average_processing_time"] * (successes - 1) + processing_ms
        ) / successes

        log.debug(
            f"Capture successful: {screen_state.id} ({len(screen_state.nodes)} elements, "
            f"{processing_ms:.0f}ms, forced={forced})"
        )
        return {
            "success": True,
            "screen_state": self.last_screen_state,
            "processing_time": processing_ms,
        }

    # ------------------------------------------------------------------
    # Error backoff
    # ------------------------------------------------------------------
    def _record_failure(self, exc: Exception) -> dict[str, Any]:
        self.stats["failed_captures"] += 1
        self.stats["last_error"] = str(exc)
        self.error_count += 1
        message = f"Capture failed ({self.error_count}/{self.config.max_retries}): {exc}"
        if isinstance(exc, ScreenSenseError):
            log.error(message)
        else:
            log.exception(message)

        if self.error_count >= self.config.max_retries and self.state is WatcherState.RUNNING:
            log.error("Too many errors, pausing ScreenWatcher")
            self.pause()
            self._resume_task = asyncio.create_task(self._auto_resume(self.config.retry_delay))

        error = exc.to_dict() if isinstance(exc, ScreenSenseError) else {"kind": "internal_error", "message": str(exc)}
        return {"success": False, "error": error}

    async def _auto_resume(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._resume_task = None
        if self.state is WatcherState.PAUSED:
            log.info("Auto-resuming ScreenWatcher after error cooldown")
            self.resume()

    def _cancel_auto_resume(self) -> None:
        if self._resume_task is not None and self._resume_task is not asyncio.current_task():
            self._resume_task.cancel()
        self._resume_task = None
