"""Retention and compaction for the semantic index.

Old screen states and raw screenshot files are deleted on a schedule, and the
database is periodically vacuumed to reclaim the space they occupied.
"""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..core.exceptions import ScreenSenseError
from ..utils.helpers import format_bytes
from .semantic_index import SemanticIndex

_HOUR_S = 60 * 60
_DAY_MS = 24 * _HOUR_S * 1000


class CleanupService:
    """Schedules retention cleanup and vacuum for a :class:`SemanticIndex`."""

    def __init__(
        self,
        semantic_index: SemanticIndex,
        screenshot_dir: Optional[str] = None,
        node_retention_days: float = 7,
        screenshot_retention_hours: float = 24,
        cleanup_interval_hours: float = 6,
        vacuum_interval_hours: float = 24,
        max_database_size_gb: float = 5,
    ) -> None:
        self.semantic_index = semantic_index
        self.screenshot_dir = screenshot_dir
        self.node_retention_days = node_retention_days
        self.screenshot_retention_hours = screenshot_retention_hours
        self.cleanup_interval_hours = cleanup_interval_hours
        self.vacuum_interval_hours = vacuum_interval_hours
        self.max_database_size_gb = max_database_size_gb

        self.is_running = False
        self._cleanup_task: Optional[asyncio.Task] = None
        self._vacuum_task: Optional[asyncio.Task] = None
        self.last_cleanup: Optional[dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def start(self) -> dict[str, Any]:
        """Run a cleanup now and schedule the periodic cleanup and vacuum."""
        if self.is_running:
            logger.warning("Cleanup service already running")
            return {"success": False, "message": "Cleanup service already running"}

        self.is_running = True
        self._cleanup_task = asyncio.create_task(
            self._periodic(self.run_cleanup, self.cleanup_interval_hours * _HOUR_S, run_first=True)
        )
        self._vacuum_task = asyncio.create_task(
            self._periodic(self.run_vacuum, self.vacuum_interval_hours * _HOUR_S, run_first=False)
        )
        logger.info(
            f"Cleanup service started (cleanup every {self.cleanup_interval_hours}h, "
            f"vacuum every {self.vacuum_interval_hours}h)"
        )
        return {"success": True, "message": "Cleanup service started"}

    async def stop(self) -> dict[str, Any]:
        if not self.is_running:
            return {"success": False, "message": "Cleanup service not running"}

        tasks = [task for task in (self._cleanup_task, self._vacuum_task) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._cleanup_task = None
        self._vacuum_task = None
        self.is_running = False
        logger.info("Cleanup service stopped")
        return {"success": True, "message": "Cleanup service stopped"}

    async def _periodic(self, job, interval_s: float, run_first: bool) -> None:
        if not run_first:
            await asyncio.sleep(interval_s)
        while True:
            try:
                await job()
            except ScreenSenseError as exc:
                logger.error(f"Scheduled {job.__name__} failed: {exc}")
            except Exception:
                logger.exception(f"Scheduled {job.__name__} crashed")
            await asyncio.sleep(interval_s)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    async def run_cleanup(self) -> dict[str, Any]:
        """Delete expired screen states and screenshots, then check database size."""
        logger.info("Running cleanup...")
        start = time.perf_counter()

        screens_deleted = await self.semantic_index.cleanup(int(self.node_retention_days * _DAY_MS))
        screenshots_deleted = await asyncio.to_thread(self.clean_old_screenshots)
        database_size_gb = await self.check_database_size()

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Cleanup complete in {elapsed_ms:.0f}ms "
            f"(screens: {screens_deleted}, screenshots: {screenshots_deleted})"
        )
        self.last_cleanup = {
            "success": True,
            "screens_deleted": screens_deleted,
            "screenshots_deleted": screenshots_deleted,
            "database_size_gb": database_size_gb,
            "elapsed_ms": elapsed_ms,
        }
        return self.last_cleanup

    async def run_vacuum(self) -> dict[str, Any]:
        logger.info("Running database vacuum...")
        start = time.perf_counter()
        await self.semantic_index.vacuum()
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Vacuum complete in {elapsed_ms:.0f}ms")
        return {"success": True, "elapsed_ms": elapsed_ms}

    def clean_old_screenshots(self) -> int:
        """Remove ``.png`` files older than the screenshot retention period."""
        if not self.screenshot_dir or not os.path.isdir(self.screenshot_dir):
            logger.debug("Screenshot directory not found, skipping")
            return 0

        cutoff = time.time() - self.screenshot_retention_hours * _HOUR_S
        deleted = 0
        for path in Path(self.screenshot_dir).glob("*.png"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    deleted += 1
            except OSError as exc:
                logger.warning(f"Could not remove screenshot {path}: {exc}")
        logger.info(f"Deleted {deleted} old screenshots")
        return deleted

    async def check_database_size(self) -> float:
        """Return the database size in GB, warning when it exceeds the limit."""
        stats = await self.semantic_index.get_stats()
        size_bytes = stats["database_size"]
        size_gb = size_bytes / (1024 ** 3)
        logger.info(f"Database size: {format_bytes(size_bytes)} ({stats['nodes']} nodes)")
        if size_gb > self.max_database_size_gb:
            logger.warning(
                f"Database size ({size_gb:.2f}GB) exceeds limit ({self.max_database_size_gb}GB); "
                "consider reducing retention or running a manual cleanup"
            )
        return size_gb

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "node_retention_days": self.node_retention_days,
            "screenshot_retention_hours": self.screenshot_retention_hours,
            "cleanup_interval_hours": self.cleanup_interval_hours,
            "vacuum_interval_hours": self.vacuum_interval_hours,
            "last_cleanup": self.last_cleanup,
        }
