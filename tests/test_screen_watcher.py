"""Tests for the screen watcher loop."""

import asyncio
import time

import pytest

from conftest import DIMENSION, FakePipeline, FrameSequence, solid_frame, wait_for
from screensense.core.exceptions import ValidationError
from screensense.index.semantic_index import SemanticIndex
from screensense.index.vector_store import VectorStore
from screensense.watcher.change_detector import ScreenChangeDetector
from screensense.watcher.screen_watcher import ScreenWatcher, WatcherConfig, WatcherState


@pytest.fixture
async def make_watcher(semantic_index):
    watchers = []

    def factory(pipeline, change_detector=None, **config):
        config.setdefault("fps", 50.0)
        watcher = ScreenWatcher(pipeline, semantic_index, change_detector, WatcherConfig(**config))
        watchers.append(watcher)
        return watcher

    yield factory
    for watcher in watchers:
        if watcher.is_running:
            await watcher.stop()


async def test_repeated_failures_pause_then_auto_resume(make_watcher):
    pipeline = FakePipeline(fail=True)
    watcher = make_watcher(pipeline, max_retries=3, retry_delay=0.2)

    await watcher.start()
    await wait_for(lambda: watcher.state is WatcherState.PAUSED)
    assert watcher.error_count == 3
    assert watcher.stats["failed_captures"] == 3

    pipeline.fail = False
    await wait_for(lambda: watcher.state is WatcherState.RUNNING)
    assert watcher.error_count == 0

    await wait_for(lambda: watcher.stats["successful_captures"] > 0)


async def test_manual_resume_cancels_auto_resume(make_watcher):
    watcher = make_watcher(FakePipeline(fail=True), max_retries=1, retry_delay=60)

    await watcher.start()
    await wait_for(lambda: watcher.is_paused)

    result = watcher.resume()
    assert result["success"]
    assert watcher.error_count == 0
    assert watcher._resume_task is None


async def test_explicit_pause_cancels_pending_auto_resume(make_watcher):
    watcher = make_watcher(FakePipeline(fail=True), max_retries=1, retry_delay=0.2)

    await watcher.start()
    await wait_for(lambda: watcher.is_paused)
    assert watcher._resume_task is not None

    watcher.pause()
    await asyncio.sleep(0.5)

    assert watcher.state is WatcherState.PAUSED
    assert watcher._resume_task is None


class HangingWindowPipeline(FakePipeline):
    """Pipeline whose window lookup never returns."""

    async def detect_window(self):
        await asyncio.sleep(60)


async def test_stage_timeout_counts_as_failed_capture(make_watcher):
    watcher = make_watcher(HangingWindowPipeline(), fps=0.01, stage_timeout=0.05)

    result = await watcher.capture_now()

    assert result["success"] is False
    assert result["error"]["kind"] == "capture_timeout"
    assert result["error"]["details"]["stage"] == "window detection"
    assert watcher.stats["failed_captures"] == 1
    assert watcher.error_count == 1


async def test_stage_timeouts_in_loop_trigger_backoff(make_watcher):
    watcher = make_watcher(HangingWindowPipeline(), stage_timeout=0.05, max_retries=2, retry_delay=60)

    await watcher.start()
    await wait_for(lambda: watcher.is_paused)

    assert watcher.stats["failed_captures"] == 2
    assert "timed out" in watcher.stats["last_error"]


async def test_successful_ticks_index_screens(make_watcher, semantic_index):
    watcher = make_watcher(FakePipeline())

    await watcher.start()
    await wait_for(lambda: watcher.capture_count >= 2)
    await watcher.stop()

    stats = await semantic_index.get_stats()
    assert stats["screens"] >= 2
    assert watcher.last_screen_state["app"] == "Editor"


async def test_unchanged_screen_skips_pipeline(make_watcher):
    pipeline = FakePipeline()
    change_detector = ScreenChangeDetector(
        FrameSequence([solid_frame(0)]), method="hash", downscale_factor=1, debounce_ms=0
    )
    watcher = make_watcher(pipeline, change_detector)

    await watcher.start()
    await wait_for(lambda: watcher.stats["skipped_no_change"] >= 3)
    await watcher.stop()

    # Only the first comparison (the initial frame) reaches the pipeline.
    assert len(pipeline.runs) == 1
    assert watcher.stats["change_detection"]["changes_detected"] == 1


async def test_no_window_skips_capture(make_watcher):
    pipeline = FakePipeline(window=None)
    watcher = make_watcher(pipeline)

    await watcher.start()
    await wait_for(lambda: watcher.stats["skipped_captures"] >= 2)
    await watcher.stop()

    assert pipeline.runs == []
    assert watcher.error_count == 0


async def test_capture_now_bypasses_pause_and_uses_full_detection(make_watcher):
    pipeline = FakePipeline()
    watcher = make_watcher(pipeline, fps=0.01)

    await watcher.start()
    watcher.pause()
    runs_before = len(pipeline.runs)
    result = await watcher.capture_now()

    assert result["success"] is True
    assert result["screen_state"]["element_count"] == 1
    assert len(pipeline.runs) == runs_before + 1
    assert pipeline.runs[-1] is False


async def test_capture_now_reports_failure(make_watcher):
    watcher = make_watcher(FakePipeline(fail=True), fps=0.01)

    result = await watcher.capture_now()

    assert result["success"] is False
    assert result["error"]["kind"] == "transient_capture_error"


async def test_start_twice_fails(make_watcher):
    watcher = make_watcher(FakePipeline(), fps=0.01)

    assert (await watcher.start())["success"] is True
    assert (await watcher.start())["success"] is False


async def test_stop_and_pause_when_stopped(make_watcher):
    watcher = make_watcher(FakePipeline())

    assert (await watcher.stop())["success"] is False
    assert watcher.pause()["success"] is False
    assert watcher.resume()["success"] is False


async def test_pause_skips_ticks(make_watcher):
    pipeline = FakePipeline()
    watcher = make_watcher(pipeline)

    await watcher.start()
    watcher.pause()
    runs = len(pipeline.runs)
    skipped = watcher.stats["skipped_captures"]
    await wait_for(lambda: watcher.stats["skipped_captures"] >= skipped + 2)

    assert len(pipeline.runs) == runs
    assert watcher.get_status()["state"] == "paused"


async def test_update_config(make_watcher):
    watcher = make_watcher(FakePipeline(), fps=0.01)
    await watcher.start()

    result = watcher.update_config({"fps": 10.0, "fast_mode": False})

    assert result["config"]["fps"] == 10.0
    assert watcher.config.interval == pytest.approx(0.1)
    assert watcher.config.fast_mode is False


@pytest.mark.parametrize("partial", [{"fps": 0}, {"max_retries": 0}, {"bogus": 1}])
async def test_update_config_rejects_bad_values(make_watcher, partial):
    watcher = make_watcher(FakePipeline())

    with pytest.raises(ValidationError):
        watcher.update_config(partial)


async def test_status_shape(make_watcher):
    watcher = make_watcher(FakePipeline())

    status = watcher.get_status()

    assert status["state"] == "stopped"
    assert status["stats"]["error_count"] == 0
    assert status["stats"]["change_detection"]["enabled"] is False
    assert status["last_screen_state"] is None


class SlowVectorStore(VectorStore):
    def insert_screen_state(self, screen_state):
        time.sleep(0.2)
        super().insert_screen_state(screen_state)


async def test_index_timeout_fails_tick_but_write_still_lands(db_path, embedder):
    index = SemanticIndex(SlowVectorStore(db_path, DIMENSION), embedder)
    watcher = ScreenWatcher(FakePipeline(), index, config=WatcherConfig(fps=0.01, stage_timeout=0.05))

    result = await watcher.capture_now()

    assert result["error"]["details"]["stage"] == "index"
    for _ in range(100):
        if (await index.get_stats())["screens"] == 1:
            break
        await asyncio.sleep(0.02)
    assert await index.get_screen_state("screen_1") is not None
    await index.close()
