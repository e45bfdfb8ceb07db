"""Tests for screen change detection."""

import numpy as np
import pytest

from conftest import FrameSequence, solid_frame
from screensense.watcher.change_detector import ScreenChangeDetector


def detector(frames, **kwargs):
    kwargs.setdefault("debounce_ms", 0)
    kwargs.setdefault("downscale_factor", 1)
    return ScreenChangeDetector(FrameSequence(frames), **kwargs)


async def test_first_call_reports_first_capture():
    result = await detector([solid_frame(0)]).has_changed()

    assert result.changed is True
    assert result.method == "first-capture"


@pytest.mark.parametrize("method", ["hash", "sampling", "pixels"])
async def test_identical_frames_are_unchanged(method):
    change_detector = detector([solid_frame(10), solid_frame(10)], method=method)

    await change_detector.has_changed()
    result = await change_detector.has_changed()

    assert result.changed is False
    assert result.change_percent == 0.0
    assert result.method == method


@pytest.mark.parametrize("method", ["hash", "sampling", "pixels"])
async def test_full_frame_change_is_detected(method):
    change_detector = detector([solid_frame(0), solid_frame(255)], method=method)

    await change_detector.has_changed()
    result = await change_detector.has_changed()

    assert result.changed is True
    assert result.change_percent == pytest.approx(1.0)


async def test_small_change_below_pixel_threshold_ignored():
    change_detector = detector([solid_frame(100), solid_frame(105)], method="pixels", pixel_threshold=30)

    await change_detector.has_changed()
    result = await change_detector.has_changed()

    assert result.changed is False


async def test_sampling_counts_changed_regions():
    before = solid_frame(0, size=(40, 40))
    after = before.copy()
    after[:10, :10] = 255  # top-left region of a 4x4 grid
    change_detector = detector([before, after], method="sampling", sample_grid=4, change_threshold=0.05)

    await change_detector.has_changed()
    result = await change_detector.has_changed()

    assert result.changed is True
    assert result.change_percent == pytest.approx(1 / 16)


async def test_shape_change_counts_as_change():
    change_detector = detector([solid_frame(0, (32, 32)), solid_frame(0, (48, 48))])

    await change_detector.has_changed()
    result = await change_detector.has_changed()

    assert result.changed is True
    assert result.change_percent == 1.0


async def test_baseline_only_advances_on_accepted_change():
    before = solid_frame(0, size=(40, 40))
    small = before.copy()
    small[:10, :10] = 255
    change_detector = detector(
        [before, small, small], method="sampling", sample_grid=4, change_threshold=0.5
    )

    await change_detector.has_changed()
    first = await change_detector.has_changed()
    second = await change_detector.has_changed()

    assert first.changed is False
    assert second.changed is False
    assert second.change_percent == pytest.approx(1 / 16)


async def test_debounce_suppresses_rapid_changes():
    change_detector = detector(
        [solid_frame(0), solid_frame(255)], method="hash", debounce_ms=60_000
    )

    await change_detector.has_changed()
    result = await change_detector.has_changed()

    assert result.changed is False
    assert result.method == "debounced"
    assert change_detector.stats["debounced"] == 1


async def test_frame_source_error_fails_open():
    def broken():
        raise RuntimeError("display gone")

    change_detector = ScreenChangeDetector(broken)
    result = await change_detector.has_changed()

    assert result.changed is True
    assert result.method == "error-fallback"
    assert "display gone" in result.error
    assert change_detector.stats["errors"] == 1


async def test_async_frame_source_and_rgba_frames():
    async def source():
        return np.zeros((16, 16, 4), dtype=np.uint8)

    change_detector = ScreenChangeDetector(source, downscale_factor=2)
    result = await change_detector.has_changed()

    assert result.method == "first-capture"


async def test_reset_forgets_baseline():
    change_detector = detector([solid_frame(0)])

    await change_detector.has_changed()
    change_detector.reset()
    result = await change_detector.has_changed()

    assert result.method == "first-capture"


async def test_stats():
    change_detector = detector([solid_frame(0), solid_frame(0), solid_frame(200)], method="hash")

    for _ in range(3):
        await change_detector.has_changed()

    stats = change_detector.get_stats()
    assert stats["total_comparisons"] == 3
    assert stats["changes_detected"] == 2
    assert stats["method"] == "hash"


def test_unknown_method_rejected():
    with pytest.raises(ValueError):
        ScreenChangeDetector(lambda: solid_frame(0), method="psnr")
