"""Tests for retention cleanup and small helpers."""

import asyncio
import os
import time

import pytest
from loguru import logger

from conftest import make_screen
from screensense.core.config import Config
from screensense.core.exceptions import CaptureTimeoutError
from screensense.core.logger import get_logger, log
from screensense.index.cleanup import CleanupService
from screensense.main import build_config, build_parser
from screensense.utils.helpers import format_bytes, generate_id, url_domain, with_timeout


def touch(path, age_hours):
    path.write_bytes(b"png")
    mtime = time.time() - age_hours * 3600
    os.utime(path, (mtime, mtime))


async def test_run_cleanup_removes_expired_screens_and_screenshots(semantic_index, tmp_path):
    shots = tmp_path / "shots"
    shots.mkdir()
    await semantic_index.index_screen_state(make_screen("ancient", timestamp=1_000))
    touch(shots / "old.png", age_hours=48)
    touch(shots / "fresh.png", age_hours=1)
    touch(shots / "notes.txt", age_hours=48)

    service = CleanupService(semantic_index, screenshot_dir=str(shots))
    result = await service.run_cleanup()

    assert result["screens_deleted"] == 1
    assert result["screenshots_deleted"] == 1
    assert sorted(p.name for p in shots.iterdir()) == ["fresh.png", "notes.txt"]
    assert service.get_status()["last_cleanup"] is result


async def test_missing_screenshot_dir_is_ignored(semantic_index, tmp_path):
    service = CleanupService(semantic_index, screenshot_dir=str(tmp_path / "absent"))

    assert service.clean_old_screenshots() == 0


async def test_start_runs_cleanup_immediately_and_stop(semantic_index, tmp_path):
    await semantic_index.index_screen_state(make_screen("ancient", timestamp=1_000))
    service = CleanupService(semantic_index, screenshot_dir=str(tmp_path))

    assert service.start()["success"] is True
    assert service.start()["success"] is False
    for _ in range(200):
        if service.last_cleanup is not None:
            break
        await asyncio.sleep(0.01)

    assert service.last_cleanup["screens_deleted"] == 1
    assert (await service.stop())["success"] is True
    assert service.is_running is False


async def test_periodic_job_survives_unexpected_errors(semantic_index):
    service = CleanupService(semantic_index)
    calls = []

    async def flaky_job():
        calls.append(len(calls))
        if len(calls) == 1:
            raise OSError("disk vanished")

    task = asyncio.create_task(service._periodic(flaky_job, 0.01, run_first=True))
    try:
        for _ in range(200):
            if len(calls) >= 3:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()

    assert len(calls) >= 3


async def test_vacuum(semantic_index):
    service = CleanupService(semantic_index)

    assert (await service.run_vacuum())["success"] is True


async def test_with_timeout_raises_capture_timeout():
    with pytest.raises(CaptureTimeoutError) as excinfo:
        await with_timeout(asyncio.sleep(1), 0.01, "detect")

    assert excinfo.value.details["stage"] == "detect"
    assert excinfo.value.kind == "capture_timeout"


async def test_with_timeout_none_waits():
    async def answer():
        return 42

    assert await with_timeout(answer(), None, "embed") == 42


def test_helpers():
    assert generate_id("node").startswith("node_")
    assert generate_id("node") != generate_id("node")
    assert url_domain("https://docs.example.com/path") == "docs.example.com"
    assert url_domain("example.org") == "example.org"
    assert url_domain(None) is None
    assert format_bytes(2048) == "2.0KB"


def test_config_validation():
    with pytest.raises(ValueError):
        Config(_env_file=None, change_threshold=1.5).validate_config()
    with pytest.raises(ValueError):
        Config(_env_file=None, change_detection_method="psnr").validate_config()
    assert Config(_env_file=None).validate_config() is True


def test_cli_overrides_config():
    args = build_parser().parse_args(["--port", "9001", "--fps", "4", "--no-owlv2", "--no-watcher"])

    settings = build_config(args, Config(_env_file=None))

    assert settings.api_port == 9001
    assert settings.watcher_fps == 4
    assert settings.use_owlv2 is False
    assert args.no_watcher is True


def test_cli_rejects_invalid_fps():
    args = build_parser().parse_args(["--fps", "-1"])

    with pytest.raises(ValueError):
        build_config(args, Config(_env_file=None))


def test_component_logger_tags_records():
    records = []
    sink_id = logger.add(records.append, format="{extra[component]}|{message}", level="DEBUG")
    try:
        get_logger("watcher").info("tick")
        log.log_search("save", 2, 1.5)
    finally:
        logger.remove(sink_id)

    lines = [record.strip() for record in records]
    assert "watcher|tick" in lines
    assert any(line.startswith("core|SEARCH: 'save' -> 2 results") for line in lines)
