"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from conftest import FakePipeline, FrameSequence, HashingEmbeddingProvider, solid_frame
from screensense.api import create_app
from screensense.core.config import Config
from screensense.core.context import AppContext
from screensense.watcher.change_detector import ScreenChangeDetector


@pytest.fixture
def context(tmp_path):
    settings = Config(
        _env_file=None,
        db_path=str(tmp_path / "api.sqlite3"),
        screenshot_dir=str(tmp_path / "shots"),
        use_owlv2=False,
        watcher_fps=0.01,
        log_to_file=False,
    )
    return AppContext(
        settings,
        embedding_provider=HashingEmbeddingProvider(),
        pipeline=FakePipeline(),
        change_detector=ScreenChangeDetector(FrameSequence([solid_frame(0)]), debounce_ms=0),
    )


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as test_client:
        yield test_client


def test_health_and_root(client):
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["watcher"] == "stopped"
    assert client.get("/").json()["docs"] == "/docs"


def test_capture_then_search(client):
    capture = client.post("/api/v1/watcher/capture").json()
    assert capture["success"] is True

    response = client.post(
        "/api/v1/elements/search",
        json={"query": "save button", "filters": {"clickableOnly": True}, "k": 1},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 1
    assert body["results"][0]["type"] == "button"
    assert set(body["results"][0]) == {"id", "type", "text", "bbox", "description", "score"}


def test_get_element(client):
    client.post("/api/v1/watcher/capture")

    found = client.get("/api/v1/elements/screen_1_n").json()
    missing = client.get("/api/v1/elements/nope").json()

    assert found["element"]["type"] == "button"
    assert missing["success"] is False


@pytest.mark.parametrize(
    "payload",
    [{"query": ""}, {"query": "save", "k": 0}, {"filters": {}}, ["save"]],
)
def test_invalid_search_is_400(client, payload):
    response = client.post("/api/v1/elements/search", json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["kind"] == "validation_error"


def test_history(client):
    client.post("/api/v1/watcher/capture")
    client.post("/api/v1/watcher/capture")

    response = client.post(
        "/api/v1/elements/history",
        json={"query": "TestApp window", "timeRange": {"start": 1_000, "end": 1_001}},
    )

    body = response.json()
    assert response.status_code == 200
    assert [screen["id"] for screen in body["results"]] == ["screen_1"]


def test_index_stats_cleanup_and_clear(client):
    client.post("/api/v1/watcher/capture")

    stats = client.get("/api/v1/index/stats").json()
    assert stats["stats"]["screens"] == 1
    assert stats["cleanup"]["running"] is False

    # Fake captures are timestamped in 1970, so any retention removes them.
    cleanup = client.post("/api/v1/index/cleanup", json={"olderThanMs": 60_000}).json()
    assert cleanup["deleted"] == 1

    client.post("/api/v1/watcher/capture")
    assert client.delete("/api/v1/index").json()["deleted"] == 1


def test_cleanup_rejects_negative_age(client):
    response = client.post("/api/v1/index/cleanup", json={"olderThanMs": -5})

    assert response.status_code == 400


def test_watcher_lifecycle(client):
    assert client.post("/api/v1/watcher/start").json()["success"] is True
    assert client.get("/api/v1/watcher/status").json()["state"] == "running"

    assert client.post("/api/v1/watcher/pause").json()["success"] is True
    assert client.get("/api/v1/watcher/status").json()["is_paused"] is True

    assert client.post("/api/v1/watcher/resume").json()["success"] is True
    assert client.post("/api/v1/watcher/stop").json()["success"] is True
    assert client.get("/api/v1/watcher/status").json()["state"] == "stopped"


def test_watcher_config(client):
    response = client.post("/api/v1/watcher/config", json={"fps": 4, "captureOnChange": False})

    config = response.json()["config"]
    assert config["fps"] == 4
    assert config["capture_on_change"] is False


@pytest.mark.parametrize("payload", [{"fps": 0}, {"unknownKey": 1}, {"fps": "fast"}])
def test_watcher_config_rejects_bad_input(client, payload):
    response = client.post("/api/v1/watcher/config", json=payload)

    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "validation_error"
