"""Shared fixtures for the ScreenSense test suite."""

import asyncio
import hashlib
import os
import re

# Keep test runs from writing log files into the working tree.
os.environ.setdefault("LOG_TO_FILE", "false")

import numpy as np
import pytest

from screensense.core.exceptions import TransientCaptureError
from screensense.index.embedding import EmbeddingProvider
from screensense.index.semantic_index import SemanticIndex
from screensense.index.vector_store import VectorStore
from screensense.vision.models import (
    BoundingBox,
    NodeMetadata,
    ScreenDimensions,
    UIScreenState,
    UISemanticNode,
    UISubtree,
    WindowInfo,
)

DIMENSION = 384


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings, no model download needed."""

    def __init__(self, dimension: int = DIMENSION) -> None:
        super().__init__(dimension)
        self.batch_calls = 0
        self.embedded_texts: list[str] = []

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        norm = np.linalg.norm(vector)
        return vector / norm if norm > 0 else vector

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        self.batch_calls += 1
        self.embedded_texts.extend(texts)
        return [self.embed(text) for text in texts]


def make_node(
    node_id: str,
    screen_id: str,
    node_type: str = "text",
    description: str = "",
    bbox=(0, 0, 10, 10),
    text: str = "",
    clickable: bool = False,
    visible: bool = True,
    app: str = "TestApp",
    timestamp: int = 0,
) -> UISemanticNode:
    return UISemanticNode(
        id=node_id,
        type=node_type,
        bbox=BoundingBox(*bbox),
        screen_state_id=screen_id,
        text=text,
        description=description,
        clickable=clickable,
        visible=visible,
        metadata=NodeMetadata(app=app, screen_region="top-left"),
        timestamp=timestamp,
    )


def make_screen(
    screen_id: str,
    timestamp: int = 1_000,
    nodes=(),
    subtrees=(),
    app: str = "TestApp",
    description: str = "TestApp window",
) -> UIScreenState:
    return UIScreenState(
        id=screen_id,
        timestamp=timestamp,
        app=app,
        window_title="Document",
        screen_dimensions=ScreenDimensions(1000, 1000),
        description=description,
        nodes=list(nodes),
        subtrees=list(subtrees),
    )


def make_subtree(subtree_id: str, screen_id: str, node_ids, description: str = "Form") -> UISubtree:
    return UISubtree(
        id=subtree_id,
        type="form",
        bbox=BoundingBox(0, 0, 500, 500),
        screen_state_id=screen_id,
        title="Login",
        description=description,
        node_ids=list(node_ids),
    )


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "index" / "semantic-ui.sqlite3")


@pytest.fixture
def embedder():
    return HashingEmbeddingProvider()


@pytest.fixture
def vector_store(db_path):
    store = VectorStore(db_path, embedding_dimension=DIMENSION)
    store.initialize()
    yield store
    store.close()


@pytest.fixture
async def semantic_index(db_path, embedder):
    index = SemanticIndex(VectorStore(db_path, DIMENSION), embedder)
    await index.initialize()
    yield index
    await index.close()


@pytest.fixture
def save_screen():
    """The two-node screen: a clickable "Save" button and a text line mentioning save."""
    nodes = [
        make_node(
            "node_button", "screen_save", "button", "Save button",
            bbox=(800, 900, 900, 940), text="Save", clickable=True,
        ),
        make_node(
            "node_text", "screen_save", "text", "Save your work",
            bbox=(100, 50, 400, 80), text="Save your work",
        ),
    ]
    return make_screen("screen_save", timestamp=5_000, nodes=nodes)


class FrameSequence:
    """Frame source replaying a fixed list of frames, repeating the last one."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.calls = 0

    def __call__(self):
        frame = self.frames[min(self.calls, len(self.frames) - 1)]
        self.calls += 1
        return frame


def solid_frame(value: int, size=(64, 64)) -> np.ndarray:
    return np.full((size[0], size[1], 3), value, dtype=np.uint8)


class FakePipeline:
    """Capture pipeline stand-in producing one-node screens."""

    def __init__(self, fail=False, window=WindowInfo(app_name="Editor", title="notes.txt")):
        self.fail = fail
        self.window = window
        self.runs = []

    async def initialize(self):
        return None

    async def detect_window(self):
        return self.window

    async def run(self, window, fast_mode=True, timeout=None):
        self.runs.append(fast_mode)
        if self.fail:
            raise TransientCaptureError("screen locked")
        screen_id = f"screen_{len(self.runs)}"
        return make_screen(
            screen_id,
            timestamp=1_000 + len(self.runs),
            app=window.app_name,
            nodes=[make_node(f"{screen_id}_n", screen_id, "button", "Save button", clickable=True)],
        )


async def wait_for(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
