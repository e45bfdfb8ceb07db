"""Tests for the semantic index orchestration layer."""

import asyncio

import numpy as np
import pytest

from conftest import DIMENSION, HashingEmbeddingProvider, make_node, make_screen, make_subtree
from screensense.core.exceptions import ModelUnavailableError, StorageError, ValidationError
from screensense.index.query import SearchRequest
from screensense.index.semantic_index import SemanticIndex
from screensense.index.vector_store import VectorStore


class FailingEmbeddingProvider(HashingEmbeddingProvider):
    def embed_batch(self, texts):
        raise RuntimeError("model crashed")


class ShortEmbeddingProvider(HashingEmbeddingProvider):
    def embed_batch(self, texts):
        return [self.embed(texts[0])]


async def test_index_and_search_clickable_save_button(semantic_index, save_screen):
    await semantic_index.index_screen_state(save_screen)

    results = await semantic_index.search(
        {"query": "save button", "filters": {"clickableOnly": True}, "k": 1}
    )

    assert len(results) == 1
    assert results[0].id == "node_button"
    assert results[0].to_dict()["bbox"] == [800, 900, 900, 940]
    assert results[0].to_dict()["type"] == "button"


async def test_search_without_filters_ranks_button_first(semantic_index, save_screen):
    await semantic_index.index_screen_state(save_screen)

    results = await semantic_index.search(SearchRequest(query="save button", k=5))

    assert [result.id for result in results][0] == "node_button"
    assert results[0].score >= results[-1].score


async def test_history_range_excludes_later_screens(semantic_index):
    for index, timestamp in enumerate((1_000, 2_000, 3_000)):
        await semantic_index.index_screen_state(make_screen(
            f"screen_{index}", timestamp=timestamp, description="Editor window with toolbar",
        ))

    screens = await semantic_index.search_history("editor", {"start": 1_000, "end": 2_000}, 10)

    ids = {screen.id for screen in screens}
    assert "screen_2" not in ids
    assert ids == {"screen_0", "screen_1"}


async def test_all_descriptions_embedded_in_one_batch(semantic_index, embedder):
    nodes = [make_node(f"n{i}", "s1", description=f"Field {i}") for i in range(5)]
    screen = make_screen("s1", nodes=nodes, subtrees=[make_subtree("t1", "s1", ["n0", "n1"])])

    embedded = await semantic_index.index_screen_state(screen)

    assert embedded == 7  # five nodes, one subtree, the screen
    assert embedder.batch_calls == 1


async def test_existing_embeddings_are_not_recomputed(semantic_index, embedder):
    node = make_node("n1", "s1", description="Search box")
    node.embedding = np.ones(DIMENSION, dtype=np.float32)
    screen = make_screen("s1", nodes=[node])

    embedded = await semantic_index.index_screen_state(screen)

    assert embedded == 1
    assert embedder.embedded_texts == ["TestApp window"]


async def test_blank_descriptions_are_stored_without_embedding(semantic_index):
    screen = make_screen("s1", nodes=[make_node("n1", "s1", description="   ")])

    await semantic_index.index_screen_state(screen)

    stored = await semantic_index.get_node("n1")
    assert stored is not None
    assert stored.embedding is None
    assert await semantic_index.search({"query": "anything", "minScore": -1}) == []


@pytest.mark.parametrize(
    "payload",
    [
        None,
        "save",
        {},
        {"query": ""},
        {"query": "   "},
        {"query": "save", "k": 0},
        {"query": "save", "minScore": 2},
    ],
)
async def test_malformed_search_rejected(semantic_index, payload):
    with pytest.raises(ValidationError):
        await semantic_index.search(payload)


async def test_validation_error_is_structured(semantic_index):
    with pytest.raises(ValidationError) as excinfo:
        await semantic_index.search({"query": "save", "k": -1})

    error = excinfo.value.to_dict()
    assert error["kind"] == "validation_error"
    assert error["details"]["errors"]


async def test_embedding_failure_is_model_unavailable(db_path, save_screen):
    index = SemanticIndex(VectorStore(db_path, DIMENSION), FailingEmbeddingProvider())
    try:
        with pytest.raises(ModelUnavailableError):
            await index.index_screen_state(save_screen)
        assert (await index.get_stats())["screens"] == 0
    finally:
        await index.close()


async def test_vector_count_mismatch_is_model_unavailable(db_path, save_screen):
    index = SemanticIndex(VectorStore(db_path, DIMENSION), ShortEmbeddingProvider())
    try:
        with pytest.raises(ModelUnavailableError):
            await index.index_screen_state(save_screen)
    finally:
        await index.close()


async def test_dimension_mismatch_surfaces_storage_error(db_path, save_screen):
    index = SemanticIndex(VectorStore(db_path, DIMENSION), HashingEmbeddingProvider(dimension=16))
    try:
        with pytest.raises(StorageError):
            await index.index_screen_state(save_screen)
    finally:
        await index.close()


async def test_separate_search_provider_is_used_for_queries(db_path, save_screen):
    indexer = HashingEmbeddingProvider()
    searcher = HashingEmbeddingProvider()
    index = SemanticIndex(VectorStore(db_path, DIMENSION), indexer, search_embedding_provider=searcher)
    try:
        await index.index_screen_state(save_screen)
        await index.search({"query": "save"})
        assert indexer.batch_calls == 1
        assert searcher.batch_calls == 0
    finally:
        await index.close()


async def test_cleanup_deletes_old_screens(semantic_index):
    await semantic_index.index_screen_state(make_screen("old", timestamp=1_000))
    await semantic_index.index_screen_state(make_screen("new", timestamp=2**62))

    deleted = await semantic_index.cleanup(older_than_ms=60_000)

    assert deleted == 1
    assert await semantic_index.get_screen_state("old") is None
    assert await semantic_index.get_screen_state("new") is not None


async def test_cleanup_rejects_negative_age(semantic_index):
    with pytest.raises(ValidationError):
        await semantic_index.cleanup(older_than_ms=-1)


async def test_stats_and_clear(semantic_index, save_screen):
    await semantic_index.index_screen_state(save_screen)

    stats = await semantic_index.get_stats()
    assert stats["nodes"] == 2
    assert stats["embedding_dimension"] == DIMENSION

    assert await semantic_index.clear() == 1
    assert (await semantic_index.get_stats())["nodes"] == 0


async def test_initialize_is_idempotent(semantic_index):
    await semantic_index.initialize()
    await semantic_index.initialize()
    assert semantic_index.is_initialized


async def test_search_during_concurrent_indexing_sees_whole_trees(semantic_index):
    screens = [
        make_screen(f"screen_{i}", timestamp=1_000 + i, nodes=[
            make_node(f"screen_{i}_n{j}", f"screen_{i}", "button", "Save button", clickable=True)
            for j in range(3)
        ])
        for i in range(8)
    ]

    async def search():
        return await semantic_index.search({"query": "save button", "k": 50})

    outcomes = await asyncio.gather(
        *(semantic_index.index_screen_state(screen) for screen in screens),
        *(search() for _ in range(8)),
    )

    for results in outcomes[len(screens):]:
        assert len(results) % 3 == 0
        for result in results:
            assert result.node.embedding is not None
            assert await semantic_index.get_screen_state(result.node.screen_state_id) is not None
    assert len(await search()) == 24
