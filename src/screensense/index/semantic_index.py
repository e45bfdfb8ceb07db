"""Semantic index: embeds screen states and serves hybrid queries.

The index sits between the capture loop and query callers. Writes embed every
description of a screen capture in a single batch before persisting the whole
tree; reads embed the query and delegate ranking to the vector store.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

import numpy as np

from ..core.config import config
from ..core.exceptions import ModelUnavailableError, ScreenSenseError, ValidationError
from ..core.logger import get_logger
from ..utils.helpers import now_ms, with_timeout
from ..vision.models import UIScreenState, UISemanticNode, UISubtree
from .embedding import EmbeddingProvider
from .query import HistoryRequest, SearchRequest, TimeRange
from .vector_store import VectorStore

log = get_logger("index")

_DAY_MS = 24 * 60 * 60 * 1000


@dataclass(slots=True)
class SearchResult:
    """One ranked hit returned by :meth:`SemanticIndex.search`."""

    id: str
    score: float
    node: UISemanticNode
    result_type: str = "node"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.node.type,
            "text": self.node.text,
            "bbox": self.node.bbox.as_list(),
            "description": self.node.description,
            "score": self.score,
        }


class SemanticIndex:
    """Orchestrates embedding and persistence of UI screen states.

    Parameters
    ----------
    vector_store : VectorStore
        Store receiving the embedded trees.
    embedding_provider : EmbeddingProvider
        Provider used for indexing.
    search_embedding_provider : EmbeddingProvider, optional
        Provider used for queries; defaults to ``embedding_provider``.
    embed_timeout : float, optional
        Upper bound in seconds for each embedding call.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedding_provider: EmbeddingProvider,
        search_embedding_provider: Optional[EmbeddingProvider] = None,
        embed_timeout: Optional[float] = None,
    ) -> None:
        self.vector_store = vector_store
        self.embedding_provider = embedding_provider
        self.search_embedding_provider = search_embedding_provider or embedding_provider
        self.embed_timeout = embed_timeout
        self.is_initialized = False
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        """Load the embedding provider(s) and open the store exactly once."""
        if self.is_initialized:
            return
        async with self._init_lock:
            if self.is_initialized:
                return

            log.info("Initializing semantic index")
            await self.embedding_provider.initialize()
            if self.search_embedding_provider is not self.embedding_provider:
                await self.search_embedding_provider.initialize()
            await asyncio.to_thread(self.vector_store.initialize)

            self.is_initialized = True
            log.success("Semantic index initialized")

    async def close(self) -> None:
        """Close the store. Safe to call more than once."""
        async with self._init_lock:
            if not self.is_initialized:
                return
            await asyncio.to_thread(self.vector_store.close)
            self.is_initialized = False

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------
    async def index_screen_state(self, screen_state: UIScreenState) -> int:
        """Embed and persist *screen_state* with all of its nodes and subtrees.

        Every description lacking an embedding is embedded in one batch call.
        Entities with an empty description are stored without an embedding
        and never appear in vector search results.

        Returns
        -------
        int
            Number of embeddings computed.
        """
        await self.initialize()
        start = time.perf_counter()
        screen_state.attach_children()

        pending: list[Union[UISemanticNode, UISubtree, UIScreenState]] = [
            entity
            for entity in (*screen_state.nodes, *screen_state.subtrees, screen_state)
            if entity.embedding is None and entity.description and entity.description.strip()
        ]

        if pending:
            vectors = await self._embed_batch([entity.description for entity in pending])
            for entity, vector in zip(pending, vectors):
                entity.embedding = vector

        await asyncio.to_thread(self.vector_store.insert_screen_state, screen_state)

        log.log_capture(
            screen_state.id, len(screen_state.nodes), (time.perf_counter() - start) * 1000
        )
        return len(pending)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def search(self, request: Union[SearchRequest, dict[str, Any]]) -> list[SearchResult]:
        """Hybrid search over nodes.

        Raises
        ------
        ValidationError
            If the request is malformed. The store is never touched.
        """
        search_request = SearchRequest.parse(request)
        await self.initialize()
        start = time.perf_counter()

        query_embedding = await self._embed_query(search_request.query)
        nodes = await asyncio.to_thread(
            self.vector_store.search_nodes,
            query_embedding,
            search_request.filters,
            search_request.k,
            search_request.min_score,
        )

        results = [SearchResult(id=node.id, score=node.score or 0.0, node=node) for node in nodes]
        log.log_search(search_request.query, len(results), (time.perf_counter() - start) * 1000)
        return results

    async def search_history(
        self,
        query: str,
        time_range: Union[TimeRange, dict[str, Any], None] = None,
        k: Optional[int] = None,
    ) -> list[UIScreenState]:
        """Rank screen states captured within *time_range* against *query*."""
        payload: dict[str, Any] = {"query": query}
        if time_range is not None:
            payload["time_range"] = time_range
        if k is not None:
            payload["k"] = k
        history_request = HistoryRequest.parse(payload)

        await self.initialize()
        query_embedding = await self._embed_query(history_request.query)
        return await asyncio.to_thread(
            self.vector_store.search_screen_states,
            query_embedding,
            history_request.time_range,
            history_request.k,
        )

    async def get_node(self, node_id: str) -> Optional[UISemanticNode]:
        await self.initialize()
        return await asyncio.to_thread(self.vector_store.get_node, node_id)

    async def get_subtree(self, subtree_id: str) -> Optional[UISubtree]:
        await self.initialize()
        return await asyncio.to_thread(self.vector_store.get_subtree, subtree_id)

    async def get_screen_state(self, screen_state_id: str, with_nodes: bool = True) -> Optional[UIScreenState]:
        await self.initialize()
        return await asyncio.to_thread(self.vector_store.get_screen_state, screen_state_id, with_nodes)

    async def get_screen_history(
        self, start: Optional[int] = None, end: Optional[int] = None
    ) -> list[UIScreenState]:
        await self.initialize()
        return await asyncio.to_thread(self.vector_store.get_screen_history, start, end)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    async def cleanup(self, older_than_ms: Optional[int] = None) -> int:
        """Delete screen states captured more than *older_than_ms* ago.

        Defaults to the configured node retention period.
        """
        if older_than_ms is None:
            older_than_ms = config.node_retention_days * _DAY_MS
        if older_than_ms < 0:
            raise ValidationError("older_than_ms must not be negative")

        await self.initialize()
        cutoff = now_ms() - older_than_ms
        deleted = await asyncio.to_thread(self.vector_store.delete_old_screen_states, cutoff)
        log.info(f"Cleanup removed {deleted} screen states older than {cutoff}")
        return deleted

    async def vacuum(self) -> None:
        await self.initialize()
        await asyncio.to_thread(self.vector_store.vacuum)

    async def get_stats(self) -> dict[str, Any]:
        await self.initialize()
        stats = await asyncio.to_thread(self.vector_store.get_stats)
        stats["embedding_dimension"] = self.embedding_provider.dimension
        return stats

    async def clear(self) -> int:
        await self.initialize()
        removed = await asyncio.to_thread(self.vector_store.clear)
        log.warning(f"Semantic index cleared ({removed} screen states removed)")
        return removed

    # ------------------------------------------------------------------
    # Embedding helpers
    # ------------------------------------------------------------------
    async def _embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        try:
            vectors = await with_timeout(
                asyncio.to_thread(self.embedding_provider.embed_batch, texts),
                self.embed_timeout,
                "embed",
            )
        except ScreenSenseError:
            raise
        except Exception as exc:
            raise ModelUnavailableError(f"Embedding batch failed: {exc}") from exc

        if len(vectors) != len(texts):
            raise ModelUnavailableError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return [np.asarray(vector, dtype=np.float32) for vector in vectors]

    async def _embed_query(self, query: str) -> np.ndarray:
        try:
            vector = await with_timeout(
                asyncio.to_thread(self.search_embedding_provider.embed, query),
                self.embed_timeout,
                "embed query",
            )
        except ScreenSenseError:
            raise
        except Exception as exc:
            raise ModelUnavailableError(f"Query embedding failed: {exc}") from exc
        return np.asarray(vector, dtype=np.float32)
