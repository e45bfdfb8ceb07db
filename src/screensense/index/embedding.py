"""Text embedding providers for the semantic index.

Descriptions of nodes, subtrees and screens are embedded as fixed-length
float32 vectors and compared by cosine similarity.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import numpy as np
from loguru import logger

from ..core.exceptions import ModelUnavailableError


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity between two vectors, in ``[-1, 1]``.

    Returns 0.0 when either vector has zero norm.
    """
    vec_a = np.asarray(a, dtype=np.float32).ravel()
    vec_b = np.asarray(b, dtype=np.float32).ravel()
    if vec_a.shape != vec_b.shape:
        raise ValueError(f"Embedding shape mismatch: {vec_a.shape} != {vec_b.shape}")

    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Vectorised cosine similarity of *query* against every row of *matrix*."""
    query = np.asarray(query, dtype=np.float32).ravel()
    matrix = np.asarray(matrix, dtype=np.float32)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        raise ValueError(f"Embedding shape mismatch: {matrix.shape} vs {query.shape}")

    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, matrix @ query / np.where(denom > 0, denom, 1.0), 0.0)
    return np.clip(scores, -1.0, 1.0)


class EmbeddingProvider(ABC):
    """Maps text descriptions to fixed-length vectors."""

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension

    async def initialize(self) -> None:
        """Load model resources. Default providers need nothing."""
        return None

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""

    @abstractmethod
    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Embed many texts in one model call, preserving order."""

    def cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        return cosine_similarity(a, b)

    def close(self) -> None:
        return None


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Local embeddings through ``sentence-transformers``.

    The default model ``all-MiniLM-L6-v2`` produces 384-dimensional vectors.
    The model is loaded lazily on first use and shared by every caller of
    this instance.
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        dimension: int = 384,
        device: str = "cpu",
        batch_size: int = 32,
    ) -> None:
        super().__init__(dimension)
        self.model_name = model_name
        self.device = device
        self.batch_size = batch_size
        self._model: Optional[Any] = None
        self._load_lock = threading.Lock()

    async def initialize(self) -> None:
        await asyncio.to_thread(self._load_model)

    def _load_model(self) -> Any:
        with self._load_lock:
            if self._model is not None:
                return self._model
            try:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading embedding model {self.model_name} on {self.device}")
                model = SentenceTransformer(self.model_name, device=self.device)
            except Exception as exc:
                raise ModelUnavailableError(
                    f"Embedding model {self.model_name!r} could not be loaded: {exc}"
                ) from exc

            model_dimension = model.get_sentence_embedding_dimension()
            if model_dimension and model_dimension != self.dimension:
                raise ModelUnavailableError(
                    f"Embedding model {self.model_name!r} produces {model_dimension}-d vectors, "
                    f"expected {self.dimension}"
                )
            self._model = model
            logger.info("Embedding model ready")
            return model

    def embed(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if not texts:
            return []
        if any(not text or not text.strip() for text in texts):
            raise ValueError("Cannot embed empty text")

        model = self._load_model()
        try:
            vectors = model.encode(
                texts,
                batch_size=self.batch_size,
                convert_to_numpy=True,
                normalize_embeddings=True,
                show_progress_bar=False,
            )
        except Exception as exc:
            raise ModelUnavailableError(f"Embedding failed: {exc}") from exc
        return [np.asarray(vector, dtype=np.float32) for vector in vectors]

    def close(self) -> None:
        self._model = None
