"""Semantic index: embeddings, vector storage, search and retention."""

from .cleanup import CleanupService
from .embedding import EmbeddingProvider, SentenceTransformerEmbeddingProvider
from .query import HistoryRequest, SearchFilters, SearchRequest, TimeRange
from .semantic_index import SearchResult, SemanticIndex
from .vector_store import VectorStore

__all__ = [
    "CleanupService",
    "EmbeddingProvider",
    "HistoryRequest",
    "SearchFilters",
    "SearchRequest",
    "SearchResult",
    "SemanticIndex",
    "SentenceTransformerEmbeddingProvider",
    "TimeRange",
    "VectorStore",
]
