"""Semantic passage search over document collections.

This package splits documents into overlapping passages, embeds them, and
answers natural-language queries with ranked, cached, metadata-filtered
results.

Architecture:
    - chunking: Boundary-aware text splitting with overlap
    - cache: TTL + LRU + memory-bounded cache with singleflight loading
    - embedding: Model-agnostic embedding client with a dedicated vector cache
    - index: Local (numpy/Parquet) and Pinecone vector indexes
    - search: Query pipeline, indexing, and search statistics
    - models: Pydantic schemas for documents, chunks, queries, and results

Usage:
    >>> from passage_search import PassageSearchService, load_config
    >>> async with PassageSearchService.from_config(load_config()) as service:
    ...     results = await service.search("protein aggregation in neurons")
"""

__version__ = "0.1.0"

from passage_search.cache import BoundedCache, CacheConfig
from passage_search.chunking import BoundaryChunker, ChunkingConfig, chunk_document
from passage_search.config import PassageSearchConfig, load_config
from passage_search.errors import (
    ConfigurationError,
    EmbeddingError,
    PassageSearchError,
    SearchError,
    VectorStoreError,
)
from passage_search.models import Chunk, Document, SearchFilters, SearchQuery, SearchResult
from passage_search.search import SearchOptions, SearchOrchestrator
from passage_search.service import PassageSearchService

__all__ = [
    "BoundaryChunker",
    "BoundedCache",
    "CacheConfig",
    "Chunk",
    "ChunkingConfig",
    "ConfigurationError",
    "Document",
    "EmbeddingError",
    "PassageSearchConfig",
    "PassageSearchError",
    "PassageSearchService",
    "SearchError",
    "SearchFilters",
    "SearchOptions",
    "SearchOrchestrator",
    "SearchQuery",
    "SearchResult",
    "VectorStoreError",
    "chunk_document",
    "load_config",
]
