"""Composition root: builds the search stack from a `PassageSearchConfig`."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

from loguru import logger

from passage_search.cache import BoundedCache
from passage_search.config import PassageSearchConfig, configure_logging
from passage_search.embedding import CachedEmbedder, EmbeddingClient, create_embedding_client
from passage_search.index import LocalVectorIndex, VectorIndex, create_vector_index
from passage_search.ingest import DocumentIngestor
from passage_search.models import Document, IngestReport, SearchQuery, SearchResult
from passage_search.registry import SNAPSHOT_FILE, DocumentRegistry
from passage_search.search import SearchOrchestrator


class PassageSearchService:
    """Owns the caches, embedder, index, registry, orchestrator, and ingestor.

    Search results and embeddings live in separate caches so that heavy search
    traffic cannot evict embedding vectors and vice versa.

    Example:
        >>> config = load_config("default")
        >>> async with PassageSearchService.from_config(config) as service:
        ...     await service.ingest([document])
        ...     results = await service.search("transformer attention")
    """

    def __init__(
        self,
        config: PassageSearchConfig,
        orchestrator: SearchOrchestrator,
        ingestor: DocumentIngestor,
        search_cache: BoundedCache[list[SearchResult]],
        embedding_cache: BoundedCache[list[float]],
        embedder: CachedEmbedder | None = None,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.ingestor = ingestor
        self.search_cache = search_cache
        self.embedding_cache = embedding_cache
        self.embedder = embedder

    @classmethod
    def from_config(
        cls,
        config: PassageSearchConfig,
        *,
        embedding_client: EmbeddingClient | None = None,
        vector_index: VectorIndex | None = None,
    ) -> PassageSearchService:
        """Wire every component from configuration.

        Args:
            config: Validated configuration
            embedding_client: Embedding client to use instead of the configured model
            vector_index: Index to use instead of the configured backend
        """
        search_cache: BoundedCache[list[SearchResult]] = BoundedCache(
            config.cache.search, name="search"
        )
        embedding_cache: BoundedCache[list[float]] = BoundedCache(
            config.cache.embedding, name="embedding"
        )

        client = embedding_client or create_embedding_client(config.embedding)
        embedder = CachedEmbedder(client, config.embedding, embedding_cache)
        index = vector_index or create_vector_index(config.index)

        if isinstance(index, LocalVectorIndex):
            registry_path = index.storage_path / SNAPSHOT_FILE
        else:
            registry_path = Path(config.index.path) / SNAPSHOT_FILE
        registry = DocumentRegistry(registry_path)

        orchestrator = SearchOrchestrator(
            embedder,
            index,
            registry,
            cache=search_cache,
            options=config.search,
        )
        ingestor = DocumentIngestor(orchestrator, embedder, config.chunking)
        return cls(config, orchestrator, ingestor, search_cache, embedding_cache, embedder)

    async def start(self) -> None:
        """Start the cache sweepers and load persisted index state."""
        configure_logging(self.config.logging.level)
        self.search_cache.start()
        self.embedding_cache.start()
        await self.orchestrator.initialize()
        logger.info("Passage search service started")

    async def close(self) -> None:
        """Stop the caches and release the embedding client's connections."""
        await self.search_cache.close()
        await self.embedding_cache.close()
        if self.embedder is not None:
            await self.embedder.aclose()
        logger.info("Passage search service stopped")

    async def __aenter__(self) -> PassageSearchService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def ingest(self, documents: Iterable[Document]) -> IngestReport:
        return await self.ingestor.ingest_many(documents)

    async def search(self, query: SearchQuery | str, **kwargs: Any) -> list[SearchResult]:
        """Search with a `SearchQuery` or plain text plus `SearchQuery` fields."""
        if isinstance(query, str):
            query = SearchQuery(query=query, **kwargs)
        elif kwargs:
            query = SearchQuery.model_validate({**query.model_dump(), **kwargs})
        return await self.orchestrator.search(query)

    async def remove(self, document_id: str) -> int:
        """Remove a document; returns the number of chunks deleted."""
        return await self.orchestrator.remove_document(document_id)
