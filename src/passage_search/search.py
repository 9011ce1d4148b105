"""Search orchestration: cached, filtered, ranked retrieval over the vector index.

Pipeline for `SearchOrchestrator.search`:
1. Derive a deterministic cache key from the query
2. Return cached results when available
3. Rewrite the query (normalization, abbreviation expansion, result limits)
4. Pre-filter chunks by document metadata
5. Query the vector index with an over-fetched k
6. Deduplicate, re-resolve, filter, and threshold the hits
7. Rank by descending score (stable)
8. Extract a snippet per result
9. Cache the results
10. Update performance statistics

Failures in steps 3-8 surface as a single `SearchError`; partial results are
never returned. All public operations are coroutines running on one event
loop, so no internal locking is needed.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter, deque
from datetime import UTC, datetime

from loguru import logger
from pydantic import BaseModel, Field

from passage_search.cache import BoundedCache
from passage_search.embedding import EmbeddingClient
from passage_search.errors import (
    MissingEmbeddingError,
    NotInitializedError,
    SearchError,
    StoreOperation,
    VectorStoreError,
)
from passage_search.index import VectorIndex
from passage_search.models import (
    Chunk,
    Document,
    IndexSummary,
    SearchFilters,
    SearchQuery,
    SearchResult,
    SearchStats,
    SlowQuery,
    SlowQueryAnalysis,
)
from passage_search.query import (
    SEARCH_KEY_PREFIX,
    effective_max_results,
    extract_relevant_text,
    optimize_query,
    search_cache_key,
)
from passage_search.registry import DocumentRegistry


class SearchOptions(BaseModel):
    """Search pipeline switches and limits.

    Attributes:
        enable_prefiltering: Narrow candidates by metadata before the vector query
        enable_result_caching: Cache result lists under ``search:`` keys
        enable_query_rewriting: Normalize and expand queries before embedding
        max_results: Default result count when a query leaves it unset
        slow_query_ms: Searches slower than this are recorded
        slow_query_log_size: Number of slow queries kept
        large_result_count: Result lists longer than this use `large_result_ttl`
        large_result_ttl: TTL in seconds for large result lists
        result_ttl: TTL in seconds for other result lists (None uses the cache default)
    """

    enable_prefiltering: bool = True
    enable_result_caching: bool = True
    enable_query_rewriting: bool = True
    max_results: int = Field(default=10, ge=1, le=100)
    slow_query_ms: float = Field(default=1000.0, gt=0)
    slow_query_log_size: int = Field(default=10, ge=1)
    large_result_count: int = Field(default=20, ge=1)
    large_result_ttl: float = Field(default=10 * 60.0, gt=0)
    result_ttl: float | None = Field(default=None, gt=0)


class SearchOrchestrator:
    """Turns search queries into ranked results and keeps the registry in sync."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        index: VectorIndex,
        registry: DocumentRegistry,
        *,
        cache: BoundedCache[list[SearchResult]] | None = None,
        options: SearchOptions | None = None,
        store_path: str | None = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.registry = registry
        self.cache = cache
        self.options = options or SearchOptions()
        self._store_path = store_path
        self._initialized = False

        self._total_searches = 0
        self._cache_hits = 0
        self._average_search_ms = 0.0
        self._slow_queries: deque[SlowQuery] = deque(maxlen=self.options.slow_query_log_size)

        logger.info(
            f"SearchOrchestrator created (store={self.store_path}, "
            f"cache={'on' if self.caching_enabled else 'off'}, "
            f"prefiltering={self.options.enable_prefiltering}, "
            f"rewriting={self.options.enable_query_rewriting})"
        )

    @property
    def store_path(self) -> str:
        return self._store_path or self.index.identifier

    @property
    def caching_enabled(self) -> bool:
        return self.cache is not None and self.options.enable_result_caching

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Open the vector index and load the registry snapshot."""
        if self._initialized:
            return
        try:
            await self.index.open()
            await asyncio.to_thread(self.registry.load)
        except Exception as e:
            raise VectorStoreError(
                f"Failed to initialize vector store: {e}",
                "initialization",
                self.store_path,
                cause=e,
            ) from e
        self._initialized = True
        logger.info(f"Vector store initialized at {self.store_path}")

    def _ensure_initialized(self, operation: StoreOperation) -> None:
        if not self._initialized:
            raise NotInitializedError(operation, self.store_path)

    async def index_document(self, document: Document, chunks: list[Chunk]) -> None:
        """Insert a document's embedded chunks into the index and registry.

        The registry is published only after every vector is inserted and the
        index is persisted, so concurrent searches never observe a partially
        indexed document.

        Raises:
            NotInitializedError: If `initialize()` has not completed
            MissingEmbeddingError: If any chunk lacks an embedding (nothing is written)
            VectorStoreError: For index or persistence failures
        """
        self._ensure_initialized("indexing")
        for chunk in chunks:
            if chunk.embedding is None:
                raise MissingEmbeddingError(chunk.id, self.store_path)

        logger.info(f"Adding document '{document.title}' with {len(chunks)} chunks")
        try:
            for previous in self.registry.chunks_for(document.id):
                await self.index.delete(previous.id)

            for chunk in chunks:
                await self.index.insert(
                    chunk.id,
                    chunk.embedding or [],
                    {"document_id": chunk.document_id, "chunk_index": chunk.chunk_index},
                )
            await self.index.persist()

            self.registry.remove(document.id)
            self.registry.add(document, chunks)
            await asyncio.to_thread(self.registry.save)
        except Exception as e:
            raise VectorStoreError(
                f"Failed to add document: {e}",
                "indexing",
                self.store_path,
                context={"document_id": document.id},
                cause=e,
            ) from e

        self.clear_search_cache()
        logger.info(f"Successfully added document '{document.title}'")

    async def remove_document(self, document_id: str) -> int:
        """Remove a document and its chunks; returns the number of chunks removed."""
        self._ensure_initialized("storage")
        try:
            removed = self.registry.remove(document_id)
            for chunk in removed:
                await self.index.delete(chunk.id)
            await self.index.persist()
            await asyncio.to_thread(self.registry.save)
        except Exception as e:
            raise VectorStoreError(
                f"Failed to remove document: {e}",
                "storage",
                self.store_path,
                context={"document_id": document_id},
                cause=e,
            ) from e

        self.clear_search_cache()
        logger.info(f"Removed document {document_id} and {len(removed)} chunks")
        return len(removed)

    async def clear(self) -> None:
        """Remove every document, chunk, and vector."""
        self._ensure_initialized("storage")
        try:
            await self.index.clear()
            self.registry.clear()
            await asyncio.to_thread(self.registry.save)
        except Exception as e:
            raise VectorStoreError(
                f"Failed to clear database: {e}", "storage", self.store_path, cause=e
            ) from e
        self.clear_search_cache()
        logger.info("Vector store cleared")

    async def search(self, query: SearchQuery) -> list[SearchResult]:
        """Run the search pipeline.

        Returns:
            Results sorted by descending score; an empty list means nothing matched.

        Raises:
            NotInitializedError: If `initialize()` has not completed
            SearchError: If embedding, index lookup, or post-processing fails
        """
        self._ensure_initialized("search")
        started = time.perf_counter()
        self._total_searches += 1

        cache_key = search_cache_key(query)
        if self.caching_enabled and self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self._cache_hits += 1
                elapsed = self._record_timing(query.query, started)
                logger.debug(
                    f"Search cache hit for {query.query!r} "
                    f"({len(cached)} results, {elapsed:.1f}ms)"
                )
                return list(cached)

        try:
            results, prefiltered = await self._run_pipeline(query)
        except Exception as e:
            elapsed = self._record_timing(query.query, started)
            logger.error(f"Search failed for {query.query!r} after {elapsed:.1f}ms: {e}")
            raise SearchError(query.query, elapsed, self.store_path, cause=e) from e

        if self.caching_enabled and self.cache is not None and results:
            ttl = (
                self.options.large_result_ttl
                if len(results) > self.options.large_result_count
                else self.options.result_ttl
            )
            self.cache.set(cache_key, results, ttl)

        elapsed = self._record_timing(query.query, started)
        logger.debug(
            f"Vector search for {query.query!r} returned {len(results)} results "
            f"in {elapsed:.1f}ms (prefiltered={prefiltered})"
        )
        return list(results)

    async def _run_pipeline(self, query: SearchQuery) -> tuple[list[SearchResult], bool]:
        if self.options.enable_query_rewriting:
            query = optimize_query(query)
        max_results = effective_max_results(query, self.options.max_results)
        filters = query.filters
        if filters is not None and filters.is_empty():
            filters = None

        candidates: set[str] | None = None
        if self.options.enable_prefiltering and filters is not None:
            candidates = self._prefilter(filters)
            logger.debug(
                f"Pre-filtering kept {len(candidates)}/{self.registry.chunk_count} chunks"
            )
            if not candidates:
                return [], True

        k = max_results * 2
        if candidates is not None:
            k = min(k, len(candidates))

        vector = await self.embedder.embed_single(query.query)
        matches = await self.index.query(vector, k, ids=candidates)

        results: list[SearchResult] = []
        seen: set[str] = set()
        for match in matches:
            if match.id in seen:
                continue
            seen.add(match.id)

            chunk = self.registry.get_chunk(match.id)
            document = self.registry.get_document(chunk.document_id) if chunk else None
            if chunk is None or document is None:
                continue
            if candidates is None or match.id not in candidates:
                if filters is not None and not filters.matches(document):
                    continue
            if query.threshold is not None and match.score < query.threshold:
                continue

            results.append(
                SearchResult(
                    chunk=chunk,
                    document=document,
                    score=match.score,
                    relevant_text=extract_relevant_text(chunk.content, query.query),
                )
            )
            if len(results) >= max_results:
                break

        results.sort(key=lambda result: result.score, reverse=True)
        return results, candidates is not None

    def _prefilter(self, filters: SearchFilters) -> set[str]:
        candidates: set[str] = set()
        for chunk in self.registry.iter_chunks():
            document = self.registry.get_document(chunk.document_id)
            if document is not None and filters.matches(document):
                candidates.add(chunk.id)
        return candidates

    def _record_timing(self, query_text: str, started: float) -> float:
        elapsed = (time.perf_counter() - started) * 1000
        self._average_search_ms += (elapsed - self._average_search_ms) / self._total_searches
        if elapsed > self.options.slow_query_ms:
            self._slow_queries.append(
                SlowQuery(query=query_text, duration_ms=elapsed, timestamp=datetime.now(UTC))
            )
            logger.warning(f"Slow query ({elapsed:.0f}ms): {query_text!r}")
        return elapsed

    def get_documents(self) -> list[Document]:
        return self.registry.documents()

    def get_document(self, document_id: str) -> Document | None:
        return self.registry.get_document(document_id)

    def get_document_chunks(self, document_id: str) -> list[Chunk]:
        """Chunks of a document in reading order; empty for unknown ids."""
        return self.registry.chunks_for(document_id)

    async def get_stats(self) -> IndexSummary:
        """Registered document and chunk counts plus stored vectors.

        Raises:
            NotInitializedError: If `initialize` has not completed
        """
        self._ensure_initialized("retrieval")
        return IndexSummary(
            total_documents=len(self.registry),
            total_chunks=self.registry.chunk_count,
            indexed_vectors=await self.index.count(),
        )

    def search_stats(self) -> SearchStats:
        """Counters since startup, with the result cache's own stats attached."""
        return SearchStats(
            total_searches=self._total_searches,
            cache_hits=self._cache_hits,
            average_search_time_ms=self._average_search_ms,
            slow_queries=list(self._slow_queries),
            cache_hit_rate=(
                self._cache_hits / self._total_searches if self._total_searches else 0.0
            ),
            cache_stats=self.cache.stats().model_dump() if self.cache is not None else None,
        )

    def slow_query_analysis(self) -> SlowQueryAnalysis:
        """Summarize retained slow queries by shape and report the five newest."""
        slow = list(self._slow_queries)
        if not slow:
            return SlowQueryAnalysis()

        patterns: Counter[str] = Counter()
        for entry in slow:
            if len(entry.query) > 100:
                patterns["Long queries (>100 chars)"] += 1
            if len(entry.query.split()) > 10:
                patterns["Complex queries (>10 words)"] += 1
            if '"' in entry.query:
                patterns["Quoted phrases"] += 1

        return SlowQueryAnalysis(
            slow_query_count=len(slow),
            average_slow_time_ms=round(sum(q.duration_ms for q in slow) / len(slow)),
            common_patterns=dict(patterns),
            recent_slow_queries=slow[-5:],
        )

    def clear_search_cache(self) -> int:
        """Drop cached search results; embedding vectors are untouched."""
        if self.cache is None:
            return 0
        removed = self.cache.invalidate_pattern(SEARCH_KEY_PREFIX)
        if removed:
            logger.info(f"Search cache cleared ({removed} entries)")
        return removed
