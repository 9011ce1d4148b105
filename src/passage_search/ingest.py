"""End-to-end document ingestion workflow.

Combines chunking, embedding, and indexing:
1. Split the document into boundary-aware chunks
2. Generate embeddings for every chunk
3. Insert the chunks into the vector index and registry
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from passage_search.chunking import BoundaryChunker, ChunkingConfig
from passage_search.embedding import CachedEmbedder
from passage_search.models import Document, DocumentMetadata, IngestFailure, IngestReport
from passage_search.search import SearchOrchestrator


class DocumentIngestor:
    """Indexes documents into the search orchestrator."""

    def __init__(
        self,
        orchestrator: SearchOrchestrator,
        embedder: CachedEmbedder,
        chunking: ChunkingConfig | None = None,
    ):
        """Initialize the ingestor.

        Args:
            orchestrator: Orchestrator owning the index and registry
            embedder: Embedder used for chunk vectors
            chunking: Chunking configuration (uses defaults if None)
        """
        self.orchestrator = orchestrator
        self.embedder = embedder
        self.chunker = BoundaryChunker(chunking or ChunkingConfig())

    async def ingest(self, document: Document) -> Document:
        """Chunk, embed, and index one document.

        Returns:
            The document with its ``chunk_ids`` populated

        Raises:
            EmbeddingError: If embedding generation fails
            VectorStoreError: If indexing fails
        """
        logger.info(f"Ingesting document '{document.title}' (ID: {document.id})")
        chunks = self.chunker.chunk(document)
        if not chunks:
            logger.warning(f"No indexable content found in document {document.id}")

        embedded = await self.embedder.embed_chunks(chunks)
        await self.orchestrator.index_document(document, embedded)
        return document

    async def ingest_many(self, documents: Iterable[Document]) -> IngestReport:
        """Ingest documents one at a time, collecting failures instead of aborting."""
        started = time.perf_counter()
        report = IngestReport()

        for document in documents:
            try:
                await self.ingest(document)
            except Exception as e:
                logger.error(f"Failed to ingest document '{document.title}': {e}")
                report.failures.append(
                    IngestFailure(document_id=document.id, title=document.title, error=str(e))
                )
                continue
            report.successful.append(document.id)
            report.total_chunks += len(document.chunk_ids)

        report.elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Ingestion complete: {len(report.successful)} succeeded, "
            f"{report.failed} failed, {report.total_chunks} chunks "
            f"in {report.elapsed_ms:.0f}ms"
        )
        return report


def load_text_document(
    path: Path | str,
    *,
    author: str | None = None,
    encoding: str = "utf-8",
) -> Document:
    """Read a plain text file into a `Document`.

    The title is the file stem; timestamps and size come from the file's stat.
    """
    path = Path(path)
    content = path.read_text(encoding=encoding)
    stat = path.stat()
    metadata = DocumentMetadata(
        file_path=str(path),
        file_type=path.suffix.lstrip(".").lower() or "txt",
        author=author,
        created_at=datetime.fromtimestamp(stat.st_ctime, tz=UTC),
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
        size=stat.st_size,
    )
    return Document(title=path.stem, content=content, metadata=metadata)
