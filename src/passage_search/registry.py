"""In-memory document/chunk registry with a JSON snapshot on disk."""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from passage_search.models import Chunk, Document

SNAPSHOT_FILE = "metadata.json"


class RegistrySnapshot(BaseModel):
    """Serialized registry contents. Embeddings live in the vector index."""

    documents: dict[str, Document] = Field(default_factory=dict)
    chunks: dict[str, Chunk] = Field(default_factory=dict)
    last_updated: datetime | None = None


class DocumentRegistry:
    """Maps document and chunk ids to their records.

    Mutated only by the orchestrator's indexing operations; the host serializes
    those calls. Without a path the registry is memory-only.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, Chunk] = {}

    def __len__(self) -> int:
        return len(self._documents)

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    def load(self) -> None:
        """Load the snapshot from disk, starting empty if it is missing or corrupt."""
        self._documents.clear()
        self._chunks.clear()
        if self.path is None or not self.path.exists():
            return

        try:
            snapshot = RegistrySnapshot.model_validate_json(self.path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.error(f"Failed to load registry snapshot: {e}. Backing up and starting fresh.")
            backup_path = self.path.with_suffix(".json.bak")
            try:
                shutil.copy(self.path, backup_path)
                logger.warning(f"Corrupted registry snapshot backed up to {backup_path}")
            except OSError as backup_err:
                logger.error(f"Failed to back up corrupted registry snapshot: {backup_err}")
            return

        self._documents.update(snapshot.documents)
        self._chunks.update(snapshot.chunks)
        logger.info(f"Loaded {len(self._documents)} documents and {len(self._chunks)} chunks")

    def save(self) -> None:
        """Persist the registry using an atomic write (temp file + rename)."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = RegistrySnapshot(
            documents=self._documents,
            chunks={
                chunk_id: chunk.model_copy(update={"embedding": None})
                for chunk_id, chunk in self._chunks.items()
            },
            last_updated=datetime.now(UTC),
        )
        temp_file = self.path.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            f.write(snapshot.model_dump_json(indent=2))
            f.flush()
            os.fsync(f.fileno())
        temp_file.replace(self.path)

    def add(self, document: Document, chunks: Iterable[Chunk]) -> None:
        """Register a document with its chunks.

        The document's `chunk_ids` are rewritten to match `chunks`, in order.
        Existing chunks of a re-added document are not removed here.
        """
        chunk_list = list(chunks)
        document.chunk_ids = [chunk.id for chunk in chunk_list]
        self._documents[document.id] = document
        for chunk in chunk_list:
            self._chunks[chunk.id] = chunk

    def remove(self, document_id: str) -> list[Chunk]:
        """Remove a document and its chunks; returns the removed chunks."""
        removed = self.chunks_for(document_id)
        for chunk in removed:
            del self._chunks[chunk.id]
        self._documents.pop(document_id, None)
        return removed

    def clear(self) -> None:
        self._documents.clear()
        self._chunks.clear()

    def get_document(self, document_id: str) -> Document | None:
        """Return the document, or None if unknown."""
        return self._documents.get(document_id)

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        return self._chunks.get(chunk_id)

    def documents(self) -> list[Document]:
        return list(self._documents.values())

    def chunks_for(self, document_id: str) -> list[Chunk]:
        """Chunks of one document in `chunk_index` order."""
        chunks = [chunk for chunk in self._chunks.values() if chunk.document_id == document_id]
        return sorted(chunks, key=lambda chunk: chunk.chunk_index)

    def iter_chunks(self) -> Iterator[Chunk]:
        # Iterate a copy so callers may mutate the registry meanwhile
        return iter(list(self._chunks.values()))
