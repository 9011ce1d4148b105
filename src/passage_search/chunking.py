"""Boundary-aware text chunking.

Splits a document into ordered, overlapping chunks without breaking sentences
or words where it can avoid it. All chunking is deterministic: same input +
config -> same chunks, and every offset points into the original document.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, replace
from typing import Any

from loguru import logger

from passage_search.models import Chunk, Document

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_END = re.compile(r"[.!?]\s+")

SENTENCE_LOOKBACK = 100
SENTENCE_LOOKAHEAD = 50
WORD_LOOKBACK = 50


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        chunk_size: Target chunk size in characters
        chunk_overlap: Characters shared between consecutive windows
        preserve_sentences: Prefer cutting after a sentence terminator
        preserve_paragraphs: Split on blank lines before windowing

    Pathological values are tolerated rather than rejected: a chunk size
    below 1 is treated as 1 and a negative overlap as 0. An overlap at or
    above the chunk size is honored; forward progress is still guaranteed.
    """

    chunk_size: int = 512
    chunk_overlap: int = 50
    preserve_sentences: bool = True
    preserve_paragraphs: bool = True

    @property
    def effective_size(self) -> int:
        return max(self.chunk_size, 1)

    @property
    def effective_overlap(self) -> int:
        return max(self.chunk_overlap, 0)


@dataclass(frozen=True)
class ChunkingStats:
    total_chunks: int
    average_chunk_size: int
    min_chunk_size: int
    max_chunk_size: int
    total_characters: int


class BoundaryChunker:
    """Paragraph-, sentence-, and word-aware sliding window chunker."""

    def __init__(self, config: ChunkingConfig | None = None):
        self.config = config or ChunkingConfig()
        if self.config.chunk_overlap >= self.config.chunk_size > 0:
            logger.warning(
                f"chunk_overlap ({self.config.chunk_overlap}) >= chunk_size "
                f"({self.config.chunk_size}); windows will advance one character at a time"
            )

    def chunk(self, document: Document) -> list[Chunk]:
        """Split a document into overlapping chunks.

        Args:
            document: Document to chunk

        Returns:
            Chunks in document order with globally increasing chunk_index.
            Empty or whitespace-only documents yield an empty list.
        """
        text = document.content
        chunks: list[Chunk] = []
        for para_start, para_end in self._paragraph_spans(text):
            for start, end in self._windows(text, para_start, para_end):
                chunk = self._make_chunk(document, text, start, end, len(chunks))
                if chunk is not None:
                    chunks.append(chunk)

        logger.debug(f"Chunked document {document.id} into {len(chunks)} chunks")
        return chunks

    def _paragraph_spans(self, text: str) -> Iterator[tuple[int, int]]:
        if not self.config.preserve_paragraphs:
            if text:
                yield 0, len(text)
            return

        cursor = 0
        for match in PARAGRAPH_BREAK.finditer(text):
            span = _strip_span(text, cursor, match.start())
            if span is not None:
                yield span
            cursor = match.end()
        span = _strip_span(text, cursor, len(text))
        if span is not None:
            yield span

    def _windows(self, text: str, para_start: int, para_end: int) -> Iterator[tuple[int, int]]:
        size = self.config.effective_size
        overlap = self.config.effective_overlap

        if para_end - para_start <= size:
            yield para_start, para_end
            return

        start = para_start
        while start < para_end:
            end = min(start + size, para_end)
            if end < para_end:
                end = self._find_cut(text, start, end, para_end)
            yield start, end
            if end >= para_end:
                break
            start = max(end - overlap, start + 1)

    def _find_cut(self, text: str, start: int, preferred_end: int, limit: int) -> int:
        if self.config.preserve_sentences:
            boundary = _find_sentence_boundary(text, start, preferred_end, limit)
            if boundary is not None:
                return boundary
        return _find_word_boundary(text, start, preferred_end, limit)

    @staticmethod
    def _make_chunk(
        document: Document, text: str, start: int, end: int, chunk_index: int
    ) -> Chunk | None:
        span = _strip_span(text, start, end)
        if span is None:
            return None
        start, end = span
        content = text[start:end]
        metadata: dict[str, Any] = {
            "chunk_index": chunk_index,
            "char_count": len(content),
            "word_count": len(content.split()),
        }
        return Chunk(
            id=f"{document.id}:{chunk_index}",
            document_id=document.id,
            content=content,
            start_index=start,
            end_index=end,
            chunk_index=chunk_index,
            metadata=metadata,
        )


def _strip_span(text: str, start: int, end: int) -> tuple[int, int] | None:
    """Shrink [start, end) to exclude surrounding whitespace; None if nothing is left."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end


def _find_sentence_boundary(text: str, start: int, preferred_end: int, limit: int) -> int | None:
    """Return the position just after the last sentence terminator near preferred_end."""
    search_start = max(start, preferred_end - SENTENCE_LOOKBACK)
    search_end = min(preferred_end + SENTENCE_LOOKAHEAD, limit)
    last = None
    for match in SENTENCE_END.finditer(text, search_start, search_end):
        last = match.end()
    if last is not None and last > start:
        return min(last, limit)
    return None


def _find_word_boundary(text: str, start: int, preferred_end: int, limit: int) -> int:
    """Return the position just after the last whitespace near preferred_end."""
    search_start = max(start, preferred_end - WORD_LOOKBACK)
    for i in range(min(preferred_end, limit - 1), search_start - 1, -1):
        if text[i].isspace():
            return i + 1
    return min(preferred_end, limit)


def chunk_document(
    document: Document, config: ChunkingConfig | None = None, **overrides: Any
) -> list[Chunk]:
    """Convenience function to chunk a document.

    Example:
        >>> doc = Document(title="t", content="Long text here...")
        >>> chunks = chunk_document(doc, chunk_size=200, chunk_overlap=20)
    """
    config = replace(config or ChunkingConfig(), **overrides)
    return BoundaryChunker(config).chunk(document)


def rechunk(document: Document, base: ChunkingConfig | None = None, **overrides: Any) -> list[Chunk]:
    """Re-chunk a document with changed options."""
    return chunk_document(document, base, **overrides)


def chunking_stats(chunks: list[Chunk]) -> ChunkingStats:
    if not chunks:
        return ChunkingStats(0, 0, 0, 0, 0)
    sizes = [len(chunk.content) for chunk in chunks]
    total = sum(sizes)
    return ChunkingStats(
        total_chunks=len(chunks),
        average_chunk_size=round(total / len(chunks)),
        min_chunk_size=min(sizes),
        max_chunk_size=max(sizes),
        total_characters=total,
    )
