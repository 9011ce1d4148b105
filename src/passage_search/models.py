"""Pydantic models for documents, chunks, queries, and search results.

All data flowing between the chunker, the registry, and the search
orchestrator is validated against these schemas.
"""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class DocumentMetadata(BaseModel):
    """Metadata describing an ingested source file.

    Attributes:
        file_path: Path of the source file, if any
        file_type: Short format tag (e.g. "pdf", "md", "txt")
        author: Optional author name
        created_at: Creation timestamp
        last_modified: Last modification timestamp (used by date filters)
        size: Size of the source in bytes

    Format-specific fields (page count, language, keywords, ...) are accepted
    as extra attributes.
    """

    model_config = ConfigDict(extra="allow")

    file_path: str | None = None
    file_type: str = "txt"
    author: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_modified: datetime = Field(default_factory=lambda: datetime.now(UTC))
    size: int = Field(default=0, ge=0)


class Document(BaseModel):
    """A document and the ids of the chunks it owns."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str
    content: str
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    chunk_ids: list[str] = Field(default_factory=list)


class Chunk(BaseModel):
    """A bounded substring of a document used as the unit of retrieval.

    Chunks are immutable; `with_embedding` returns a copy carrying a vector.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    content: str = Field(min_length=1)
    start_index: int = Field(ge=0)
    end_index: int
    chunk_index: int = Field(ge=0)
    embedding: list[float] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_offsets(self) -> Chunk:
        """Ensure the chunk spans a non-empty range."""
        if self.end_index <= self.start_index:
            raise ValueError(
                f"Invalid offsets: start={self.start_index}, end={self.end_index}"
            )
        return self

    @field_validator("embedding")
    @classmethod
    def validate_embedding(cls, v: list[float] | None) -> list[float] | None:
        """Ensure vector contains valid finite floats."""
        if v is None:
            return v
        for i, val in enumerate(v):
            if not math.isfinite(val):
                raise ValueError(f"Vector contains non-finite value at index {i}: {val}")
        return v

    def with_embedding(self, vector: list[float]) -> Chunk:
        return self.model_copy(update={"embedding": [float(x) for x in vector]})


class FileTypeFilter(BaseModel):
    """Accept documents whose file type is in the given set."""

    kind: Literal["file_type"] = "file_type"
    file_types: list[str] = Field(default_factory=list)

    def matches(self, document: Document) -> bool:
        if not self.file_types:
            return True
        return document.metadata.file_type in self.file_types


class AuthorFilter(BaseModel):
    """Accept documents whose author is in the given set."""

    kind: Literal["author"] = "author"
    authors: list[str] = Field(default_factory=list)

    def matches(self, document: Document) -> bool:
        if not self.authors:
            return True
        author = document.metadata.author
        return author is not None and author in self.authors


class DateRangeFilter(BaseModel):
    """Accept documents last modified within an inclusive date range."""

    kind: Literal["date_range"] = "date_range"
    start: datetime | None = None
    end: datetime | None = None

    def matches(self, document: Document) -> bool:
        modified = _as_utc(document.metadata.last_modified)
        if self.start is not None and modified < _as_utc(self.start):
            return False
        if self.end is not None and modified > _as_utc(self.end):
            return False
        return True


MetadataFilter = FileTypeFilter | AuthorFilter | DateRangeFilter


class SearchFilters(BaseModel):
    """Metadata filters combined with logical AND.

    Example:
        >>> SearchFilters.model_validate({"file_types": ["pdf"], "authors": ["Ada"]})
    """

    file_types: FileTypeFilter | None = None
    authors: AuthorFilter | None = None
    date_range: DateRangeFilter | None = None

    @field_validator("file_types", mode="before")
    @classmethod
    def _coerce_file_types(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple, set, frozenset)):
            return {"file_types": list(v)}
        return v

    @field_validator("authors", mode="before")
    @classmethod
    def _coerce_authors(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple, set, frozenset)):
            return {"authors": list(v)}
        return v

    def clauses(self) -> list[MetadataFilter]:
        return [c for c in (self.file_types, self.authors, self.date_range) if c is not None]

    def is_empty(self) -> bool:
        return not self.clauses()

    def matches(self, document: Document) -> bool:
        return all(clause.matches(document) for clause in self.clauses())


class SearchQuery(BaseModel):
    """A free-text search request.

    Attributes:
        query: Natural language query text
        max_results: Maximum number of results (default 10, capped at 100)
        threshold: Optional similarity floor (0.0-1.0)
        filters: Optional metadata filters
    """

    query: str = Field(min_length=1, max_length=1000)
    max_results: int | None = Field(default=10, ge=1)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    filters: SearchFilters | None = None


class SearchResult(BaseModel):
    """A matched chunk, its owning document, and the raw index score."""

    chunk: Chunk
    document: Document
    score: float
    relevant_text: str


class IndexMatch(BaseModel):
    """Raw hit returned by a vector index (higher score is more similar)."""

    id: str
    score: float


class SlowQuery(BaseModel):
    query: str
    duration_ms: float
    timestamp: datetime


class SearchStats(BaseModel):
    """Snapshot of search performance counters."""

    total_searches: int = 0
    cache_hits: int = 0
    average_search_time_ms: float = 0.0
    slow_queries: list[SlowQuery] = Field(default_factory=list)
    cache_hit_rate: float = 0.0
    cache_stats: dict[str, Any] | None = None


class SlowQueryAnalysis(BaseModel):
    slow_query_count: int = 0
    average_slow_time_ms: float = 0.0
    common_patterns: dict[str, int] = Field(default_factory=dict)
    recent_slow_queries: list[SlowQuery] = Field(default_factory=list)


class IndexSummary(BaseModel):
    total_documents: int = Field(ge=0)
    total_chunks: int = Field(ge=0)
    indexed_vectors: int = Field(ge=0)


class IngestFailure(BaseModel):
    document_id: str
    title: str
    error: str


class IngestReport(BaseModel):
    """Outcome of a batch ingestion; failures never abort the batch."""

    successful: list[str] = Field(default_factory=list)
    failures: list[IngestFailure] = Field(default_factory=list)
    total_chunks: int = 0
    elapsed_ms: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.failures)
