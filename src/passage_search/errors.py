"""Exception hierarchy for passage search.

Every error raised by the package derives from `PassageSearchError`, which
carries a message, an optional numeric code, and an optional context dict for
diagnostics. The search orchestrator surfaces a single `VectorStoreError`
subclass per failed call; partial results are never returned.
"""

from __future__ import annotations

from typing import Any, Literal

StoreOperation = Literal["initialization", "indexing", "search", "storage", "retrieval"]


class PassageSearchError(Exception):
    """Base exception for all passage search errors.

    Attributes:
        message: Human-readable description
        code: Optional numeric code for programmatic handling
        context: Optional diagnostic details (paths, queries, timings)
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.code is not None:
            return f"{self.message} (Code: {self.code})"
        return self.message


class VectorStoreError(PassageSearchError):
    """Failure of an index, registry, or search operation.

    Attributes:
        operation: Which store operation failed
        store_path: Identifier of the backing store (path or index name)
        cause: Original exception, also chained as ``__cause__``
    """

    _USER_MESSAGES: dict[str, str] = {
        "initialization": "Failed to initialize the vector store. Please check your configuration.",
        "indexing": "Failed to index documents in the vector store.",
        "search": "Search operation failed. Please try again with a different query.",
        "storage": "Failed to store data in the vector store.",
        "retrieval": "Failed to retrieve data from the vector store.",
    }

    def __init__(
        self,
        message: str,
        operation: StoreOperation,
        store_path: str | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        merged = dict(context or {})
        merged.update({"operation": operation, "store_path": store_path})
        if cause is not None:
            merged["cause"] = str(cause)
        super().__init__(message, code=None, context=merged)
        self.operation = operation
        self.store_path = store_path
        self.cause = cause

    def user_message(self) -> str:
        return self._USER_MESSAGES.get(self.operation, "A vector store operation failed.")


class NotInitializedError(VectorStoreError):
    """Operation invoked before the index and registry were initialized."""

    def __init__(self, operation: StoreOperation, store_path: str | None = None) -> None:
        super().__init__("Vector store not initialized", operation, store_path)


class MissingEmbeddingError(VectorStoreError):
    """A chunk handed to the indexer carries no embedding vector."""

    def __init__(self, chunk_id: str, store_path: str | None = None) -> None:
        super().__init__(
            f"Chunk {chunk_id} missing embedding",
            "indexing",
            store_path,
            context={"chunk_id": chunk_id},
        )
        self.chunk_id = chunk_id


class SearchError(VectorStoreError):
    """Any failure inside the search pipeline, wrapping the underlying cause."""

    def __init__(
        self,
        query: str,
        elapsed_ms: float,
        store_path: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        reason = str(cause) if cause is not None else "Unknown error"
        super().__init__(
            f"Search failed: {reason}",
            "search",
            store_path,
            context={"query": query, "elapsed_ms": round(elapsed_ms, 2)},
            cause=cause,
        )
        self.query = query
        self.elapsed_ms = elapsed_ms


class EmbeddingError(PassageSearchError):
    """Embedding generation failed.

    Attributes:
        model_name: Embedding model identifier
        operation: "embedding" or "batch_processing"
    """

    def __init__(
        self,
        message: str,
        model_name: str,
        operation: Literal["embedding", "batch_processing"] = "embedding",
        context: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(context or {})
        merged.update({"model_name": model_name, "operation": operation})
        super().__init__(message, context=merged)
        self.model_name = model_name
        self.operation = operation


class ConfigurationError(PassageSearchError):
    """Invalid or missing configuration value."""

    def __init__(self, message: str, config_key: str | None = None) -> None:
        super().__init__(message, context={"config_key": config_key})
        self.config_key = config_key

    def __str__(self) -> str:
        if self.config_key:
            return f"Configuration error in {self.config_key!r}: {self.message}"
        return f"Configuration error: {self.message}"
