"""Embedding client abstraction for model-agnostic vector generation.

The embedding model itself is an external collaborator: anything satisfying
`EmbeddingClient` can be plugged in. `OpenAIEmbedding` is the bundled remote
client; `CachedEmbedder` layers text preprocessing, batching, and a dedicated
`BoundedCache` on top of any client.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from collections.abc import Sequence
from typing import Protocol

import httpx
from loguru import logger
from openai import AsyncOpenAI, RateLimitError
from pydantic import BaseModel, Field

from passage_search.cache import BoundedCache
from passage_search.errors import EmbeddingError
from passage_search.models import Chunk

EMBEDDING_KEY_PREFIX = "embedding:"

_WHITESPACE = re.compile(r"\s+")


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        model: Model identifier (e.g., "openai/text-embedding-3-small")
        version: Version tag for reindexing triggers (e.g., "v1")
        dimensions: Expected embedding dimensionality
        batch_size: Number of texts to embed per API call
        max_retries: Maximum retry attempts for transient failures
        timeout_seconds: API request timeout
        max_input_chars: Texts are clamped to this many characters before embedding
        api_key: API key for external services (set via env var)
    """

    model: str = "openai/text-embedding-3-small"
    version: str = "v1"
    dimensions: int = Field(default=1536, ge=2, le=4096)
    batch_size: int = Field(default=100, ge=1, le=500)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    max_input_chars: int = Field(default=8000, ge=1)
    api_key: str | None = None


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts, in input order."""
        ...

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        ...


class OpenAIEmbedding:
    """OpenAI embedding client with retry logic and batching."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self.client = AsyncOpenAI(api_key=config.api_key, timeout=config.timeout_seconds)
        # Extract model name (strip "openai/" prefix if present)
        self.model_name = config.model.removeprefix("openai/")

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts with retry logic.

        Raises:
            ValueError: If batch size exceeds config limit or dimensions mismatch
            httpx.HTTPError: For API failures after all retries
        """
        if len(texts) > self.config.batch_size:
            raise ValueError(f"Batch size {len(texts)} exceeds limit {self.config.batch_size}")

        if not texts:
            return []

        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.embeddings.create(model=self.model_name, input=texts)

                # Extract vectors in original order
                embeddings = [item.embedding for item in response.data]

                # Validate dimensionality
                for i, emb in enumerate(embeddings):
                    if len(emb) != self.config.dimensions:
                        raise ValueError(
                            f"Expected {self.config.dimensions} dimensions, "
                            f"got {len(emb)} for text {i}"
                        )

                logger.debug(
                    f"Embedded {len(texts)} texts with {self.model_name} "
                    f"(attempt {attempt + 1}/{self.config.max_retries})"
                )
                return embeddings

            except httpx.TimeoutException as e:
                logger.warning(
                    f"Timeout embedding batch "
                    f"(attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2**attempt)  # Exponential backoff
                else:
                    raise

            except RateLimitError as e:
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2 ** (attempt + 1))  # Longer backoff
                else:
                    raise

        raise RuntimeError("Exhausted all retry attempts")

    async def embed_single(self, text: str) -> list[float]:
        embeddings = await self.embed_batch([text])
        return embeddings[0]

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self.client.close()


def preprocess_text(text: str, max_chars: int) -> str:
    """Trim, collapse whitespace, and clamp text to the model's input size."""
    return _WHITESPACE.sub(" ", text).strip()[:max_chars]


class CachedEmbedder:
    """Embedding client decorator adding preprocessing, batching, and caching.

    Vectors are cached under ``embedding:{model}:{sha256(text)}`` in a cache
    owned by the embedding layer, so search-result traffic can never evict
    them. The wrapped client is assumed deterministic for identical input.
    """

    def __init__(
        self,
        client: EmbeddingClient,
        config: EmbeddingConfig,
        cache: BoundedCache[list[float]] | None = None,
    ):
        self.client = client
        self.config = config
        self.cache = cache

    def cache_key(self, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"{EMBEDDING_KEY_PREFIX}{self.config.model}:{digest}"

    def _prepare(self, text: str) -> str:
        clean = preprocess_text(text, self.config.max_input_chars)
        if not clean:
            raise EmbeddingError("Empty text provided for embedding", self.config.model)
        return clean

    async def embed_single(self, text: str) -> list[float]:
        clean = self._prepare(text)
        if self.cache is None:
            return await self.client.embed_single(clean)
        return await self.cache.get_or_set(
            self.cache_key(clean), lambda: self.client.embed_single(clean)
        )

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in input order, fetching only cache misses from the client."""
        prepared = [self._prepare(text) for text in texts]
        vectors: list[list[float] | None] = [None] * len(prepared)
        missing: dict[str, list[int]] = {}

        # Identical texts share one lookup and one slot in the request
        for i, text in enumerate(prepared):
            cached = self.cache.get(self.cache_key(text)) if self.cache is not None else None
            if cached is not None:
                vectors[i] = cached
            else:
                missing.setdefault(text, []).append(i)

        pending = list(missing)
        step = self.config.batch_size
        for offset in range(0, len(pending), step):
            batch = pending[offset : offset + step]
            embedded = await self.client.embed_batch(batch)
            if len(embedded) != len(batch):
                raise EmbeddingError(
                    f"Embedder returned {len(embedded)} vectors for {len(batch)} texts",
                    self.config.model,
                    "batch_processing",
                )
            for text, vector in zip(batch, embedded, strict=True):
                if self.cache is not None:
                    self.cache.set(self.cache_key(text), vector)
                for i in missing[text]:
                    vectors[i] = vector
            if len(pending) > step:
                logger.info(
                    f"Generated embeddings: {min(offset + step, len(pending))}/{len(pending)}"
                )

        return [v for v in vectors if v is not None]

    async def embed_chunks(self, chunks: Sequence[Chunk]) -> list[Chunk]:
        """Return copies of the chunks with embeddings attached."""
        if not chunks:
            return []
        logger.debug(f"Generating embeddings for {len(chunks)} chunks")
        vectors = await self.embed_batch([chunk.content for chunk in chunks])
        return [chunk.with_embedding(vector) for chunk, vector in zip(chunks, vectors, strict=True)]

    async def aclose(self) -> None:
        """Close the wrapped client if it holds network resources."""
        aclose = getattr(self.client, "aclose", None)
        if aclose is not None:
            await aclose()


def create_embedding_client(config: EmbeddingConfig) -> EmbeddingClient:
    """Factory function to create embedding client based on model config.

    Example:
        >>> config = EmbeddingConfig(model="openai/text-embedding-3-small", api_key="sk-...")
        >>> client = create_embedding_client(config)
    """
    if config.model.startswith("openai/"):
        return OpenAIEmbedding(config)
    raise ValueError(f"Unknown model prefix in {config.model!r}. Expected 'openai/'")
