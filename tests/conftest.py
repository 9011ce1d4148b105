"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable
- Tests have a deterministic, offline embedding client
"""

from __future__ import annotations

import hashlib
import sys
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from passage_search.models import Document, DocumentMetadata  # noqa: E402

KEYWORDS = [
    "neural",
    "network",
    "protein",
    "cell",
    "database",
    "query",
    "cache",
    "ocean",
    "climate",
    "music",
    "learning",
    "intelligence",
]


class KeywordEmbedder:
    """Offline embedder: one dimension per keyword plus a hashed bias dimension.

    Texts sharing keywords get high cosine similarity, unrelated texts low.
    Calls are counted so tests can assert on caching.
    """

    dimensions = len(KEYWORDS) + 1

    def __init__(self) -> None:
        self.calls = 0
        self.texts: list[str] = []

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        vector = [float(lowered.count(word)) for word in KEYWORDS]
        digest = hashlib.sha256(lowered.encode()).digest()
        vector.append(0.05 + digest[0] / 2550)
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        self.texts.extend(texts)
        return [self._vector(text) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]


@pytest.fixture
def keyword_embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def make_document():
    """Factory for documents with metadata."""

    def _make(
        content: str,
        *,
        title: str = "Test document",
        doc_id: str | None = None,
        file_type: str = "txt",
        author: str | None = None,
        **metadata,
    ) -> Document:
        kwargs = {"title": title, "content": content}
        if doc_id is not None:
            kwargs["id"] = doc_id
        return Document(
            **kwargs,
            metadata=DocumentMetadata(file_type=file_type, author=author, **metadata),
        )

    return _make
