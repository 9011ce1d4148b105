"""Vector index backends.

The nearest-neighbour index is an external collaborator behind the
`VectorIndex` interface:
- `LocalVectorIndex`: exact cosine search with numpy, persisted to Parquet
- `PineconeIndex`: adapter over a hosted Pinecone index
"""

from __future__ import annotations

import asyncio
import shutil
from abc import ABC, abstractmethod
from collections.abc import Collection
from pathlib import Path
from typing import Any

import numpy as np
from filelock import FileLock
from loguru import logger
from pydantic import BaseModel, Field

from passage_search.errors import ConfigurationError
from passage_search.models import IndexMatch


class IndexConfig(BaseModel):
    """Vector index configuration.

    Attributes:
        backend: Index backend ("local" or "pinecone")
        path: Storage directory for the local backend and the document registry
        index_name: Name of the hosted index (Pinecone)
        namespace: Optional namespace for multi-tenancy
        api_key: API key for hosted service
    """

    backend: str = Field(default="local", pattern="^(local|pinecone)$")
    path: str = "data/index"
    index_name: str | None = None
    namespace: str | None = None
    api_key: str | None = None


class VectorIndex(ABC):
    """Abstract base class for vector index implementations."""

    @property
    @abstractmethod
    def identifier(self) -> str:
        """Human-readable identifier of the backing store (path or index name)."""
        ...

    @abstractmethod
    async def open(self) -> None:
        """Create or load the index."""
        ...

    @abstractmethod
    async def insert(self, item_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        """Insert or replace one vector."""
        ...

    @abstractmethod
    async def delete(self, item_id: str) -> None:
        """Delete one vector; unknown ids are ignored."""
        ...

    @abstractmethod
    async def query(
        self, vector: list[float], k: int, ids: Collection[str] | None = None
    ) -> list[IndexMatch]:
        """Return up to k matches ranked by descending similarity.

        Args:
            vector: Query embedding
            k: Maximum number of matches
            ids: Optional candidate restriction
        """
        ...

    @abstractmethod
    async def persist(self) -> None:
        """Flush pending changes to durable storage."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every vector."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of stored vectors."""
        ...


class LocalVectorIndex(VectorIndex):
    """Exact cosine-similarity index held in memory and persisted as Parquet.

    Writes take a file lock next to the Parquet file so that two processes
    sharing a storage path never interleave a save.
    """

    FILE_NAME = "vectors.parquet"

    def __init__(self, storage_path: Path | str):
        self.storage_path = Path(storage_path)
        self.file_path = self.storage_path / self.FILE_NAME
        self.lock_path = self.storage_path / f".{self.FILE_NAME}.lock"
        self._vectors: dict[str, np.ndarray] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    @property
    def identifier(self) -> str:
        return str(self.storage_path)

    async def open(self) -> None:
        self._vectors.clear()
        self._metadata.clear()
        records = await asyncio.to_thread(self._read_records)
        if records is None:
            logger.info(f"Creating new vector index at {self.storage_path}")
            return

        for record in records:
            self._vectors[record["id"]] = _normalize(np.asarray(record["vector"], dtype="float32"))
            self._metadata[record["id"]] = {
                "document_id": record["document_id"],
                "chunk_index": int(record["chunk_index"]),
            }
        logger.info(f"Loaded {len(self._vectors)} vectors from {self.file_path}")

    async def insert(self, item_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        self._vectors[item_id] = _normalize(np.asarray(vector, dtype="float32"))
        self._metadata[item_id] = {
            "document_id": metadata.get("document_id", ""),
            "chunk_index": int(metadata.get("chunk_index", 0)),
        }

    async def delete(self, item_id: str) -> None:
        self._vectors.pop(item_id, None)
        self._metadata.pop(item_id, None)

    async def query(
        self, vector: list[float], k: int, ids: Collection[str] | None = None
    ) -> list[IndexMatch]:
        if k <= 0:
            return []
        if ids is None:
            keys = list(self._vectors)
        else:
            keys = [item_id for item_id in ids if item_id in self._vectors]
        if not keys:
            return []

        query = _normalize(np.asarray(vector, dtype="float32"))
        matrix = np.vstack([self._vectors[key] for key in keys])
        scores = matrix @ query

        if k < len(scores):
            top = np.argpartition(scores, -k)[-k:]
            top = top[np.argsort(-scores[top], kind="stable")]
        else:
            top = np.argsort(-scores, kind="stable")

        return [IndexMatch(id=keys[i], score=float(scores[i])) for i in top]

    async def persist(self) -> None:
        """Write every vector to Parquet off the event loop.

        The rows are snapshotted before the write starts, so inserts made
        while the file is being written land in the next save.
        """
        records = [
            {
                "id": item_id,
                "vector": vector.tolist(),
                "document_id": self._metadata[item_id]["document_id"],
                "chunk_index": self._metadata[item_id]["chunk_index"],
            }
            for item_id, vector in self._vectors.items()
        ]
        await asyncio.to_thread(self._write_records, records)
        logger.debug(f"Persisted {len(records)} vectors to {self.file_path}")

    async def clear(self) -> None:
        self._vectors.clear()
        self._metadata.clear()
        await asyncio.to_thread(self._reset_storage)

    async def count(self) -> int:
        return len(self._vectors)

    def _read_records(self) -> list[dict[str, Any]] | None:
        import pandas as pd

        self.storage_path.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            return None
        with FileLock(self.lock_path, timeout=30):
            df = pd.read_parquet(self.file_path, engine="pyarrow")
        return df.to_dict("records")

    def _write_records(self, records: list[dict[str, Any]]) -> None:
        import pandas as pd

        self.storage_path.mkdir(parents=True, exist_ok=True)
        df = pd.DataFrame(records, columns=["id", "vector", "document_id", "chunk_index"])
        with FileLock(self.lock_path, timeout=30):
            df.to_parquet(self.file_path, engine="pyarrow", compression="snappy", index=False)

    def _reset_storage(self) -> None:
        if self.storage_path.exists():
            shutil.rmtree(self.storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)


class PineconeIndex(VectorIndex):
    """Pinecone vector index adapter.

    Chunk ids are mirrored into a ``chunk_id`` metadata field so candidate
    restriction can be expressed as a metadata filter.
    """

    def __init__(
        self,
        index_name: str,
        api_key: str | None = None,
        namespace: str | None = None,
        client: Any | None = None,
    ):
        self.index_name = index_name
        self.namespace = namespace
        if client is None:
            from pinecone import Pinecone

            client = Pinecone(api_key=api_key).Index(index_name)
        self.index = client

    @property
    def identifier(self) -> str:
        return f"pinecone://{self.index_name}"

    async def open(self) -> None:
        self.index.describe_index_stats()

    async def insert(self, item_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        self.index.upsert(
            vectors=[
                {
                    "id": item_id,
                    "values": list(vector),
                    "metadata": {
                        "chunk_id": item_id,
                        "document_id": str(metadata.get("document_id", "")),
                        "chunk_index": int(metadata.get("chunk_index", 0)),
                    },
                }
            ],
            namespace=self.namespace,
        )

    async def delete(self, item_id: str) -> None:
        self.index.delete(ids=[item_id], namespace=self.namespace)

    async def query(
        self, vector: list[float], k: int, ids: Collection[str] | None = None
    ) -> list[IndexMatch]:
        if k <= 0:
            return []
        kwargs: dict[str, Any] = {}
        if ids is not None:
            kwargs["filter"] = {"chunk_id": {"$in": sorted(ids)}}
        results = self.index.query(
            vector=list(vector),
            top_k=k,
            namespace=self.namespace,
            include_metadata=False,
            include_values=False,
            **kwargs,
        )
        return [IndexMatch(id=match.id, score=float(match.score)) for match in results.matches]

    async def persist(self) -> None:
        # Pinecone writes are durable on upsert.
        return None

    async def clear(self) -> None:
        self.index.delete(delete_all=True, namespace=self.namespace)

    async def count(self) -> int:
        stats = self.index.describe_index_stats()
        return int(getattr(stats, "total_vector_count", 0) or 0)


def _normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


def create_vector_index(config: IndexConfig) -> VectorIndex:
    """Factory function to create a vector index from configuration."""
    if config.backend == "local":
        return LocalVectorIndex(Path(config.path))
    if config.backend == "pinecone":
        if not config.index_name:
            raise ConfigurationError("index_name is required for the pinecone backend", "index.index_name")
        return PineconeIndex(config.index_name, api_key=config.api_key, namespace=config.namespace)
    raise ConfigurationError(f"Unknown index backend {config.backend!r}", "index.backend")
