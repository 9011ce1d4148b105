"""Unit tests for the document registry and its JSON snapshot."""

import json

import pytest

from passage_search.models import Chunk, Document
from passage_search.registry import SNAPSHOT_FILE, DocumentRegistry


def _chunks(doc_id: str, count: int) -> list[Chunk]:
    return [
        Chunk(
            id=f"{doc_id}:{i}",
            document_id=doc_id,
            content=f"chunk {i}",
            start_index=i * 10,
            end_index=i * 10 + 7,
            chunk_index=i,
            embedding=[0.5, 0.5],
        )
        for i in range(count)
    ]


@pytest.fixture
def registry(tmp_path) -> DocumentRegistry:
    return DocumentRegistry(tmp_path / SNAPSHOT_FILE)


class TestDocumentRegistry:
    def test_add_sets_chunk_ids(self, registry):
        document = Document(id="a", title="A", content="...")
        registry.add(document, _chunks("a", 2))

        assert document.chunk_ids == ["a:0", "a:1"]
        assert len(registry) == 1
        assert registry.chunk_count == 2

    def test_chunks_for_sorted_by_index(self, registry):
        chunks = _chunks("a", 3)
        registry.add(Document(id="a", title="A", content="..."), reversed(chunks))

        assert [c.chunk_index for c in registry.chunks_for("a")] == [0, 1, 2]

    def test_remove_returns_chunks(self, registry):
        registry.add(Document(id="a", title="A", content="..."), _chunks("a", 2))
        registry.add(Document(id="b", title="B", content="..."), _chunks("b", 1))

        removed = registry.remove("a")

        assert [c.id for c in removed] == ["a:0", "a:1"]
        assert registry.get_document("a") is None
        assert registry.get_chunk("a:0") is None
        assert registry.chunk_count == 1
        assert registry.remove("missing") == []

    def test_save_and_load_roundtrip_without_embeddings(self, registry):
        registry.add(Document(id="a", title="A", content="..."), _chunks("a", 2))
        registry.save()

        data = json.loads(registry.path.read_text())
        assert all(chunk["embedding"] is None for chunk in data["chunks"].values())
        assert data["last_updated"] is not None

        reloaded = DocumentRegistry(registry.path)
        reloaded.load()
        assert reloaded.get_document("a").chunk_ids == ["a:0", "a:1"]
        assert reloaded.get_chunk("a:1").content == "chunk 1"
        assert not registry.path.with_suffix(".tmp").exists()

    def test_load_missing_file_starts_empty(self, tmp_path):
        registry = DocumentRegistry(tmp_path / "absent.json")
        registry.load()
        assert len(registry) == 0

    def test_corrupt_snapshot_backed_up(self, registry):
        registry.path.write_text("{not json")

        registry.load()

        assert len(registry) == 0
        backup = registry.path.with_suffix(".json.bak")
        assert backup.read_text() == "{not json"

    def test_memory_only_registry(self):
        registry = DocumentRegistry()
        registry.add(Document(id="a", title="A", content="..."), _chunks("a", 1))
        registry.save()
        registry.load()

        assert len(registry) == 0

    def test_clear(self, registry):
        registry.add(Document(id="a", title="A", content="..."), _chunks("a", 1))
        registry.clear()

        assert registry.documents() == []
        assert list(registry.iter_chunks()) == []
