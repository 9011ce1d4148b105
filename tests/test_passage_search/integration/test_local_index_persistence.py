"""Integration tests for the on-disk local index and registry snapshot.

These tests create real files in a temporary directory.

Run with: pytest tests/test_passage_search/integration/test_local_index_persistence.py -v
"""

import pytest

from passage_search.embedding import CachedEmbedder, EmbeddingConfig
from passage_search.index import LocalVectorIndex
from passage_search.ingest import DocumentIngestor
from passage_search.models import SearchQuery
from passage_search.registry import SNAPSHOT_FILE, DocumentRegistry
from passage_search.search import SearchOrchestrator

pytestmark = pytest.mark.integration


def _orchestrator(path, keyword_embedder) -> tuple[SearchOrchestrator, CachedEmbedder]:
    config = EmbeddingConfig(model="openai/test", dimensions=keyword_embedder.dimensions)
    embedder = CachedEmbedder(keyword_embedder, config)
    orchestrator = SearchOrchestrator(
        embedder, LocalVectorIndex(path), DocumentRegistry(path / SNAPSHOT_FILE)
    )
    return orchestrator, embedder


class TestLocalVectorIndexPersistence:
    @pytest.mark.asyncio
    async def test_vectors_survive_reopen(self, tmp_path):
        index = LocalVectorIndex(tmp_path)
        await index.open()
        await index.insert("a", [1.0, 0.0, 0.0], {"document_id": "d", "chunk_index": 0})
        await index.insert("b", [0.0, 1.0, 0.0], {"document_id": "d", "chunk_index": 1})
        await index.persist()

        reopened = LocalVectorIndex(tmp_path)
        await reopened.open()

        assert await reopened.count() == 2
        matches = await reopened.query([0.0, 1.0, 0.0], k=1)
        assert matches[0].id == "b"

    @pytest.mark.asyncio
    async def test_open_without_file_creates_directory(self, tmp_path):
        index = LocalVectorIndex(tmp_path / "fresh")
        await index.open()

        assert index.storage_path.is_dir()
        assert await index.count() == 0


class TestOrchestratorPersistence:
    @pytest.mark.asyncio
    async def test_documents_and_vectors_reload(self, tmp_path, keyword_embedder, make_document):
        orchestrator, embedder = _orchestrator(tmp_path, keyword_embedder)
        await orchestrator.initialize()
        ingestor = DocumentIngestor(orchestrator, embedder)
        document = make_document("Protein folding in the cell.", title="Proteins")
        await ingestor.ingest(document)

        reopened, _ = _orchestrator(tmp_path, keyword_embedder)
        await reopened.initialize()

        assert [d.title for d in reopened.get_documents()] == ["Proteins"]
        results = await reopened.search(SearchQuery(query="protein cell"))
        assert results[0].document.id == document.id
        assert (tmp_path / SNAPSHOT_FILE).exists()

    @pytest.mark.asyncio
    async def test_clear_persists_empty_state(self, tmp_path, keyword_embedder, make_document):
        orchestrator, embedder = _orchestrator(tmp_path, keyword_embedder)
        await orchestrator.initialize()
        await DocumentIngestor(orchestrator, embedder).ingest(make_document("Ocean climate."))

        await orchestrator.clear()

        reopened, _ = _orchestrator(tmp_path, keyword_embedder)
        await reopened.initialize()
        summary = await reopened.get_stats()
        assert summary.total_documents == 0
        assert summary.indexed_vectors == 0

    @pytest.mark.asyncio
    async def test_remove_persists(self, tmp_path, keyword_embedder, make_document):
        orchestrator, embedder = _orchestrator(tmp_path, keyword_embedder)
        await orchestrator.initialize()
        ingestor = DocumentIngestor(orchestrator, embedder)
        keep = make_document("Music learning.", title="Keep")
        drop = make_document("Database query cache.", title="Drop")
        await ingestor.ingest_many([keep, drop])

        assert await orchestrator.remove_document(drop.id) == 1

        reopened, _ = _orchestrator(tmp_path, keyword_embedder)
        await reopened.initialize()
        assert [d.id for d in reopened.get_documents()] == [keep.id]
        assert await reopened.index.count() == 1
