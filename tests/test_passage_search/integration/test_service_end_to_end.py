"""End-to-end tests for the passage search service with the local index."""

from unittest.mock import AsyncMock

import pytest

from passage_search.config import PassageSearchConfig, load_config
from passage_search.errors import SearchError
from passage_search.ingest import load_text_document
from passage_search.models import SearchQuery
from passage_search.service import PassageSearchService

pytestmark = pytest.mark.integration


@pytest.fixture
def config(tmp_path) -> PassageSearchConfig:
    return load_config(
        "default",
        overrides=[
            f"index.path={tmp_path / 'index'}",
            "chunking.chunk_size=80",
            "chunking.chunk_overlap=10",
            "logging.level=WARNING",
        ],
    )


@pytest.fixture
def corpus(make_document):
    return [
        make_document(
            "Neural network training relies on gradient descent.\n\n"
            "Deep learning models stack many neural layers.",
            title="Neural nets",
            file_type="pdf",
            author="Ada",
        ),
        make_document(
            "Protein folding determines cell function. Misfolded protein aggregates harm the cell.",
            title="Proteins",
            file_type="md",
            author="Grace",
        ),
        make_document(
            "Ocean temperatures track climate change across decades.",
            title="Oceans",
            file_type="txt",
            author="Ada",
        ),
    ]


class TestPassageSearchService:
    @pytest.mark.asyncio
    async def test_ingest_and_search(self, config, keyword_embedder, corpus):
        service = PassageSearchService.from_config(config, embedding_client=keyword_embedder)
        async with service:
            report = await service.ingest(corpus)
            assert report.failed == 0
            assert len(report.successful) == 3

            results = await service.search("protein cell", max_results=3)

            assert results[0].document.title == "Proteins"
            assert "protein" in results[0].relevant_text.lower()
            scores = [r.score for r in results]
            assert scores == sorted(scores, reverse=True)

        assert not service.search_cache.is_running
        assert not service.embedding_cache.is_running

    @pytest.mark.asyncio
    async def test_filters_restrict_results(self, config, keyword_embedder, corpus):
        async with PassageSearchService.from_config(
            config, embedding_client=keyword_embedder
        ) as service:
            await service.ingest(corpus)

            results = await service.search(
                SearchQuery(query="neural climate", filters={"authors": ["Ada"], "file_types": ["txt"]})
            )

            assert {r.document.title for r in results} == {"Oceans"}

    @pytest.mark.asyncio
    async def test_repeated_search_served_from_cache(self, config, keyword_embedder, corpus):
        async with PassageSearchService.from_config(
            config, embedding_client=keyword_embedder
        ) as service:
            await service.ingest(corpus)
            calls_after_ingest = keyword_embedder.calls

            first = await service.search("ocean climate")
            second = await service.search("ocean climate")

            assert [r.chunk.id for r in first] == [r.chunk.id for r in second]
            assert keyword_embedder.calls == calls_after_ingest + 1
            stats = service.orchestrator.search_stats()
            assert stats.cache_hits == 1
            assert stats.total_searches == 2

    @pytest.mark.asyncio
    async def test_remove_drops_results(self, config, keyword_embedder, corpus):
        async with PassageSearchService.from_config(
            config, embedding_client=keyword_embedder
        ) as service:
            await service.ingest(corpus)
            proteins = corpus[1]

            removed = await service.remove(proteins.id)
            results = await service.search("protein cell")

            assert removed >= 1
            assert all(r.document.id != proteins.id for r in results)

    @pytest.mark.asyncio
    async def test_ingest_text_files(self, config, keyword_embedder, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("Music theory and learning scales.", encoding="utf-8")

        async with PassageSearchService.from_config(
            config, embedding_client=keyword_embedder
        ) as service:
            await service.ingest([load_text_document(notes, author="Ada")])
            results = await service.search("music")

            assert results[0].document.title == "notes"
            assert results[0].document.metadata.author == "Ada"

    @pytest.mark.asyncio
    async def test_search_failure_surfaces_search_error(self, config, keyword_embedder):
        async def broken(text):
            raise ConnectionError("embedding service unreachable")

        keyword_embedder.embed_single = broken
        keyword_embedder.embed_batch = broken

        async with PassageSearchService.from_config(
            config, embedding_client=keyword_embedder
        ) as service:
            with pytest.raises(SearchError, match="unreachable"):
                await service.search("anything")

    @pytest.mark.asyncio
    async def test_close_releases_embedding_client(self, config, keyword_embedder):
        keyword_embedder.aclose = AsyncMock()

        async with PassageSearchService.from_config(
            config, embedding_client=keyword_embedder
        ) as service:
            keyword_embedder.aclose.assert_not_awaited()

        keyword_embedder.aclose.assert_awaited_once()
        assert service.embedder is not None
