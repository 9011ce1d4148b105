"""Unit tests for query rewriting, cache keys, and snippet extraction."""

from datetime import datetime

import pytest

from passage_search.models import SearchFilters, SearchQuery
from passage_search.query import (
    SEARCH_KEY_PREFIX,
    effective_max_results,
    expand_abbreviations,
    extract_relevant_text,
    normalize_query_text,
    optimize_query,
    search_cache_key,
)


class TestSearchCacheKey:
    def test_key_has_prefix(self):
        key = search_cache_key(SearchQuery(query="hello"))
        assert key.startswith(SEARCH_KEY_PREFIX)

    def test_filter_order_does_not_change_key(self):
        first = SearchQuery(
            query="neural networks",
            filters={"file_types": ["pdf", "md"], "authors": ["Ada", "Grace"]},
        )
        second = SearchQuery(
            query="neural networks",
            filters={"authors": ["Grace", "Ada"], "file_types": ["md", "pdf"]},
        )

        assert search_cache_key(first) == search_cache_key(second)

    def test_date_range_participates(self):
        base = SearchQuery(query="q")
        dated = SearchQuery(
            query="q",
            filters=SearchFilters(date_range={"start": datetime(2024, 1, 1)}),
        )
        assert search_cache_key(base) != search_cache_key(dated)

    @pytest.mark.parametrize(
        "changes",
        [{"query": "other"}, {"max_results": 3}, {"threshold": 0.5}],
    )
    def test_distinct_fields_distinct_keys(self, changes):
        base = SearchQuery(query="text")
        changed = SearchQuery(**{"query": "text", **changes})
        assert search_cache_key(base) != search_cache_key(changed)


class TestQueryRewriting:
    def test_normalize(self):
        assert normalize_query_text("  Hello,   WORLD!  ") == "hello world"

    def test_normalize_keeps_hyphens(self):
        assert normalize_query_text("state-of-the-art") == "state-of-the-art"

    def test_expand_abbreviations_whole_words(self):
        assert expand_abbreviations("ml and ai") == "machine learning and artificial intelligence"
        assert expand_abbreviations("html") == "html"

    def test_optimize_sets_default_limit(self):
        optimized = optimize_query(SearchQuery(query="NLP tools", max_results=None))

        assert optimized.query == "natural language processing tools"
        assert optimized.max_results == 20

    def test_optimize_caps_limit(self):
        assert optimize_query(SearchQuery(query="x", max_results=500)).max_results == 20

    def test_optimize_keeps_valid_limit(self):
        assert optimize_query(SearchQuery(query="x", max_results=7)).max_results == 7

    def test_optimize_falls_back_to_original_text(self):
        assert optimize_query(SearchQuery(query="???")).query == "???"

    def test_effective_max_results(self):
        assert effective_max_results(SearchQuery(query="x", max_results=None), 10) == 10
        assert effective_max_results(SearchQuery(query="x", max_results=250), 10) == 100


class TestExtractRelevantText:
    def test_matching_sentences(self):
        content = "Cats sleep. Neural nets learn. Dogs bark. Networks of neurons fire."
        snippet = extract_relevant_text(content, "neural networks")

        assert snippet == "Neural nets learn. Networks of neurons fire."

    def test_at_most_two_sentences(self):
        content = "A cache. B cache. C cache."
        assert extract_relevant_text(content, "cache") == "A cache. B cache."

    def test_fallback_truncates(self):
        content = "z" * 250
        snippet = extract_relevant_text(content, "nothing")

        assert snippet == "z" * 200 + "..."

    def test_fallback_short_content(self):
        assert extract_relevant_text("Plain text", "absent") == "Plain text"
