"""Query-side helpers: cache keys, query rewriting, and snippet extraction."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

from passage_search.models import SearchQuery

SEARCH_KEY_PREFIX = "search:"

DEFAULT_REWRITE_MAX_RESULTS = 20
MAX_RESULTS_CEILING = 100
SNIPPET_FALLBACK_CHARS = 200
SNIPPET_MAX_SENTENCES = 2

ABBREVIATIONS: dict[str, str] = {
    "ai": "artificial intelligence",
    "ml": "machine learning",
    "nlp": "natural language processing",
    "db": "database",
}

_WHITESPACE = re.compile(r"\s+")
_SPECIAL_CHARS = re.compile(r"[^\w\s-]")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def _canonical_filters(query: SearchQuery) -> dict[str, Any] | None:
    if query.filters is None:
        return None
    canonical: dict[str, Any] = {}
    for clause in query.filters.clauses():
        data = clause.model_dump(mode="json", exclude={"kind"})
        canonical[clause.kind] = {
            key: sorted(value) if isinstance(value, list) else value
            for key, value in data.items()
        }
    return canonical


def search_cache_key(query: SearchQuery) -> str:
    """Derive a deterministic cache key from the query, limits, and filters.

    Filter field order and membership-set order never change the key.
    """
    payload = {
        "query": query.query,
        "max_results": query.max_results,
        "threshold": query.threshold,
        "filters": _canonical_filters(query),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
    return f"{SEARCH_KEY_PREFIX}{hashlib.sha256(encoded).hexdigest()}"


def normalize_query_text(text: str) -> str:
    """Lower-case, collapse whitespace, and replace characters outside [\\w\\s-]."""
    text = _WHITESPACE.sub(" ", text.lower().strip())
    text = _SPECIAL_CHARS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def expand_abbreviations(text: str, expansions: dict[str, str] | None = None) -> str:
    for abbrev, expansion in (expansions or ABBREVIATIONS).items():
        text = re.sub(rf"\b{re.escape(abbrev)}\b", expansion, text, flags=re.IGNORECASE)
    return text


def optimize_query(query: SearchQuery) -> SearchQuery:
    """Return a rewritten copy of the query.

    Falls back to the original text if normalization leaves nothing behind.
    """
    text = expand_abbreviations(normalize_query_text(query.query)) or query.query
    max_results = query.max_results
    if not max_results or max_results > MAX_RESULTS_CEILING:
        max_results = DEFAULT_REWRITE_MAX_RESULTS
    return query.model_copy(update={"query": text, "max_results": max_results})


def effective_max_results(query: SearchQuery, default: int) -> int:
    return min(query.max_results or default, MAX_RESULTS_CEILING)


def extract_relevant_text(content: str, query: str) -> str:
    """Pick up to two sentences mentioning a query word, else the chunk's opening."""
    words = query.lower().split()
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(content) if s.strip()]
    relevant = [s for s in sentences if any(word in s.lower() for word in words)]

    if relevant:
        return ". ".join(relevant[:SNIPPET_MAX_SENTENCES]) + "."

    snippet = content[:SNIPPET_FALLBACK_CHARS]
    return snippet + ("..." if len(content) > SNIPPET_FALLBACK_CHARS else "")
