"""Tests for citation extraction and source resolution on generated answers."""

from __future__ import annotations

from ragcore.models import RetrievedChunk
from ragcore.retrieval.citations import (
    extract_cited_pages,
    is_low_relevance,
    max_vector_similarity,
    resolve_sources_for_citations,
)


def _chunk(page: int, similarity: float, doc: str = "doc-1") -> RetrievedChunk:
    return RetrievedChunk(document_id=doc, filename=f"{doc}.pdf", page_number=page, text="text", similarity=similarity)


def test_extract_cited_pages_supports_all_forms():
    answer = "Premiums pause [p.4]. Limits apply [p.6-7, p.46]. Tiers [p.9,10]. Again [P.4] and [p.12-11]."
    assert extract_cited_pages(answer) == [4, 6, 7, 9, 10, 11, 12, 46]


def test_extract_cited_pages_ignores_other_brackets():
    assert extract_cited_pages("See [1] and [page 4].") == []


def test_low_relevance_uses_best_vector_match():
    chunks = [_chunk(1, 0.5), _chunk(2, 0.0)]
    assert max_vector_similarity(chunks) == 0.5
    assert is_low_relevance(chunks, 0.55)
    assert not is_low_relevance([_chunk(1, 0.6)], 0.55)
    assert is_low_relevance([], 0.55)


def test_resolve_sources_prefers_best_chunk_on_page():
    chunks = [_chunk(4, 0.62), _chunk(4, 0.7), _chunk(9, 0.0)]

    sources = resolve_sources_for_citations(chunks, [4, 9])

    assert [(s.page, s.similarity) for s in sources] == [(4, 0.7), (9, 0.0)]


def test_resolve_sources_falls_back_to_top_chunk_document():
    chunks = [_chunk(4, 0.81, doc="doc-a"), _chunk(5, 0.6, doc="doc-b")]

    sources = resolve_sources_for_citations(chunks, [4, 20, 20])

    assert [(s.document_id, s.page, s.similarity) for s in sources] == [("doc-a", 4, 0.81), ("doc-a", 20, 0.81)]


def test_resolve_sources_without_citations_is_empty():
    assert resolve_sources_for_citations([_chunk(1, 0.9)], []) == []
