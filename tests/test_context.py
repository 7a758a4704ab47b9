"""Tests for context assembly budgets and citation sources."""

from __future__ import annotations

import pytest

from ragcore.models import RetrievedChunk
from ragcore.retrieval.context import CONTEXT_SEPARATOR, ContextAssembler, ContextBudget


def _chunk(page: int, text: str, similarity: float = 0.6, filename: str = "guide.pdf") -> RetrievedChunk:
    return RetrievedChunk(document_id="doc-1", filename=filename, page_number=page, text=text, similarity=similarity)


def test_blocks_are_labelled_and_separated():
    assembler = ContextAssembler()
    context = assembler.build_context([_chunk(19, "alpha"), _chunk(30, "beta")])
    assert context == f"[guide.pdf, Page 19]\nalpha{CONTEXT_SEPARATOR}[guide.pdf, Page 30]\nbeta"


def test_empty_chunks_give_empty_context():
    assert ContextAssembler().build_context([]) == ""


def test_chunk_count_budget():
    assembler = ContextAssembler(ContextBudget(max_context_chunks=2))
    context = assembler.build_context([_chunk(page, "text") for page in range(1, 5)])
    assert context.count("[guide.pdf, Page") == 2


def test_char_budget_stops_before_overflow():
    assembler = ContextAssembler(ContextBudget(max_context_chars=600))
    chunks = [_chunk(1, "a" * 300), _chunk(2, "b" * 300), _chunk(3, "c" * 10)]

    context = assembler.build_context(chunks)

    assert "Page 1" in context
    assert "Page 2" not in context
    assert "Page 3" not in context


@pytest.mark.parametrize("budget", [500, 777, 1200, 5000])
def test_context_never_exceeds_char_budget(budget: int):
    assembler = ContextAssembler(ContextBudget(max_context_chars=budget))
    chunks = [_chunk(page, "x" * (page * 37)) for page in range(1, 40)]
    assert len(assembler.build_context(chunks)) <= budget


def test_oversized_first_chunk_is_truncated():
    assembler = ContextAssembler(ContextBudget(max_context_chars=500))

    context = assembler.build_context([_chunk(7, "z" * 2000), _chunk(8, "short")])

    assert context.startswith("[guide.pdf, Page 7]\nzzz")
    assert len(context) == 500
    assert "Page 8" not in context


def test_sources_dedupe_and_filter_by_similarity():
    assembler = ContextAssembler(ContextBudget(min_source_similarity=0.55))
    chunks = [
        _chunk(19, "a", 0.6049),
        _chunk(19, "a2", 0.58),
        _chunk(30, "b", 0.55),
        _chunk(31, "c", 0.54),
        _chunk(19, "other file", 0.9, filename="other.pdf"),
        _chunk(40, "expanded", 0.0),
    ]

    sources = assembler.build_sources(chunks)

    assert [(s.filename, s.page, s.similarity) for s in sources] == [
        ("guide.pdf", 19, 0.6),
        ("guide.pdf", 30, 0.55),
        ("other.pdf", 19, 0.9),
    ]
    assert len({(s.filename, s.page) for s in sources}) == len(sources)


def test_reported_source_similarity_never_falls_below_floor():
    assembler = ContextAssembler(ContextBudget(min_source_similarity=0.554))

    sources = assembler.build_sources([_chunk(5, "near floor", 0.5541), _chunk(6, "clear", 0.556)])

    assert [(s.page, s.similarity) for s in sources] == [(6, 0.56)]


def test_sources_include_pages_cut_from_context():
    assembler = ContextAssembler(ContextBudget(max_context_chunks=1))
    chunks = [_chunk(1, "first", 0.8), _chunk(12, "cut", 0.7)]

    assert "Page 12" not in assembler.build_context(chunks)
    assert [source.page for source in assembler.build_sources(chunks)] == [1, 12]


def test_assembly_is_repeatable():
    assembler = ContextAssembler(ContextBudget(max_context_chars=700))
    chunks = [_chunk(page, "text " * page, 0.5 + page / 100) for page in range(1, 10)]
    assert assembler.build_context(chunks) == assembler.build_context(chunks)
    assert assembler.build_sources(chunks) == assembler.build_sources(chunks)
