"""Helpers for checking inline page citations in a generated answer against retrieval."""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from ragcore.models import RetrievalSource, RetrievedChunk

# [p.4], [p.4-5], [p.4-5, p.46], [p.4,5,6]
_CITATION = re.compile(r"\[p\.[^\]]+\]", re.IGNORECASE)
_RANGE = re.compile(r"^(\d+)\s*-\s*(\d+)$")
_PAGE_PREFIX = re.compile(r"^p\.", re.IGNORECASE)


def extract_cited_pages(answer: str) -> list[int]:
    """Return the distinct page numbers cited inline in ``answer``, ascending."""

    pages: set[int] = set()
    for match in _CITATION.findall(answer):
        body = _PAGE_PREFIX.sub("", match[1:-1])
        for segment in (part.strip() for part in body.split(",")):
            normalized = _PAGE_PREFIX.sub("", segment).strip()
            if not normalized:
                continue
            span = _RANGE.match(normalized)
            if span:
                start, end = sorted((int(span.group(1)), int(span.group(2))))
                pages.update(range(start, end + 1))
                continue
            digits = re.match(r"\d+", normalized)
            if digits:
                pages.add(int(digits.group(0)))
    return sorted(pages)


def max_vector_similarity(chunks: Iterable[RetrievedChunk]) -> float:
    return max((chunk.similarity for chunk in chunks), default=0.0)


def is_low_relevance(chunks: Sequence[RetrievedChunk], min_source_similarity: float) -> bool:
    """True when even the best vector match falls below the citation floor."""

    return max_vector_similarity(chunks) < min_source_similarity


def resolve_sources_for_citations(
    chunks: Sequence[RetrievedChunk],
    cited_pages: Sequence[int],
) -> list[RetrievalSource]:
    """Map each cited page to the best retrieved chunk on it.

    A page the model cited without any retrieved chunk on it falls back to the
    top-ranked chunk's document, keeping the cited page number.
    """

    if not cited_pages or not chunks:
        return []
    top = max(chunks, key=lambda chunk: chunk.similarity)
    best_by_page: dict[int, RetrievedChunk] = {}
    for chunk in chunks:
        current = best_by_page.get(chunk.page_number)
        if current is None or chunk.similarity > current.similarity:
            best_by_page[chunk.page_number] = chunk

    resolved: list[RetrievalSource] = []
    seen: set[tuple[str, int]] = set()
    for page in cited_pages:
        chunk = best_by_page.get(page, top)
        key = (chunk.document_id, page)
        if key in seen:
            continue
        seen.add(key)
        resolved.append(
            RetrievalSource(
                document_id=chunk.document_id,
                filename=chunk.filename,
                page=page,
                similarity=round(chunk.similarity, 2),
            )
        )
    return resolved


__all__ = [
    "extract_cited_pages",
    "is_low_relevance",
    "max_vector_similarity",
    "resolve_sources_for_citations",
]
