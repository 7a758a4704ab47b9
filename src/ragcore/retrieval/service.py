"""Vector retrieval with page expansion."""

from __future__ import annotations

import time
from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Sequence

from ragcore.cache import EmbeddingCache
from ragcore.deadline import CapabilityRunner
from ragcore.embeddings import ChunkStore, EmbeddingBackend, Vector
from ragcore.metrics.observability import PipelineMetrics, get_logger
from ragcore.models import RetrievedChunk

_DEDUP_PREFIX_CHARS = 120


class RetrievalError(RuntimeError):
    """Raised when the query cannot be embedded or the similarity search fails."""


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for vector retrieval."""

    match_threshold: float = 0.45
    match_count: int = 4
    strong_match_similarity: float = 0.50
    max_vector_matches_for_expansion: int = 3
    max_pages_for_expansion: int = 3

    @property
    def expansion_enabled(self) -> bool:
        return self.max_vector_matches_for_expansion > 0 and self.max_pages_for_expansion > 0


@dataclass
class RetrievalTrace:
    """Stage timings and counts for one ``retrieve`` call."""

    match_count: int = 0
    expanded_count: int = 0
    timings: dict[str, float] = field(default_factory=dict)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def _dedup_key(chunk: RetrievedChunk) -> tuple[str, int, str]:
    return (chunk.document_id, chunk.page_number, chunk.text[:_DEDUP_PREFIX_CHARS])


def expansion_pages(
    matches: Sequence[RetrievedChunk],
    *,
    strong_match_similarity: float,
    max_seeds: int,
    max_pages: int,
) -> list[tuple[str, int]]:
    """Distinct (document, page) pairs of the strongest matches, best first."""

    ranked = sorted(matches, key=lambda chunk: chunk.similarity, reverse=True)
    seeds = [chunk for chunk in ranked if chunk.similarity >= strong_match_similarity][:max_seeds]
    pages: list[tuple[str, int]] = []
    for chunk in seeds:
        page = (chunk.document_id, chunk.page_number)
        if page not in pages:
            pages.append(page)
        if len(pages) >= max_pages:
            break
    return pages


def merge_expansion(
    matches: Sequence[RetrievedChunk],
    expanded: Sequence[RetrievedChunk],
) -> list[RetrievedChunk]:
    """Vector matches by descending similarity, then new page chunks by ascending page."""

    ordered = sorted(matches, key=lambda chunk: chunk.similarity, reverse=True)
    seen = {_dedup_key(chunk) for chunk in ordered}
    extra: list[RetrievedChunk] = []
    for chunk in expanded:
        key = _dedup_key(chunk)
        if key in seen or not chunk.text.strip():
            continue
        seen.add(key)
        extra.append(
            RetrievedChunk(
                document_id=chunk.document_id,
                filename=chunk.filename,
                page_number=chunk.page_number,
                text=chunk.text,
                similarity=0.0,
            )
        )
    extra.sort(key=lambda chunk: chunk.page_number)
    return ordered + extra


class VectorRetriever:
    """Embeds a query, searches the chunk store and expands strong pages."""

    def __init__(
        self,
        embedder: EmbeddingBackend,
        store: ChunkStore,
        config: RetrievalConfig | None = None,
        *,
        embedding_cache: EmbeddingCache[str, Vector] | None = None,
        runner: CapabilityRunner | None = None,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._config = config or RetrievalConfig()
        self._cache: EmbeddingCache[str, Vector] = embedding_cache if embedding_cache is not None else EmbeddingCache()
        self._runner = runner or CapabilityRunner()
        self._logger = get_logger("retrieval")

    @property
    def embedding_cache(self) -> EmbeddingCache[str, Vector]:
        return self._cache

    def embed(self, query: str, *, timeout: float | None = None) -> Vector:
        cached = self._cache.get(query)
        if cached is not None:
            PipelineMetrics.observe_cache("embedding", "hit")
            return cached
        PipelineMetrics.observe_cache("embedding", "miss")
        vector = tuple(self._runner.call("embedding", self._embedder.embed_query, query, timeout=timeout))
        self._cache.set(query, vector)
        return vector

    def retrieve(
        self,
        query: str,
        *,
        document_ids: Collection[str] | None = None,
        timeout: float | None = None,
        trace: RetrievalTrace | None = None,
    ) -> list[RetrievedChunk]:
        """Return vector matches followed by page-expansion chunks.

        Raises ``RetrievalError`` when embedding or similarity search fails.
        Page-expansion failures are logged and skipped.
        """

        trace = trace if trace is not None else RetrievalTrace()
        started = time.perf_counter()

        stage = time.perf_counter()
        try:
            vector = self.embed(query, timeout=timeout)
        except Exception as exc:
            raise RetrievalError(f"failed to embed query: {exc}") from exc
        trace.timings["embedding_ms"] = _elapsed_ms(stage)

        stage = time.perf_counter()
        try:
            rows = self._runner.call(
                "similarity_search",
                self._store.similarity_search,
                vector,
                match_threshold=self._config.match_threshold,
                match_count=self._config.match_count,
                document_ids=document_ids,
                timeout=timeout,
            )
        except Exception as exc:
            raise RetrievalError(f"similarity search failed: {exc}") from exc
        matches = [RetrievedChunk.from_row(row) for row in rows or []]
        trace.timings["search_ms"] = _elapsed_ms(stage)

        stage = time.perf_counter()
        expanded = self._expand(matches, timeout=timeout)
        trace.timings["expansion_ms"] = _elapsed_ms(stage)

        chunks = merge_expansion(matches, expanded)
        trace.match_count = len(matches)
        trace.expanded_count = len(chunks) - len(matches)
        PipelineMetrics.observe_retrieval(
            time.perf_counter() - started,
            trace.match_count,
            trace.expanded_count,
            (chunk.similarity for chunk in matches),
        )
        return chunks

    def _expand(self, matches: Sequence[RetrievedChunk], *, timeout: float | None) -> list[RetrievedChunk]:
        if not matches or not self._config.expansion_enabled:
            return []
        pages = expansion_pages(
            matches,
            strong_match_similarity=self._config.strong_match_similarity,
            max_seeds=self._config.max_vector_matches_for_expansion,
            max_pages=self._config.max_pages_for_expansion,
        )
        if not pages:
            return []
        try:
            rows = self._runner.call(
                "page_expansion",
                self._store.fetch_chunks_by_pages,
                {document_id for document_id, _ in pages},
                {page for _, page in pages},
                timeout=timeout,
            )
        except Exception as exc:
            self._logger.warning("retrieval.expansion_failed", pages=len(pages), error=str(exc))
            return []
        wanted = set(pages)
        # The store returns the cross product; keep only the pages that were asked for.
        return [
            chunk
            for chunk in (RetrievedChunk.from_row(row) for row in rows or [])
            if (chunk.document_id, chunk.page_number) in wanted
        ]

