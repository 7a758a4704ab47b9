"""Prompt-context assembly and citation source listing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ragcore.models import RetrievalSource, RetrievedChunk

CONTEXT_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class ContextBudget:
    """Limits applied when assembling context and listing sources."""

    max_context_chunks: int = 12
    max_context_chars: int = 12000
    min_source_similarity: float = 0.55


def chunk_label(chunk: RetrievedChunk) -> str:
    return f"[{chunk.filename}, Page {chunk.page_number}]"


def format_block(chunk: RetrievedChunk) -> str:
    return f"{chunk_label(chunk)}\n{chunk.text}"


class ContextAssembler:
    """Builds the model context and the citation list from ordered chunks.

    The two outputs are deliberately independent: sources cover every
    sufficiently similar chunk even when its text did not fit in the context.
    """

    def __init__(self, budget: ContextBudget | None = None) -> None:
        self._budget = budget or ContextBudget()

    @property
    def budget(self) -> ContextBudget:
        return self._budget

    def build_context(self, chunks: Sequence[RetrievedChunk]) -> str:
        max_chars = self._budget.max_context_chars
        blocks: list[str] = []
        total = 0
        for chunk in chunks:
            if len(blocks) >= self._budget.max_context_chunks:
                break
            block = format_block(chunk)
            added = len(block) + (len(CONTEXT_SEPARATOR) if blocks else 0)
            if total + added > max_chars:
                if not blocks:
                    blocks.append(self._truncate_block(chunk, max_chars))
                break
            blocks.append(block)
            total += added
        return CONTEXT_SEPARATOR.join(blocks)

    def build_sources(self, chunks: Sequence[RetrievedChunk]) -> list[RetrievalSource]:
        seen: set[tuple[str, int]] = set()
        sources: list[RetrievalSource] = []
        floor = self._budget.min_source_similarity
        for chunk in chunks:
            similarity = round(chunk.similarity, 2)
            # both the raw score and the reported score must clear the floor
            if chunk.similarity < floor or similarity < floor:
                continue
            key = (chunk.filename, chunk.page_number)
            if key in seen:
                continue
            seen.add(key)
            sources.append(
                RetrievalSource(
                    document_id=chunk.document_id,
                    filename=chunk.filename,
                    page=chunk.page_number,
                    similarity=similarity,
                )
            )
        return sources

    @staticmethod
    def _truncate_block(chunk: RetrievedChunk, max_chars: int) -> str:
        header = chunk_label(chunk) + "\n"
        room = max_chars - len(header)
        if room <= 0:
            return format_block(chunk)[:max_chars]
        return header + chunk.text[:room]
