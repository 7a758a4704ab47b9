"""Shared domain models used across the retrieval pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping, Sequence

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """One role/content pair of conversation history or a model request."""

    role: Role
    content: str

    @classmethod
    def coerce(cls, item: ChatMessage | Mapping[str, Any]) -> ChatMessage:
        if isinstance(item, ChatMessage):
            return item
        return cls(role=item.get("role", "user"), content=str(item.get("content") or ""))


def normalize_history(history: Iterable[ChatMessage | Mapping[str, Any]] | None) -> list[ChatMessage]:
    """Return history as ``ChatMessage`` records, dropping empty turns."""

    if not history:
        return []
    messages = [ChatMessage.coerce(item) for item in history]
    return [message for message in messages if message.content.strip()]


@dataclass(frozen=True)
class RetrievedChunk:
    """Document passage candidate returned by retrieval.

    ``similarity`` is the cosine similarity to the query embedding, or ``0.0``
    for passages added by page expansion.
    """

    document_id: str
    filename: str
    page_number: int
    text: str
    similarity: float = 0.0

    @classmethod
    def from_row(cls, row: RetrievedChunk | Mapping[str, Any]) -> RetrievedChunk:
        if isinstance(row, RetrievedChunk):
            return row
        return cls(
            document_id=str(row.get("document_id", "")),
            filename=str(row.get("filename", "")),
            page_number=int(row.get("page_number") or 0),
            text=str(row.get("text") or row.get("content") or ""),
            similarity=float(row.get("similarity") or 0.0),
        )


@dataclass(frozen=True)
class RetrievalSource:
    """Citation-grade reference to one (filename, page) pair."""

    document_id: str
    filename: str
    page: int
    similarity: float


@dataclass(frozen=True)
class DomainClassification:
    """Outcome of the domain gate."""

    in_domain: bool
    is_financial: bool
    reason: str

    @property
    def is_rejected(self) -> bool:
        return not self.in_domain and not self.is_financial


@dataclass(frozen=True)
class RetrievalResult:
    """Output of one retrieval call, ready for prompt construction."""

    rewritten_query: str
    chunks: Sequence[RetrievedChunk]
    context: str
    sources: Sequence[RetrievalSource]
    timings: Mapping[str, float] = field(default_factory=dict)

    @property
    def has_context(self) -> bool:
        return bool(self.context)
