"""Standalone search-query rewriting."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from ragcore.deadline import CapabilityRunner
from ragcore.metrics.observability import PipelineMetrics, get_logger
from ragcore.models import ChatMessage, normalize_history
from ragcore.services.completion import CompletionBackend
from ragcore.services.keywords import is_context_dependent

REWRITE_SYSTEM_PROMPT = (
    "You are a query preprocessor for a document search engine. "
    "Correct typos, expand abbreviations, and resolve references such as pronouns using the provided "
    "conversation history, so the query can be understood on its own. "
    "Rewrite the user's query as a clear standalone question. "
    "Return only the rewritten query, without extra commentary."
)

_HISTORY_SNIPPET_CHARS = 600


class QueryRewriter:
    """Turns a possibly context-dependent query into a standalone search query."""

    def __init__(
        self,
        completer: CompletionBackend,
        *,
        runner: CapabilityRunner | None = None,
        history_messages: int = 4,
        min_words: int = 3,
        max_chars: int = 220,
        max_tokens: int = 150,
    ) -> None:
        self._completer = completer
        self._runner = runner or CapabilityRunner()
        self._history_messages = history_messages
        self._min_words = min_words
        self._max_chars = max_chars
        self._max_tokens = max_tokens
        self._logger = get_logger("rewriter")

    def needs_rewrite(self, query: str, history: Sequence[ChatMessage]) -> bool:
        """Clear, medium-length standalone queries skip the model call."""

        if history:
            return True
        if is_context_dependent(query):
            return True
        if len(query.split()) <= self._min_words:
            return True
        return len(query) > self._max_chars

    def rewrite(
        self,
        query: str,
        history: Iterable[ChatMessage | Mapping[str, Any]] | None = None,
        *,
        timeout: float | None = None,
    ) -> str:
        """Return a standalone version of ``query``, or ``query`` itself on any failure."""

        turns = normalize_history(history)
        if not self.needs_rewrite(query, turns):
            PipelineMetrics.observe_rewrite("bypass")
            self._logger.debug("rewrite.bypass", query=query)
            return query
        try:
            rewritten = self._runner.call(
                "rewrite",
                self._completer.complete,
                self._build_messages(query, turns),
                temperature=0.0,
                max_tokens=self._max_tokens,
                timeout=timeout,
            )
        except Exception as exc:
            PipelineMetrics.observe_rewrite("fallback")
            self._logger.warning("rewrite.failed", query=query, error=str(exc))
            return query
        rewritten = (rewritten or "").strip()
        if not rewritten:
            PipelineMetrics.observe_rewrite("fallback")
            return query
        PipelineMetrics.observe_rewrite("model")
        self._logger.info("rewrite.complete", query=query, rewritten=rewritten)
        return rewritten

    def _build_messages(self, query: str, history: Sequence[ChatMessage]) -> list[ChatMessage]:
        recent = list(history[-self._history_messages :]) if self._history_messages > 0 else []
        if recent:
            lines = [f"{message.role.capitalize()}: {message.content[:_HISTORY_SNIPPET_CHARS]}" for message in recent]
            content = "Conversation history:\n" + "\n".join(lines) + f"\n\nQuery to rewrite: {query}"
        else:
            content = query
        return [
            ChatMessage(role="system", content=REWRITE_SYSTEM_PROMPT),
            ChatMessage(role="user", content=content),
        ]
