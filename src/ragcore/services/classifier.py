"""Domain gate deciding whether a query should reach the document corpus.

Three tiers run in order: a keyword fast path, a short-lived cache of earlier
decisions, and a completion-model classifier. A model rejection is only
accepted when the query also matches an unambiguous off-topic pattern, since a
wrongly rejected financial question costs more than a wasted retrieval.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from ragcore.cache import ClassificationCache
from ragcore.deadline import CapabilityRunner
from ragcore.metrics.observability import PipelineMetrics, get_logger
from ragcore.models import ChatMessage, DomainClassification, normalize_history
from ragcore.services.completion import CompletionBackend
from ragcore.services.keywords import matches_financial_fast_path, matches_off_topic

CLASSIFIER_SYSTEM_PROMPT = (
    "Classify whether a query is related to financial advisory, wealth management, banking, insurance, "
    "compliance, investments, client services, or general financial/business concepts, and whether the "
    "uploaded product and policy documents could plausibly answer it.\n"
    "- in_domain: true when the query could be answered from the uploaded documents or is about the "
    "products, policies or procedures they cover.\n"
    "- is_financial: true when the query is a legitimate financial, business or advisory topic, even if "
    "the documents would not cover it (e.g. what a GIC is, how bonds work, tax concepts).\n"
    "Default to in_domain and is_financial when ambiguous. Mark both false ONLY when the query has no "
    "plausible connection to finance, business, or advisory work (e.g. cooking recipes, sports scores, "
    "entertainment news, weather forecasts). Use the recent conversation to interpret short follow-ups.\n"
    'Return strict JSON only: {"in_domain": boolean, "is_financial": boolean, "reason": string}.'
)

FAST_PATH_REASON = "heuristic fast-path"
_FALLBACK_REASON = "Defaulting to in-domain: model classification unavailable"
_HISTORY_SNIPPET_CHARS = 500

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class ClassificationParse:
    """Result of parsing model output: a classification, tagged when it is the default."""

    classification: DomainClassification
    used_fallback: bool
    error: str | None = None


def heuristic_default(detail: str | None = None) -> DomainClassification:
    reason = f"{_FALLBACK_REASON} ({detail})." if detail else f"{_FALLBACK_REASON}."
    return DomainClassification(in_domain=True, is_financial=True, reason=reason)


def _fallback(error: str) -> ClassificationParse:
    return ClassificationParse(classification=heuristic_default(error), used_fallback=True, error=error)


def _strip_fences(raw: str) -> str:
    cleaned = _FENCE_OPEN.sub("", raw.strip())
    return _FENCE_CLOSE.sub("", cleaned).strip()


def _load_object(text: str) -> Mapping[str, Any] | None:
    candidates = [text]
    embedded = _JSON_OBJECT.search(text)
    if embedded and embedded.group(0) != text:
        candidates.append(embedded.group(0))
    for candidate in candidates:
        try:
            loaded = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(loaded, dict):
            return loaded
    return None


def parse_classification(raw: str | None) -> ClassificationParse:
    """Parse ``{in_domain, is_financial, reason}`` model output, or tag the default."""

    if raw is None or not raw.strip():
        return _fallback("empty model response")
    parsed = _load_object(_strip_fences(raw))
    if parsed is None:
        return _fallback("model response was not a JSON object")
    in_domain = parsed.get("in_domain")
    if not isinstance(in_domain, bool):
        return _fallback("in_domain missing or not boolean")
    is_financial = parsed.get("is_financial")
    if not isinstance(is_financial, bool):
        is_financial = in_domain
    reason = parsed.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = "Domain classified by model."
    classification = DomainClassification(in_domain=in_domain, is_financial=is_financial, reason=reason.strip())
    return ClassificationParse(classification=classification, used_fallback=False)


def apply_safety_override(query: str, classification: DomainClassification) -> DomainClassification:
    """Overturn a rejection unless the query matches a known off-topic pattern."""

    if not classification.is_rejected or matches_off_topic(query):
        return classification
    return DomainClassification(
        in_domain=True,
        is_financial=True,
        reason=f"Safety override: no off-topic pattern matched (model said: {classification.reason})",
    )


def _recent_turns(history: Sequence[ChatMessage], max_turns: int) -> list[ChatMessage]:
    if max_turns <= 0:
        return []
    return list(history[-(max_turns * 2) :])


def build_classification_messages(
    query: str,
    history: Sequence[ChatMessage],
    max_history_turns: int,
) -> list[ChatMessage]:
    turns = _recent_turns(history, max_history_turns)
    parts: list[str] = []
    if turns:
        lines = [f"{message.role.capitalize()}: {message.content[:_HISTORY_SNIPPET_CHARS]}" for message in turns]
        parts.append("Recent conversation:\n" + "\n".join(lines))
    parts.append(f"Query: {query}")
    return [
        ChatMessage(role="system", content=CLASSIFIER_SYSTEM_PROMPT),
        ChatMessage(role="user", content="\n\n".join(parts)),
    ]


class DomainClassifier:
    """Classifies queries as in-corpus, general financial, or off-topic."""

    def __init__(
        self,
        completer: CompletionBackend,
        *,
        cache: ClassificationCache[DomainClassification] | None = None,
        runner: CapabilityRunner | None = None,
        max_history_turns: int = 2,
        max_tokens: int = 120,
    ) -> None:
        self._completer = completer
        self._cache = cache if cache is not None else ClassificationCache()
        self._runner = runner or CapabilityRunner()
        self._max_history_turns = max_history_turns
        self._max_tokens = max_tokens
        self._logger = get_logger("classifier")

    @property
    def cache(self) -> ClassificationCache[DomainClassification]:
        return self._cache

    def classify(
        self,
        query: str,
        history: Iterable[ChatMessage | Mapping[str, Any]] | None = None,
        *,
        max_history_turns: int | None = None,
        timeout: float | None = None,
    ) -> DomainClassification:
        """Return the domain decision for ``query``; never raises."""

        if matches_financial_fast_path(query):
            PipelineMetrics.observe_classification("fast_path")
            self._logger.info("classification.fast_path", query=query)
            return DomainClassification(in_domain=True, is_financial=True, reason=FAST_PATH_REASON)

        cached = self._cache.get(query)
        if cached is not None:
            PipelineMetrics.observe_cache("classification", "hit")
            PipelineMetrics.observe_classification("cache")
            self._logger.info("classification.cache_hit", query=query, in_domain=cached.in_domain)
            return cached
        PipelineMetrics.observe_cache("classification", "miss")

        turns = max_history_turns if max_history_turns is not None else self._max_history_turns
        messages = build_classification_messages(query, normalize_history(history), turns)
        try:
            raw = self._runner.call(
                "classification",
                self._completer.complete,
                messages,
                temperature=0.0,
                max_tokens=self._max_tokens,
                timeout=timeout,
            )
        except Exception as exc:
            PipelineMetrics.observe_classification("fallback")
            self._logger.warning("classification.fallback", query=query, error=str(exc))
            return heuristic_default(type(exc).__name__)

        outcome = parse_classification(raw)
        if outcome.used_fallback:
            PipelineMetrics.observe_classification("fallback")
            self._logger.warning("classification.fallback", query=query, error=outcome.error)
            return outcome.classification

        result = apply_safety_override(query, outcome.classification)
        if result is not outcome.classification:
            PipelineMetrics.observe_classification("override")
            self._logger.info("classification.override", query=query, model_reason=outcome.classification.reason)
        else:
            PipelineMetrics.observe_classification("model")
        self._cache.set(query, result)
        self._logger.info(
            "classification.complete",
            query=query,
            in_domain=result.in_domain,
            is_financial=result.is_financial,
            reason=result.reason,
        )
        return result
