"""Tests for the three-tier domain gate."""

from __future__ import annotations

import time
from typing import Sequence

import pytest

from ragcore.cache import ClassificationCache
from ragcore.models import ChatMessage
from ragcore.services.classifier import DomainClassifier, parse_classification
from ragcore.services.keywords import matches_off_topic

REJECT = '{"in_domain": false, "is_financial": false, "reason": "Sports trivia."}'


class StubCompleter:
    def __init__(self, reply: str = "", error: Exception | None = None, delay: float = 0.0) -> None:
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls: list[Sequence[ChatMessage]] = []

    def complete(self, messages: Sequence[ChatMessage], *, temperature: float = 0.0, max_tokens: int = 256) -> str:
        self.calls.append(messages)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_fast_path_skips_model_and_cache():
    completer = StubCompleter(REJECT)
    classifier = DomainClassifier(completer)

    result = classifier.classify("What is a premium holiday?")

    assert result.in_domain and result.is_financial
    assert result.reason == "heuristic fast-path"
    assert completer.calls == []
    assert len(classifier.cache) == 0


def test_off_topic_query_is_rejected():
    classifier = DomainClassifier(StubCompleter(REJECT))

    result = classifier.classify("Who won the Super Bowl last night?")

    assert result.in_domain is False
    assert result.is_financial is False
    assert result.is_rejected


def test_rejection_without_off_topic_pattern_is_overridden():
    classifier = DomainClassifier(StubCompleter(REJECT))

    result = classifier.classify("How do I reset my password?")

    assert result.in_domain and result.is_financial
    assert "Safety override" in result.reason
    assert "Sports trivia." in result.reason


@pytest.mark.parametrize(
    "query",
    ["ok", "what about the second option", "Can you summarise page 4?", "hmm?", "Tell me more about the plan"],
)
def test_never_rejects_without_off_topic_pattern(query: str):
    assert not matches_off_topic(query)
    classifier = DomainClassifier(StubCompleter(REJECT))
    assert not classifier.classify(query).is_rejected


def test_general_financial_classification_passes_through():
    reply = '```json\n{"in_domain": false, "is_financial": true, "reason": "General bond question."}\n```'
    classifier = DomainClassifier(StubCompleter(reply))

    result = classifier.classify("How do bonds work?")

    assert result.in_domain is False
    assert result.is_financial is True
    assert result.reason == "General bond question."


def test_model_failure_degrades_to_default():
    classifier = DomainClassifier(StubCompleter(error=ConnectionError("offline")))

    result = classifier.classify("How do bonds work?")

    assert result.in_domain and result.is_financial
    assert result.reason


def test_unparseable_output_degrades_and_is_not_cached():
    completer = StubCompleter("I think this is about finance.")
    classifier = DomainClassifier(completer)

    first = classifier.classify("How do bonds work?")
    classifier.classify("How do bonds work?")

    assert first.in_domain and first.is_financial
    assert len(completer.calls) == 2


def test_timeout_degrades_to_default():
    classifier = DomainClassifier(StubCompleter(REJECT, delay=0.5))

    result = classifier.classify("How do bonds work?", timeout=0.05)

    assert result.in_domain and result.is_financial


def test_model_result_is_cached_by_normalized_query():
    completer = StubCompleter('{"in_domain": true, "is_financial": true, "reason": "Covered."}')
    classifier = DomainClassifier(completer)

    first = classifier.classify("How do bonds work?")
    second = classifier.classify("  how do BONDS work?  ")

    assert second == first
    assert len(completer.calls) == 1


def test_cached_result_expires_after_ttl():
    clock = FakeClock()
    completer = StubCompleter('{"in_domain": true, "is_financial": true, "reason": "Covered."}')
    classifier = DomainClassifier(completer, cache=ClassificationCache(60, clock=clock))

    classifier.classify("How do bonds work?")
    clock.now = 59.0
    classifier.classify("How do bonds work?")
    clock.now = 60.0
    classifier.classify("How do bonds work?")

    assert len(completer.calls) == 2


def test_request_includes_only_recent_turns():
    completer = StubCompleter('{"in_domain": true, "is_financial": true, "reason": "Follow-up."}')
    classifier = DomainClassifier(completer, max_history_turns=1)
    history = [
        {"role": "user", "content": "old question"},
        {"role": "assistant", "content": "old answer"},
        {"role": "user", "content": "recent question"},
        {"role": "assistant", "content": "recent answer"},
    ]

    classifier.classify("and the other one?", history)

    system, user = completer.calls[0]
    assert system.role == "system"
    assert "recent question" in user.content
    assert "recent answer" in user.content
    assert "old question" not in user.content
    assert user.content.endswith("Query: and the other one?")


def test_parse_defaults_missing_fields():
    outcome = parse_classification('{"in_domain": true, "reason": "  "}')
    assert not outcome.used_fallback
    assert outcome.classification.is_financial is True
    assert outcome.classification.reason == "Domain classified by model."


def test_parse_tags_invalid_in_domain_as_fallback():
    outcome = parse_classification('{"in_domain": "yes", "is_financial": true, "reason": "x"}')
    assert outcome.used_fallback
    assert outcome.error
    assert outcome.classification.in_domain and outcome.classification.is_financial


def test_parse_accepts_object_embedded_in_prose():
    outcome = parse_classification('Here you go: {"in_domain": false, "is_financial": true, "reason": "Tax."}')
    assert not outcome.used_fallback
    assert outcome.classification.is_financial is True
