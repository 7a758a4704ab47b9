"""Lexical data for the domain gate and the query rewriter.

Kept as plain constants so the lists can be tuned and tested apart from the
classification logic.
"""

from __future__ import annotations

import re

# High-signal terms that send a query straight to retrieval.
FINANCIAL_FAST_PATH_TERMS: frozenset[str] = frozenset(
    {
        "premium",
        "premiums",
        "premium holiday",
        "fee",
        "fees",
        "mer",
        "management expense ratio",
        "compliance",
        "kyc",
        "know your client",
        "aml",
        "anti-money laundering",
        "suitability",
        "fiduciary",
        "disclosure",
        "regulatory",
        "regulation",
        "ciro",
        "mfda",
        "iiroc",
        "osc",
        "fintrac",
        "rrsp",
        "rrif",
        "tfsa",
        "fhsa",
        "resp",
        "lira",
        "gic",
        "annuity",
        "annuities",
        "segregated fund",
        "segregated funds",
        "seg fund",
        "mutual fund",
        "mutual funds",
        "universal life",
        "whole life",
        "term life",
        "critical illness",
        "disability insurance",
        "policyholder",
        "beneficiary",
        "underwriting",
        "death benefit",
        "cash surrender value",
        "maturity guarantee",
        "death benefit guarantee",
        "withdrawal",
        "surrender charge",
        "deferred sales charge",
        "portfolio",
        "dividend",
        "dividends",
    }
)

# Unambiguous off-topic subjects; a model rejection only stands when one matches.
OFF_TOPIC_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bsuper\s?bowl\b|\bworld cup\b|\bstanley cup\b|\bworld series\b|\bolympics?\b"),
    re.compile(r"\b(nba|nfl|nhl|mlb|fifa|premier league)\b"),
    re.compile(r"\bwho won\b|\bfinal score\b|\bgame score\b|\bplayoffs?\b"),
    re.compile(r"\bweather\b|\bforecast for (today|tomorrow|the weekend)\b|\bis it (going to )?rain"),
    re.compile(r"\b(movie|movies|film|tv show|netflix|celebrity|celebrities|box office)\b"),
    re.compile(r"\b(song|lyrics|album|concert)\b"),
    re.compile(r"\b(recipe|recipes|how (do i|to) (cook|bake))\b"),
    re.compile(r"\b(video game|videogame|playstation|xbox|nintendo)\b"),
    re.compile(r"\b(horoscope|zodiac)\b"),
    re.compile(r"\btell me a joke\b"),
)

# Pronouns and deictic references that signal a query depends on earlier turns.
CONTEXT_DEPENDENCY_PATTERN: re.Pattern[str] = re.compile(
    r"\b(it|its|it's|that|this|these|those|they|them|their|theirs|he|she|him|her|his|hers|"
    r"above|previous|previously|earlier|former|latter|same|aforementioned|mentioned|"
    r"one|ones)\b",
    re.IGNORECASE,
)

_FAST_PATH_PATTERN: re.Pattern[str] = re.compile(
    r"\b(" + "|".join(re.escape(term) for term in sorted(FINANCIAL_FAST_PATH_TERMS, key=len, reverse=True)) + r")\b"
)


def matches_financial_fast_path(query: str) -> bool:
    return _FAST_PATH_PATTERN.search(query.lower()) is not None


def matches_off_topic(query: str) -> bool:
    lowered = query.lower()
    return any(pattern.search(lowered) for pattern in OFF_TOPIC_PATTERNS)


def is_context_dependent(query: str) -> bool:
    return CONTEXT_DEPENDENCY_PATTERN.search(query) is not None


__all__ = [
    "CONTEXT_DEPENDENCY_PATTERN",
    "FINANCIAL_FAST_PATH_TERMS",
    "OFF_TOPIC_PATTERNS",
    "is_context_dependent",
    "matches_financial_fast_path",
    "matches_off_topic",
]
