"""Observability helpers for the retrieval engine."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Callable, Iterable

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "ragcore") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    cache_events = Counter(
        "ragcore_cache_events_total",
        "Cache lookups and evictions by cache and outcome.",
        ["cache", "outcome"],
    )
    classification_decisions = Counter(
        "ragcore_classification_decisions_total",
        "Domain classification results by decision path.",
        ["path"],
    )
    rewrite_decisions = Counter(
        "ragcore_rewrite_decisions_total",
        "Query rewrite results by decision path.",
        ["path"],
    )
    retrieval_latency = Histogram(
        "ragcore_retrieval_duration_seconds",
        "Time spent embedding, searching and expanding.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    vector_match_count = Histogram(
        "ragcore_vector_match_count",
        "Chunks returned by the similarity search.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    expansion_chunk_count = Histogram(
        "ragcore_expansion_chunk_count",
        "Chunks appended by page expansion.",
        buckets=(0, 1, 2, 4, 8, 16, 32),
    )
    grounding_score = Histogram(
        "ragcore_grounding_score",
        "Similarity of vector-matched chunks.",
        buckets=(0.0, 0.25, 0.5, 0.75, 1.0),
    )
    context_chars = Histogram(
        "ragcore_context_chars",
        "Length of the assembled prompt context.",
        buckets=(0, 1000, 2000, 4000, 8000, 12000, 16000),
    )

    @classmethod
    def observe_cache(cls, cache: str, outcome: str) -> None:
        cls.cache_events.labels(cache=cache, outcome=outcome).inc()

    @classmethod
    def observe_classification(cls, path: str) -> None:
        cls.classification_decisions.labels(path=path).inc()

    @classmethod
    def observe_rewrite(cls, path: str) -> None:
        cls.rewrite_decisions.labels(path=path).inc()

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        match_count: int,
        expanded_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.vector_match_count.observe(match_count)
        cls.expansion_chunk_count.observe(expanded_count)
        for score in scores:
            cls.grounding_score.observe(_clamp_score(score))

    @classmethod
    def observe_context(cls, length: int) -> None:
        cls.context_chars.observe(length)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback: Callable[[float], None] | None = None) -> None:
        self._callback = callback
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.elapsed = time.perf_counter() - self._start
        if self._callback is not None:
            self._callback(self.elapsed)

    @property
    def elapsed_ms(self) -> float:
        return round(self.elapsed * 1000, 2)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
