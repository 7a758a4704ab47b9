"""Runtime configuration for the retrieval engine."""

from __future__ import annotations

import math
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# (floor, ceiling) applied after parsing; None means unbounded on that side.
_BOUNDS: dict[str, tuple[float | None, float | None]] = {
    "match_threshold": (0.0, 0.99),
    "match_count": (1, None),
    "min_source_similarity": (0.0, 0.99),
    "chunk_size": (300, None),
    "chunk_overlap": (50, None),
    "strong_match_similarity": (0.0, 0.99),
    "max_vector_matches_for_expansion": (0, None),
    "max_pages_for_expansion": (0, None),
    "max_context_chunks": (1, None),
    "max_context_chars": (500, None),
    "classification_cache_ttl_seconds": (1.0, None),
    "classification_cache_max_entries": (1, None),
    "embedding_cache_size": (1, None),
    "classifier_max_history_turns": (0, None),
    "rewrite_history_messages": (0, None),
    "rewrite_min_words": (0, None),
    "rewrite_max_chars": (1, None),
    "classification_max_tokens": (1, None),
    "rewrite_max_tokens": (1, None),
    "capability_timeout_seconds": (0.0, None),
    "embedding_dim": (1, None),
}


class RagConfig(BaseSettings):
    """Environment-backed retrieval tuning, immutable once loaded.

    Every numeric override is parsed leniently: a missing, blank or non-numeric
    value falls back to the field default, then the field bounds are applied.
    """

    model_config = SettingsConfigDict(env_prefix="rag_", env_file=".env", case_sensitive=False, frozen=True)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Retrieval recall and citation eligibility
    match_threshold: float = 0.45
    match_count: int = 4
    min_source_similarity: float = 0.55

    # Consumed by the ingestion pipeline, defined here so both sides agree
    chunk_size: int = 1000
    chunk_overlap: int = 150

    # Page expansion
    strong_match_similarity: float = 0.50
    max_vector_matches_for_expansion: int = 3
    max_pages_for_expansion: int = 3

    # Context budget
    max_context_chunks: int = 12
    max_context_chars: int = 12000

    # Caches
    classification_cache_ttl_seconds: float = 300.0
    classification_cache_max_entries: int = 2048
    embedding_cache_size: int = 500

    # Classifier / rewriter
    classifier_max_history_turns: int = 2
    rewrite_history_messages: int = 4
    rewrite_min_words: int = 3
    rewrite_max_chars: int = 220
    classification_max_tokens: int = 120
    rewrite_max_tokens: int = 150

    # 0 disables the deadline
    capability_timeout_seconds: float = 20.0

    # Capability backends
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dim: int = 1536
    use_model_embeddings: bool = False
    completion_model: str = "Qwen/Qwen2.5-1.8B-Instruct"
    use_model_completion: bool = False

    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "ragcore-chunks"
    chroma_host: str | None = None
    chroma_port: int | None = None

    @field_validator(*_BOUNDS, mode="before")
    @classmethod
    def _parse_numeric(cls, value: Any, info: ValidationInfo) -> Any:
        field = cls.model_fields[info.field_name]
        default = field.default
        if value is None or isinstance(value, bool):
            return default
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return default
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return default
        if not math.isfinite(parsed):
            return default
        if field.annotation is int:
            parsed = int(parsed)
        low, high = _BOUNDS[info.field_name]
        if low is not None and parsed < low:
            parsed = type(parsed)(low)
        if high is not None and parsed > high:
            parsed = type(parsed)(high)
        return parsed

    @field_validator("chunk_overlap")
    @classmethod
    def _overlap_below_chunk_size(cls, value: int, info: ValidationInfo) -> int:
        chunk_size = info.data.get("chunk_size", cls.model_fields["chunk_size"].default)
        return min(value, max(50, chunk_size - 1))

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def capability_timeout(self) -> float | None:
        if self.capability_timeout_seconds <= 0:
            return None
        return self.capability_timeout_seconds


@lru_cache(maxsize=1)
def _cached_config() -> RagConfig:
    return RagConfig()


def get_config(override: Optional[Mapping[str, object]] = None) -> RagConfig:
    """Return the process-wide config, or a fresh one built from ``override``."""

    if override:
        return RagConfig(**override)
    return _cached_config()
