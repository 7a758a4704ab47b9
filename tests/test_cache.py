"""Tests for the classification TTL cache and the embedding LRU cache."""

from __future__ import annotations

import threading

import pytest

from ragcore.cache import ClassificationCache, EmbeddingCache


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_classification_entry_lives_until_ttl():
    clock = FakeClock()
    cache: ClassificationCache[str] = ClassificationCache(300, clock=clock)
    cache.set("What is a GIC?", "value")

    clock.now = 100.0 + 299.9
    assert cache.get("What is a GIC?") == "value"

    clock.now = 100.0 + 300.0
    assert cache.get("What is a GIC?") is None
    assert len(cache) == 0


def test_classification_key_is_normalized():
    cache: ClassificationCache[str] = ClassificationCache(60, clock=FakeClock())
    cache.set("  Bond Ladder  ", "value")
    assert cache.get("bond ladder") == "value"


def test_classification_cache_respects_max_entries():
    cache: ClassificationCache[int] = ClassificationCache(60, max_entries=2, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    assert len(cache) == 2
    assert cache.get("a") is None
    assert cache.get("c") == 3


def test_classification_cache_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        ClassificationCache(0)


def test_embedding_cache_evicts_least_recently_used():
    cache: EmbeddingCache[str, tuple[float, ...]] = EmbeddingCache(capacity=2)
    cache.set("a", (1.0,))
    cache.set("b", (2.0,))
    assert cache.get("a") == (1.0,)
    cache.set("c", (3.0,))

    assert len(cache) == 2
    assert "b" not in cache
    assert cache.get("a") == (1.0,)
    assert cache.get("c") == (3.0,)


def test_embedding_cache_overwrite_keeps_size():
    cache: EmbeddingCache[str, int] = EmbeddingCache(capacity=2)
    cache.set("a", 1)
    cache.set("a", 2)
    assert len(cache) == 1
    assert cache.get("a") == 2


def test_embedding_cache_bound_under_concurrent_writers():
    cache: EmbeddingCache[str, int] = EmbeddingCache(capacity=50)

    def writer(offset: int) -> None:
        for index in range(200):
            cache.set(f"{offset}-{index}", index)
            cache.get(f"{offset}-{index // 2}")

    threads = [threading.Thread(target=writer, args=(offset,)) for offset in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(cache) == 50
