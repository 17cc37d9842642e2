"""Tests for BoundedCache."""

import pytest

from finsight.infrastructure.cache import BoundedCache


def test_get_and_set():
    cache = BoundedCache(max_size=2, ttl_seconds=60)
    cache.set("a", [1])
    assert cache.get("a") == [1]
    assert cache.get("missing") is None


def test_evicts_oldest_when_full():
    cache = BoundedCache(max_size=2, ttl_seconds=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    assert len(cache) == 2
    assert cache.get("a") is None
    assert cache.get("c") == 3


def test_expired_entries_are_dropped(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr("finsight.infrastructure.cache.bounded_cache.time.monotonic", lambda: clock[0])
    cache = BoundedCache(max_size=2, ttl_seconds=10)
    cache.set("a", 1)
    clock[0] += 11
    assert cache.get("a") is None
    assert len(cache) == 0


def test_stats_and_invalidate():
    cache = BoundedCache(max_size=5, ttl_seconds=60)
    cache.set("a", 1)
    cache.get("a")
    cache.get("b")
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 50.0
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False


def test_rejects_non_positive_size():
    with pytest.raises(ValueError):
        BoundedCache(max_size=0)
