from __future__ import annotations

import threading
import time

import pytest

from strata.infrastructure.ttl_cache import Cache, TTLCache


def test_ttl_cache_miss_then_hit() -> None:
    cache: TTLCache[str, int] = TTLCache(ttl_seconds=1.0)
    assert cache.get("a") == (None, False)
    cache.set("a", 42)
    assert cache.get("a") == (42, True)


def test_ttl_cache_stores_none_as_a_hit() -> None:
    cache: TTLCache[str, None] = TTLCache(ttl_seconds=1.0)
    cache.set("a", None)
    assert cache.get("a") == (None, True)


def test_ttl_cache_expiry(monkeypatch: pytest.MonkeyPatch) -> None:
    cache: TTLCache[str, str] = TTLCache(ttl_seconds=0.5)
    cache.set("k", "v")

    real_mono = time.monotonic

    def later() -> float:
        return real_mono() + 1.0

    # Force expiry
    monkeypatch.setattr("time.monotonic", later)
    assert cache.get("k") == (None, False)
    assert len(cache) == 0


def test_ttl_cache_per_entry_ttl_overrides_default(monkeypatch: pytest.MonkeyPatch) -> None:
    cache: TTLCache[str, str] = TTLCache(ttl_seconds=0.5)
    cache.set("short", "s")
    cache.set("long", "l", ttl=10.0)

    real_mono = time.monotonic
    monkeypatch.setattr("time.monotonic", lambda: real_mono() + 1.0)
    assert cache.get("short") == (None, False)
    assert cache.get("long") == ("l", True)


def test_ttl_cache_delete_and_flush() -> None:
    cache: TTLCache[str, int] = TTLCache(ttl_seconds=5)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.delete("a")
    cache.delete("missing")
    assert cache.get("a") == (None, False)
    assert len(cache) == 1
    cache.flush()
    assert cache.get("b") == (None, False)


def test_ttl_cache_rejects_negative_ttl() -> None:
    with pytest.raises(ValueError):
        TTLCache(ttl_seconds=-1)
    cache: TTLCache[str, int] = TTLCache(ttl_seconds=1)
    with pytest.raises(ValueError):
        cache.set("a", 1, ttl=-0.1)


def test_ttl_cache_is_a_cache_and_thread_safe() -> None:
    cache: TTLCache[int, int] = TTLCache(ttl_seconds=60)
    assert isinstance(cache, Cache)

    def writer(offset: int) -> None:
        for i in range(200):
            cache.set(offset + i, i)

    threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) == 800
