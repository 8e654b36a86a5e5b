# tests/test_cache.py

from __future__ import annotations

import pytest

from taskpilot.core.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache: TTLCache[str, int] = TTLCache(max_size=4, ttl_seconds=10, clock=clock)
    cache.put("a", 1)

    clock.now = 9.0
    assert cache.get("a") == 1
    clock.now = 10.5
    assert cache.get("a") is None
    assert len(cache) == 0


def test_least_recently_used_is_evicted() -> None:
    cache: TTLCache[str, int] = TTLCache(max_size=2, ttl_seconds=60)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")
    cache.put("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_get_or_create_builds_once_until_invalidated() -> None:
    cache: TTLCache[str, str] = TTLCache()
    built: list[str] = []

    def factory() -> str:
        built.append("x")
        return "value"

    assert cache.get_or_create("k", factory) == "value"
    assert cache.get_or_create("k", factory) == "value"
    assert built == ["x"]

    cache.invalidate("k")
    cache.get_or_create("k", factory)
    assert built == ["x", "x"]

    cache.clear()
    assert len(cache) == 0


def test_max_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TTLCache(max_size=0)
