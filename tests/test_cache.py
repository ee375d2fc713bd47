"""
Tests for the TTL cache: expiry, single-flight, failures and statistics.
"""

import asyncio

import pytest

from cycle_kpi.core import FetchCancelledException
from cycle_kpi.shared.infrastructure.cache import CacheStats, TTLCache

from conftest import async_test


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingFetch:
    """Async fetch that counts invocations and returns a fresh value each time."""

    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return f"value-{self.calls}"


class TestExpiry:
    """Hits while fresh, refetch once expired."""

    @async_test
    async def test_hit_within_ttl_skips_fetch(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        fetch = CountingFetch()

        assert await cache.get_or_fetch("k", fetch) == "value-1"
        clock.advance(9.9)
        assert await cache.get_or_fetch("k", fetch) == "value-1"
        assert fetch.calls == 1

        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.entries) == (1, 1, 1)

    @async_test
    async def test_expired_entry_is_refetched(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        fetch = CountingFetch()

        await cache.get_or_fetch("k", fetch)
        clock.advance(10)
        assert cache.get("k") is None
        assert cache.stats().entries == 0
        assert await cache.get_or_fetch("k", fetch) == "value-2"
        assert fetch.calls == 2

    @async_test
    async def test_per_call_ttl_overrides_default(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=100, clock=clock)
        fetch = CountingFetch()

        await cache.get_or_fetch("k", fetch, ttl=1)
        clock.advance(2)
        await cache.get_or_fetch("k", fetch, ttl=1)
        assert fetch.calls == 2

    @async_test
    async def test_with_cache_wraps_fetch(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        fetch = CountingFetch()
        cached = cache.with_cache("items:t:l", fetch)

        assert await cached() == "value-1"
        assert await cached() == "value-1"
        assert fetch.calls == 1
        assert cache.get("items:t:l") == "value-1"


class TestSingleFlight:
    """Concurrent misses for one key share a single fetch."""

    @async_test
    async def test_concurrent_misses_share_one_fetch(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        release = asyncio.Event()
        calls = 0

        async def slow_fetch():
            nonlocal calls
            calls += 1
            await release.wait()
            return "shared"

        tasks = [asyncio.create_task(cache.get_or_fetch("k", slow_fetch)) for _ in range(5)]
        await asyncio.sleep(0)
        assert cache.stats().in_flight == 1

        release.set()
        results = await asyncio.gather(*tasks)

        assert results == ["shared"] * 5
        assert calls == 1
        stats = cache.stats()
        assert stats.misses == 1
        assert stats.coalesced == 4
        assert stats.in_flight == 0

    @async_test
    async def test_different_keys_fetch_independently(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        fetch = CountingFetch()

        await asyncio.gather(
            cache.get_or_fetch("a", fetch),
            cache.get_or_fetch("b", fetch),
        )
        assert fetch.calls == 2
        assert cache.stats().entries == 2


class TestFailures:
    """Failed fetches propagate to every waiter and are not cached."""

    @async_test
    async def test_failure_reaches_all_waiters_and_is_not_cached(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        release = asyncio.Event()

        async def failing_fetch():
            await release.wait()
            raise RuntimeError("upstream down")

        tasks = [asyncio.create_task(cache.get_or_fetch("k", failing_fetch)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.get("k") is None
        assert cache.stats().entries == 0

        fetch = CountingFetch()
        assert await cache.get_or_fetch("k", fetch) == "value-1"

    @async_test
    async def test_single_failure_raises(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())

        async def failing_fetch():
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            await cache.get_or_fetch("k", failing_fetch)
        assert cache.stats().in_flight == 0

    @async_test
    async def test_cancelled_owner_does_not_cancel_waiters(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        started = asyncio.Event()

        async def hanging_fetch():
            started.set()
            await asyncio.Event().wait()

        owner = asyncio.create_task(cache.get_or_fetch("k", hanging_fetch))
        await started.wait()
        waiters = [asyncio.create_task(cache.get_or_fetch("k", hanging_fetch)) for _ in range(2)]
        await asyncio.sleep(0)
        assert cache.stats().coalesced == 2

        owner.cancel()
        results = await asyncio.gather(owner, *waiters, return_exceptions=True)

        assert isinstance(results[0], asyncio.CancelledError)
        assert all(isinstance(r, FetchCancelledException) for r in results[1:])
        assert "k" in results[1].message
        assert cache.stats().in_flight == 0

        fetch = CountingFetch()
        assert await cache.get_or_fetch("k", fetch) == "value-1"
        assert fetch.calls == 1


class TestClearAndStats:

    @async_test
    async def test_clear_evicts_everything(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        fetch = CountingFetch()
        await cache.get_or_fetch("a", fetch)
        await cache.get_or_fetch("b", fetch)

        assert cache.clear() == 2
        assert cache.stats().entries == 0
        await cache.get_or_fetch("a", fetch)
        assert fetch.calls == 3

    @async_test
    async def test_invalidate_single_key(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        fetch = CountingFetch()
        await cache.get_or_fetch("a", fetch)
        await cache.get_or_fetch("b", fetch)

        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == "value-2"

    def test_stats_to_dict(self):
        stats = CacheStats(entries=2, hits=3, misses=1)
        data = stats.to_dict()
        assert data["hit_rate"] == 0.75
        assert data["entries"] == 2
        assert CacheStats().hit_rate == 0.0
