"""
TTL Cache
=========

Process-local memoization of expensive upstream reads.

Features:
- TTL-based entry expiration with lazy cleanup
- Single-flight: concurrent misses for the same key share one fetch
- Hit/miss statistics tracking

Failed fetches are never cached; every waiter of a failed fetch receives the
same exception. If the task running a shared fetch is cancelled, the other
waiters receive FetchCancelledException and the next call fetches again.

Usage:
    cache = TTLCache(default_ttl=180)
    fetch = cache.with_cache("items:team-1:label-9", lambda: client.fetch_items(...))
    items = await fetch()
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from cycle_kpi.core import FetchCancelledException
from cycle_kpi.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

AsyncFetch = Callable[[], Awaitable[Any]]


@dataclass
class CacheStats:
    """Cache statistics."""

    entries: int = 0
    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    in_flight: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict:
        """Convert to dict."""
        return {
            "entries": self.entries,
            "hits": self.hits,
            "misses": self.misses,
            "coalesced": self.coalesced,
            "in_flight": self.in_flight,
            "hit_rate": round(self.hit_rate, 4),
        }


class TTLCache:
    """In-memory async cache with per-entry TTL and single-flight fetches."""

    def __init__(
        self,
        default_ttl: float = 180.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            default_ttl: TTL in seconds used when a call does not pass one.
            clock: Monotonic time source (injectable for tests).
        """
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._coalesced = 0

    def with_cache(
        self,
        key: str,
        fetch: AsyncFetch,
        ttl: Optional[float] = None,
    ) -> AsyncFetch:
        """Wrap `fetch` so that invoking the result goes through the cache."""

        async def cached() -> Any:
            return await self.get_or_fetch(key, fetch, ttl)

        return cached

    async def get_or_fetch(
        self,
        key: str,
        fetch: AsyncFetch,
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the unexpired value for `key`, fetching it at most once."""
        entry = self._entries.get(key)
        if entry is not None:
            value, expires_at = entry
            if self._clock() < expires_at:
                self._hits += 1
                return value
            del self._entries[key]

        pending = self._in_flight.get(key)
        if pending is not None:
            self._coalesced += 1
            # shield: a cancelled waiter must not cancel the shared fetch
            return await asyncio.shield(pending)

        self._misses += 1
        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            value = await fetch()
        except asyncio.CancelledError:
            # only the owner was cancelled; waiters get an error instead
            future.set_exception(FetchCancelledException(key))
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # mark retrieved so an unawaited future does not log a warning
            future.exception()
            logger.debug("Cache fetch failed", extra={"cache_key": key, "error": str(exc)})
            raise
        else:
            lifetime = self._default_ttl if ttl is None else ttl
            self._entries[key] = (value, self._clock() + lifetime)
            future.set_result(value)
            return value
        finally:
            self._in_flight.pop(key, None)

    def get(self, key: str) -> Optional[Any]:
        """Peek at an unexpired value without counting a hit or miss."""
        entry = self._entries.get(key)
        if entry is None or self._clock() >= entry[1]:
            return None
        return entry[0]

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> int:
        """
        Evict all entries and return how many there were.

        In-flight fetches still complete for their waiters.
        """
        cleared = len(self._entries)
        self._entries.clear()
        logger.info("Cache cleared", extra={"entries": cleared})
        return cleared

    def stats(self) -> CacheStats:
        now = self._clock()
        live = sum(1 for _value, expires_at in self._entries.values() if now < expires_at)
        return CacheStats(
            entries=live,
            hits=self._hits,
            misses=self._misses,
            coalesced=self._coalesced,
            in_flight=len(self._in_flight),
        )
