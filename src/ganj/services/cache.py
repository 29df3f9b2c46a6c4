"""ResponseCache - in-process TTL cache with in-flight de-duplication.

Every data source call goes through ``ResponseCache.get``:
- a key with a fetch already in flight joins that fetch (one upstream call)
- a stored entry younger than its TTL is returned without fetching
- otherwise the fetcher runs; only successful results are stored

TTLs are chosen from the key when not given explicitly:

Cache Key Types:
    - .../poets       - Poet lists (5 min)
    - .../poet/{id}   - Poet details (10 min)
    - .../cat/{id}    - Category trees and poem lists (15 min)
    - .../poem/{id}   - Full poems (1 h)
    - anything else   - 5 min

Expired entries are removed lazily when they are next read. There is no
background sweep. The cache is an explicitly constructed object with an
``init``/``dispose`` lifecycle, shared by the clients it is handed to.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTLS: dict[str, float] = {
    "/poets": 300,
    "/poet/": 600,
    "/cat/": 900,
    "/poem/": 3600,
}
DEFAULT_TTL: float = 300


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    # Failures reach waiters through shield; mark them seen when none are left
    if not task.cancelled():
        task.exception()


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at <= self.ttl


class ResponseCache:
    """TTL cache keyed by request path, de-duplicating concurrent fetches.

    Usage:
        ```python
        cache = ResponseCache()
        poets = await cache.get("/poets", fetch_poets)
        ```
    """

    def __init__(
        self,
        ttls: dict[str, float] | None = None,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttls: TTL in seconds per key fragment, first match wins
            default_ttl: TTL for keys matching no fragment
            clock: Monotonic time source in seconds
        """
        self._ttls = dict(DEFAULT_TTLS if ttls is None else ttls)
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Task[Any]] = {}

    async def init(self) -> None:
        """Prepare the cache for use (starts empty)."""
        self._entries.clear()
        logger.debug("response_cache_initialized", ttls=self._ttls)

    async def dispose(self) -> None:
        """Drop all entries and cancel unfinished fetches."""
        for task in self._pending.values():
            if not task.done():
                task.cancel()
        self._pending.clear()
        self._entries.clear()
        logger.debug("response_cache_disposed")

    def ttl_for(self, key: str) -> float:
        """TTL for ``key`` based on the resource type it names."""
        for fragment, ttl in self._ttls.items():
            if fragment in key:
                return ttl
        return self._default_ttl

    async def get(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Return the cached value for ``key`` or fetch and store it.

        Args:
            key: Cache key (request path)
            fetcher: Zero-argument coroutine function producing the value
            ttl: Override TTL in seconds

        Returns:
            The cached or freshly fetched value

        Raises:
            Whatever ``fetcher`` raises. Failures are never cached and are
            raised to every caller waiting on the same fetch.
        """
        pending = self._pending.get(key)
        if pending is not None:
            logger.debug("cache_join_pending", cache_key=key)
            return await asyncio.shield(pending)

        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_fresh(self._clock()):
                logger.debug("cache_hit", cache_key=key)
                return entry.value
            del self._entries[key]

        logger.debug("cache_miss", cache_key=key)
        task = asyncio.create_task(self._fetch(key, fetcher, ttl))
        task.add_done_callback(_retrieve_exception)
        self._pending[key] = task
        return await asyncio.shield(task)

    async def _fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: float | None,
    ) -> T:
        """Run ``fetcher`` as the single in-flight fetch for ``key``.

        Runs in its own task, so a caller that is cancelled or times out
        stops waiting without aborting the fetch for the others.
        """
        try:
            value = await fetcher()
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]
        self._entries[key] = CacheEntry(
            value=value,
            stored_at=self._clock(),
            ttl=self.ttl_for(key) if ttl is None else ttl,
        )
        return value

    def clear(self, key: str | None = None) -> None:
        """Remove one entry, or every entry when ``key`` is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def clear_pattern(self, fragment: str) -> int:
        """Remove every entry whose key contains ``fragment``.

        Returns:
            Number of entries removed
        """
        keys = [k for k in self._entries if fragment in k]
        for k in keys:
            del self._entries[k]
        logger.debug("cache_pattern_cleared", pattern=fragment, count=len(keys))
        return len(keys)

    def get_stats(self) -> dict[str, Any]:
        """Size, pending fetch count and stored keys."""
        return {
            "size": len(self._entries),
            "pending_requests": len(self._pending),
            "keys": list(self._entries),
        }
