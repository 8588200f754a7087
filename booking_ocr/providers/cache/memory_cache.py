"""In-memory cache provider using cachetools.TLRUCache.

Least-recently-used eviction at ``max_size`` with a per-entry time-to-live,
suitable for single-process deployments.  Can be swapped for Redis or
another backend via the ICacheProvider interface.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import structlog
from cachetools import TLRUCache

from booking_ocr.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


def _time_to_use(_key: str, value: tuple[Any, float], now: float) -> float:
    return now + value[1]


class MemoryCacheProvider(ICacheProvider):
    """In-memory LRU cache with per-entry TTL backed by ``cachetools.TLRUCache``.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry
        is evicted.
    ttl:
        Default time-to-live in seconds when ``set`` is called without one.
    timer:
        Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl: int = 300,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = ttl
        self._cache: TLRUCache[str, tuple[Any, float]] = TLRUCache(
            maxsize=max_size, ttu=_time_to_use, timer=timer,
        )

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Retrieve the cached value for *key*, or ``None`` if missing/expired."""
        entry = self._cache.get(key)
        if entry is None:
            logger.debug("cache_miss", key=key)
            return None
        logger.debug("cache_hit", key=key)
        return entry[0]

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*; a non-positive *ttl* stores nothing."""
        effective_ttl = self._default_ttl if ttl is None else ttl
        self._cache[key] = (value, float(effective_ttl))
        logger.debug("cache_set", key=key, ttl=effective_ttl)

    async def delete(self, key: str) -> None:
        """Remove *key* from the cache (no-op if absent)."""
        self._cache.pop(key, None)
        logger.debug("cache_delete", key=key)

    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present and not expired."""
        return key in self._cache

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in list(self._cache.keys()) if key.startswith(prefix)]
        for key in doomed:
            self._cache.pop(key, None)
        logger.debug("cache_delete_prefix", prefix=prefix, removed=len(doomed))
        return len(doomed)

    async def clear(self) -> None:
        self._cache.clear()

    def size(self) -> int:
        self._cache.expire()
        return len(self._cache)
