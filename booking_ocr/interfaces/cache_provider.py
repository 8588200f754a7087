"""Abstract base class for cache service providers.

The rate limiter stores provider results behind this interface so that the
in-memory LRU can be swapped for a shared backend without touching the
queue logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ICacheProvider(ABC):
    """Contract for key-value cache services.

    All operations are async to allow for network-backed stores (e.g. Redis)
    without blocking the event loop.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value stored under *key*, or ``None`` if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*.

        Parameters
        ----------
        key:
            The cache key.
        value:
            The value to store.
        ttl:
            Time-to-live in seconds.  ``None`` uses the backend default.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*; no-op if absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present and not expired."""

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with *prefix* and return how many were removed."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    def size(self) -> int:
        """Return the number of live entries."""
