"""Unit tests for MemoryCacheProvider and the backoff helpers."""

from __future__ import annotations

import pytest

from booking_ocr.providers.cache.memory_cache import MemoryCacheProvider
from booking_ocr.utils.backoff import attempt_delay, compute_backoff
from tests.conftest import FakeClock


# ======================================================================
# MemoryCacheProvider
# ======================================================================


class TestMemoryCacheProvider:
    @pytest.fixture()
    def cache(self, clock: FakeClock) -> MemoryCacheProvider:
        return MemoryCacheProvider(max_size=3, ttl=60, timer=clock)

    @pytest.mark.asyncio()
    async def test_get_missing_key_returns_none(self, cache: MemoryCacheProvider) -> None:
        assert await cache.get("nonexistent") is None

    @pytest.mark.asyncio()
    async def test_set_and_get(self, cache: MemoryCacheProvider) -> None:
        await cache.set("key1", {"text": "hello"})
        assert await cache.get("key1") == {"text": "hello"}
        assert await cache.exists("key1") is True

    @pytest.mark.asyncio()
    async def test_entry_expires_after_ttl(self, cache: MemoryCacheProvider, clock: FakeClock) -> None:
        await cache.set("short", "v", ttl=5)
        await cache.set("long", "v")
        clock.advance(6)

        assert await cache.get("short") is None
        assert await cache.get("long") == "v"

    @pytest.mark.asyncio()
    async def test_zero_ttl_stores_nothing(self, cache: MemoryCacheProvider) -> None:
        await cache.set("key", "v", ttl=0)
        assert await cache.exists("key") is False

    @pytest.mark.asyncio()
    async def test_size_is_bounded(self, cache: MemoryCacheProvider) -> None:
        for key in ("a", "b", "c", "d"):
            await cache.set(key, key)

        assert cache.size() == 3
        assert await cache.get("d") == "d"

    @pytest.mark.asyncio()
    async def test_delete_and_delete_prefix(self, cache: MemoryCacheProvider) -> None:
        await cache.set("ocr:1", 1)
        await cache.set("ocr:2", 2)
        await cache.set("fields:1", 3)

        await cache.delete("missing")
        assert await cache.delete_prefix("ocr:") == 2
        assert cache.size() == 1

        await cache.clear()
        assert cache.size() == 0


# ======================================================================
# Backoff
# ======================================================================


class TestComputeBackoff:
    def test_grows_by_multiplier(self) -> None:
        delays = [compute_backoff(n, jitter=0) for n in range(4)]
        assert delays == pytest.approx([1.0, 1.5, 2.25, 3.375])

    def test_never_exceeds_cap(self) -> None:
        assert compute_backoff(30, jitter=0, cap=30.0) == 30.0
        assert compute_backoff(30, cap=5.0) == 5.0

    def test_jitter_uses_injected_rng(self) -> None:
        assert compute_backoff(1, rng=lambda low, high: 0.5) == pytest.approx(2.0)

    def test_negative_attempt_is_clamped(self) -> None:
        assert compute_backoff(-3, jitter=0) == 1.0


class TestAttemptDelay:
    def test_first_retry_uses_initial_delay(self) -> None:
        assert attempt_delay(1, initial_delay_ms=1500, multiplier=2.0) == pytest.approx(1.5)

    def test_later_retries_grow(self) -> None:
        assert attempt_delay(3, initial_delay_ms=1000, multiplier=1.5) == pytest.approx(2.25)

    def test_capped(self) -> None:
        assert attempt_delay(10, initial_delay_ms=1000, multiplier=2.0) == 5.0
