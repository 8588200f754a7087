"""Cached, rate-limited priority queue wrapped around provider calls.

Every provider call goes through one :class:`RateLimiterService` per
provider.  ``schedule`` does three things in order:

    1. **Cache** -- a non-expired result for the same operation and
       normalised arguments is returned without touching the provider or
       the rate window.
    2. **Queue** -- on a miss the call becomes a :class:`QueueItem` in a heap
       ordered by (priority desc, enqueue time asc).  A single drain worker
       per limiter dispatches items while fewer than ``requests_per_minute``
       calls were started in the trailing 60 seconds, and sleeps until the
       oldest one ages out otherwise.
    3. **Retry on throttling** -- a call failing with a rate-limit-shaped
       error goes back into the queue with ``priority + 1`` and the worker
       pauses for an exponential backoff.  After ``max_retries`` the caller
       receives :class:`RetryLimitExceededError`.

Concurrency model
-----------------
Everything runs on one asyncio event loop.  The window check and the
timestamp append happen in the same synchronous step of the worker, and
cache reads/writes never suspend in between, so no lock is needed.
Dispatched calls run as their own tasks; the worker never awaits a
provider call.
"""

from __future__ import annotations

import asyncio
import hashlib
import heapq
import itertools
import json
import re
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import BaseModel

from booking_ocr.interfaces.cache_provider import ICacheProvider
from booking_ocr.models.provider import RateLimitStatus
from booking_ocr.providers.cache.memory_cache import MemoryCacheProvider
from booking_ocr.utils.backoff import compute_backoff
from booking_ocr.utils.errors import QueueFullError, RateLimitError, RetryLimitExceededError
from booking_ocr.utils.logging import get_logger

_WINDOW_SECONDS = 60.0
# Extra margin added to the computed wait so the oldest timestamp has
# definitely left the window when the worker wakes up.
_WAIT_MARGIN_SECONDS = 0.1
_DEFAULT_TTL_SECONDS = 300

_RATE_LIMIT_MARKERS = ("rate limit", "quota exceeded", "too many requests")
_TIMESTAMP_RE = re.compile(r"Timestamp:\s*\d+")
_NONCE_KEYS = frozenset({"timestamp", "nonce", "request_id"})


def is_rate_limit_error(exc: BaseException) -> bool:
    """Return ``True`` if *exc* means "slow down" rather than "broken"."""
    if isinstance(exc, RateLimitError):
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == 429:
        return True
    response = getattr(exc, "response", None)
    if response is not None and getattr(response, "status_code", None) == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def _normalise(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _normalise(value.model_dump(mode="json"))
    if isinstance(value, (bytes, bytearray)):
        return {"sha256": hashlib.sha256(value).hexdigest()}
    if isinstance(value, str):
        return _TIMESTAMP_RE.sub("", value)
    if isinstance(value, dict):
        return {
            str(k): _normalise(v) for k, v in value.items() if str(k) not in _NONCE_KEYS
        }
    if isinstance(value, (list, tuple)):
        return [_normalise(v) for v in value]
    return value


@dataclass(frozen=True)
class CacheEntry:
    result: Any
    computed_at: float
    expires_at: float


@dataclass
class QueueItem:
    """A pending call waiting for a rate-window slot."""

    operation: str
    fn: Callable[..., Awaitable[Any]]
    args: tuple[Any, ...]
    kwargs: dict[str, Any]
    priority: int
    timestamp: float
    sequence: int
    future: asyncio.Future
    retry_count: int = 0
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    task: asyncio.Task | None = None

    def heap_entry(self) -> tuple[int, float, int, QueueItem]:
        return (-self.priority, self.timestamp, self.sequence, self)


class RateLimiterService:
    """Per-provider cache + rate-limited priority queue.

    Parameters
    ----------
    name:
        Provider name, used in logs and errors.
    requests_per_minute:
        Maximum dispatches started within any trailing 60-second window.
    max_retries:
        How many times a throttled call is re-enqueued before failing.
    cache:
        Result cache; defaults to an LRU of ``cache_max_size`` entries.
    burst_limit:
        Maximum calls in flight at once; ``None`` means unbounded.
    max_queue_size:
        Maximum queued items; further calls raise :class:`QueueFullError`.
    backoff_base / backoff_cap:
        Seconds for the throttling backoff ``base * 1.5 ** n + jitter``.
    clock / sleep / rng:
        Injectable time source, sleep coroutine and jitter source.
    """

    def __init__(
        self,
        name: str,
        requests_per_minute: int = 5,
        max_retries: int = 3,
        *,
        cache: ICacheProvider | None = None,
        cache_max_size: int = 100,
        default_ttl: int = _DEFAULT_TTL_SECONDS,
        cache_enabled: bool = True,
        queue_enabled: bool = True,
        burst_limit: int | None = None,
        max_queue_size: int = 50,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        window_seconds: float = _WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[float, float], float] | None = None,
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self._name = name
        self._rpm = requests_per_minute
        self._max_retries = max_retries
        self._cache = cache or MemoryCacheProvider(max_size=cache_max_size, ttl=default_ttl, timer=clock)
        self._default_ttl = default_ttl
        self._cache_enabled = cache_enabled
        self._queue_enabled = queue_enabled
        self._burst_limit = burst_limit
        self._max_queue_size = max_queue_size
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

        self._heap: list[tuple[int, float, int, QueueItem]] = []
        self._sequence = itertools.count()
        self._window: deque[float] = deque()
        self._in_flight: set[asyncio.Task] = set()
        self._worker: asyncio.Task | None = None
        self._resume_at = 0.0
        self._logger = get_logger(__name__).bind(limiter=name)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    async def schedule(
        self,
        operation: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        ttl: int | None = None,
        cache_key: str | None = None,
        priority: int = 0,
        **kwargs: Any,
    ) -> Any:
        """Run ``fn(*args, **kwargs)`` through the cache and the rate window.

        Parameters
        ----------
        operation:
            Logical operation name; the cache key prefix.
        fn:
            Coroutine function performing the provider call.
        ttl:
            Seconds to cache a successful result.  ``0`` disables caching
            for this call.
        cache_key:
            Explicit cache key; derived from *operation* and the arguments
            when omitted.
        priority:
            Higher runs earlier.

        Raises
        ------
        QueueFullError
            If the queue already holds ``max_queue_size`` items.
        RetryLimitExceededError
            If the call kept hitting rate limits past ``max_retries``.
        """
        ttl = self._default_ttl if ttl is None else ttl
        key: str | None = None
        if self._cache_enabled and ttl > 0:
            key = cache_key or self.make_cache_key(operation, args, kwargs)
            entry = await self._cache.get(key)
            if isinstance(entry, CacheEntry) and entry.expires_at > self._clock():
                self._logger.debug("rate_limiter_cache_hit", operation=operation, key=key)
                return entry.result

        if self._queue_enabled:
            result = await self._enqueue(operation, fn, args, kwargs, priority)
        else:
            self._window.append(self._clock())
            result = await fn(*args, **kwargs)

        if key is not None:
            now = self._clock()
            await self._cache.set(key, CacheEntry(result, now, now + ttl), ttl=ttl)
        return result

    def rate_limited(
        self,
        fn: Callable[..., Awaitable[Any]],
        operation: str | None = None,
        ttl: int | None = None,
    ) -> Callable[..., Awaitable[Any]]:
        """Wrap *fn* so that every call goes through :meth:`schedule`."""
        op = operation or getattr(fn, "__name__", "call")

        async def _wrapper(*args: Any, **kwargs: Any) -> Any:
            return await self.schedule(op, fn, *args, ttl=ttl, **kwargs)

        _wrapper.__name__ = f"rate_limited_{op}"
        return _wrapper

    @staticmethod
    def make_cache_key(
        operation: str,
        args: tuple[Any, ...] | list[Any] = (),
        kwargs: dict[str, Any] | None = None,
    ) -> str:
        """Return ``"<operation>:<md5>"`` over the normalised arguments.

        ``Timestamp: <n>`` fragments and nonce-like keys are stripped and
        bytes are reduced to their SHA-256 so identical requests collide.
        """
        payload = json.dumps(
            {"args": _normalise(list(args)), "kwargs": _normalise(kwargs or {})},
            sort_keys=True,
            default=str,
        )
        return f"{operation}:{hashlib.md5(payload.encode('utf-8')).hexdigest()}"

    async def clear_cache(self) -> None:
        await self._cache.clear()
        self._logger.info("rate_limiter_cache_cleared")

    async def clear_cache_by_operation(self, operation_prefix: str) -> int:
        removed = await self._cache.delete_prefix(operation_prefix)
        self._logger.info("rate_limiter_cache_cleared", prefix=operation_prefix, removed=removed)
        return removed

    def enable_cache(self, enabled: bool) -> None:
        self._cache_enabled = enabled

    def enable_queue(self, enabled: bool) -> None:
        self._queue_enabled = enabled

    def configure(
        self,
        requests_per_minute: int | None = None,
        max_retries: int | None = None,
    ) -> None:
        """Adjust limits at runtime; ``None`` keeps the current value."""
        if requests_per_minute is not None:
            if requests_per_minute < 1:
                raise ValueError("requests_per_minute must be at least 1")
            self._rpm = requests_per_minute
        if max_retries is not None:
            self._max_retries = max_retries
        self._logger.info(
            "rate_limiter_configured",
            requests_per_minute=self._rpm,
            max_retries=self._max_retries,
        )

    def get_status(self) -> RateLimitStatus:
        now = self._clock()
        self._prune(now)
        recent = len(self._window)
        can_make_request = recent < self._rpm and now >= self._resume_at
        return RateLimitStatus(
            name=self._name,
            recent_requests=recent,
            max_requests_per_minute=self._rpm,
            queue_size=len(self._heap),
            in_flight=len(self._in_flight),
            can_make_request=can_make_request,
            estimated_wait_seconds=0.0 if can_make_request else round(self._wait_time(now), 3),
            cache_size=self._cache.size(),
            cache_enabled=self._cache_enabled,
            queue_enabled=self._queue_enabled,
        )

    @property
    def queue_size(self) -> int:
        return len(self._heap)

    async def close(self) -> None:
        """Stop the worker, cancel in-flight calls and fail queued callers."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        for task in list(self._in_flight):
            task.cancel()
        for *_, item in self._heap:
            if not item.future.done():
                item.future.cancel()
        self._heap.clear()
        self._logger.debug("rate_limiter_closed")

    # ------------------------------------------------------------------
    # Queue internals
    # ------------------------------------------------------------------

    async def _enqueue(
        self,
        operation: str,
        fn: Callable[..., Awaitable[Any]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        priority: int,
    ) -> Any:
        if len(self._heap) >= self._max_queue_size:
            raise QueueFullError(
                f"Queue full ({self._max_queue_size} items)", provider_name=self._name,
            )

        item = QueueItem(
            operation=operation,
            fn=fn,
            args=args,
            kwargs=kwargs,
            priority=priority,
            timestamp=self._clock(),
            sequence=next(self._sequence),
            future=asyncio.get_running_loop().create_future(),
        )
        heapq.heappush(self._heap, item.heap_entry())
        self._logger.debug(
            "rate_limiter_enqueued", operation=operation, item=item.id, queue_size=len(self._heap),
        )
        self._ensure_worker()

        try:
            return await item.future
        except asyncio.CancelledError:
            self._discard(item)
            raise

    def _discard(self, item: QueueItem) -> None:
        before = len(self._heap)
        self._heap = [entry for entry in self._heap if entry[3] is not item]
        if len(self._heap) != before:
            heapq.heapify(self._heap)
            self._logger.debug("rate_limiter_item_removed", item=item.id)
        if item.task is not None and not item.task.done():
            item.task.cancel()

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    def _prune(self, now: float) -> None:
        horizon = now - self._window_seconds
        while self._window and self._window[0] <= horizon:
            self._window.popleft()

    def _wait_time(self, now: float) -> float:
        waits = [_WAIT_MARGIN_SECONDS]
        if len(self._window) >= self._rpm:
            waits.append(self._window[0] + self._window_seconds - now + _WAIT_MARGIN_SECONDS)
        if self._resume_at > now:
            waits.append(self._resume_at - now)
        return max(waits)

    async def _drain(self) -> None:
        while self._heap:
            now = self._clock()
            if now < self._resume_at:
                await self._sleep(self._resume_at - now)
                continue

            self._prune(now)
            if len(self._window) >= self._rpm:
                wait = self._wait_time(now)
                self._logger.info(
                    "rate_limit_wait",
                    wait_seconds=round(wait, 3),
                    recent_requests=len(self._window),
                    queue_size=len(self._heap),
                )
                await self._sleep(wait)
                continue

            if self._burst_limit is not None and len(self._in_flight) >= self._burst_limit:
                await asyncio.wait(set(self._in_flight), return_when=asyncio.FIRST_COMPLETED)
                continue

            *_, item = heapq.heappop(self._heap)
            if item.future.done():
                continue

            self._window.append(now)
            task = asyncio.get_running_loop().create_task(self._dispatch(item))
            item.task = task
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _dispatch(self, item: QueueItem) -> None:
        try:
            result = await item.fn(*item.args, **item.kwargs)
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as exc:
            if item.future.done():
                return
            if not is_rate_limit_error(exc):
                item.future.set_exception(exc)
                return
            if item.retry_count >= self._max_retries:
                self._logger.warning(
                    "rate_limit_retries_exhausted",
                    operation=item.operation,
                    item=item.id,
                    retries=item.retry_count,
                )
                item.future.set_exception(
                    RetryLimitExceededError(
                        f"Gave up after {item.retry_count} throttled retries: {exc}",
                        provider_name=self._name,
                    )
                )
                return
            self._requeue(item, exc)
        else:
            if not item.future.done():
                item.future.set_result(result)

    def _requeue(self, item: QueueItem, exc: Exception) -> None:
        item.retry_count += 1
        item.priority += 1
        item.task = None
        delay = compute_backoff(
            item.retry_count,
            base=self._backoff_base,
            cap=self._backoff_cap,
            rng=self._rng,
        )
        retry_after = getattr(exc, "retry_after", None)
        if isinstance(retry_after, (int, float)) and retry_after > delay:
            delay = min(float(retry_after), self._backoff_cap)
        self._resume_at = max(self._resume_at, self._clock() + delay)
        heapq.heappush(self._heap, item.heap_entry())
        self._logger.warning(
            "rate_limit_retry",
            operation=item.operation,
            item=item.id,
            retry_count=item.retry_count,
            priority=item.priority,
            backoff_seconds=round(delay, 3),
            error=str(exc),
        )
        self._ensure_worker()
