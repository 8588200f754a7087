"""Shared concurrency primitives.

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped in
   a semaphore acquire/release.  Used for concurrent provider health probes.

2. **gather_in_chunks** -- runs coroutine factories in fixed-size chunks,
   awaiting each chunk as a barrier before starting the next.  Used by the
   batch coordinator so a batch never has more than ``chunk_size`` documents
   in flight.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

import structlog

from booking_ocr.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with optional semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore for concurrency control.  When ``None`` all
        awaitables run at once.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        return await asyncio.gather(*coros, return_exceptions=return_exceptions)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def gather_in_chunks(
    factories: Sequence[Callable[[], Awaitable[_T]]],
    chunk_size: int,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Await *factories* in consecutive chunks of *chunk_size*.

    Factories (not coroutines) are taken so that documents in later chunks
    do not start before their chunk is reached.  Output order matches input
    order.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")

    results: list[_T | BaseException] = []
    for start in range(0, len(factories), chunk_size):
        chunk = factories[start:start + chunk_size]
        _logger.debug("chunk_started", start=start, size=len(chunk))
        chunk_results = await asyncio.gather(
            *(factory() for factory in chunk),
            return_exceptions=return_exceptions,
        )
        results.extend(chunk_results)
    return results
