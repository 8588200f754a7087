"""Exponential backoff helpers shared by the rate limiter and the orchestrator."""

from __future__ import annotations

import random
from typing import Callable

# Multiplier used by the queue when a call is re-enqueued after a 429.
QUEUE_BACKOFF_MULTIPLIER = 1.5

# Upper bound on the pause between provider attempts inside one document.
ATTEMPT_BACKOFF_CAP_SECONDS = 5.0


def compute_backoff(
    attempt: int,
    *,
    base: float = 1.0,
    multiplier: float = QUEUE_BACKOFF_MULTIPLIER,
    cap: float = 30.0,
    jitter: float = 1.0,
    rng: Callable[[float, float], float] | None = None,
) -> float:
    """Return the delay in seconds before retry number *attempt*.

    ``min(base * multiplier ** attempt + uniform(0, jitter), cap)``.  The
    jitter-free part is non-decreasing in *attempt*, so passing
    ``jitter=0`` gives a deterministic schedule for tests.

    Parameters
    ----------
    attempt:
        Zero-based or one-based retry counter; negative values are clamped.
    base:
        Delay for attempt ``0`` in seconds.
    multiplier:
        Growth factor per attempt.
    cap:
        Maximum delay in seconds.
    jitter:
        Upper bound of the uniform random term added to spread retries.
    rng:
        ``random.uniform``-compatible callable; injectable for tests.
    """
    attempt = max(attempt, 0)
    uniform = rng or random.uniform
    delay = base * (multiplier ** attempt)
    if jitter > 0:
        delay += uniform(0.0, jitter)
    return min(delay, cap)


def attempt_delay(
    attempt: int,
    *,
    initial_delay_ms: int,
    multiplier: float,
    cap: float = ATTEMPT_BACKOFF_CAP_SECONDS,
) -> float:
    """Pause before a same-provider retry: ``initial * multiplier ** (attempt - 1)``.

    *attempt* is the one-based number of the attempt that just failed.
    """
    delay = (initial_delay_ms / 1000.0) * (multiplier ** max(attempt - 1, 0))
    return min(delay, cap)
