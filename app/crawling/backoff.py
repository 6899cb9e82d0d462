"""
Exponential backoff with jitter for task retries.
"""

from __future__ import annotations

import random
from collections.abc import Callable


def compute_backoff_delay(
    attempt: int,
    *,
    initial_seconds: float = 1.0,
    max_seconds: float = 30.0,
    multiplier: float = 2.0,
    jitter: float = 0.2,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay before retry number `attempt` (0-based): initial * multiplier**attempt
    plus up to `jitter` of that delay, never more than max_seconds.
    """

    base = min(initial_seconds * (multiplier ** max(0, attempt)), max_seconds)
    return min(base + jitter * base * rng(), max_seconds)
