"""
Domain-aware request rate limiter for async crawlers.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from urllib.parse import urlparse


class DomainRateLimiter:
    """
    Enforces a minimum interval between requests to the same domain.

    Slots are reserved under a lock and slept outside it, so concurrent
    callers for one domain are spaced out instead of serialized behind a
    sleeping holder.
    """

    def __init__(
        self,
        *,
        default_rate_limit_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._default_rate_limit_per_second = max(0.1, default_rate_limit_per_second)
        self._next_slot_by_domain: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._sleep = sleep

    async def wait(
        self,
        *,
        url: str,
        rate_limit_per_second: float | None = None,
        min_delay_seconds: float | None = None,
    ) -> float:
        """
        Wait for this domain's next slot and return the seconds slept.
        """

        parsed = urlparse(url)
        domain = parsed.netloc.lower() or parsed.path.lower()
        if not domain:
            return 0.0

        effective_rps = max(0.1, rate_limit_per_second or self._default_rate_limit_per_second)
        min_interval = 1.0 / effective_rps
        if min_delay_seconds is not None:
            min_interval = max(min_interval, max(0.0, min_delay_seconds))

        async with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot_by_domain.get(domain, now))
            self._next_slot_by_domain[domain] = slot + min_interval
            wait_seconds = slot - now

        if wait_seconds > 0:
            await self._sleep(wait_seconds)
        return max(0.0, wait_seconds)
