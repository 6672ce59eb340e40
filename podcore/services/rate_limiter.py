"""Minimum-interval gate shared by every caller of a throttled API."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from podcore.config import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class MinIntervalGate:
    """Spaces requests at least ``interval`` seconds apart.

    One "time of last request" shared by all callers. ``wait()`` holds the
    lock while sleeping, so concurrent callers queue up and each gets its own
    slot. Clock and sleep are injectable for tests.
    """

    def __init__(
        self,
        interval: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

    async def wait(self) -> None:
        """Block until the next request may be sent, then claim the slot."""
        async with self._lock:
            if self._last_request is not None:
                remaining = self.interval - (self._clock() - self._last_request)
                if remaining > 0:
                    logger.debug(f"Rate limit gate: sleeping {remaining:.2f}s")
                    await self._sleep(remaining)
            self._last_request = self._clock()


_gates: dict[str, MinIntervalGate] = {}


def get_rate_limiter(name: str, interval: float) -> MinIntervalGate:
    """Process-wide gate for ``name``; created on first use."""
    gate = _gates.get(name)
    if gate is None:
        gate = MinIntervalGate(interval)
        _gates[name] = gate
    return gate


def apple_rate_limiter() -> MinIntervalGate:
    # Shared across podcasts: Apple's limit is per client, not per show
    return get_rate_limiter("apple", settings.apple_request_interval_seconds)
