"""Client-wide request spacing.

One ``RequestSpacer`` belongs to one HTTP client instance. Before each logical
request the caller waits until ``min_interval_ms`` has passed since the later
of the previous attempt's start and end. Construction counts as the previous
request, so the very first request waits too.

Key behaviors:
- wait_for_slot() blocks (async sleep) until the next slot opens
- slots are handed out one at a time, so concurrent callers sharing the
  client never start two requests inside one interval
- mark_finished() moves the reference point to the end of an attempt
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RequestSpacer:
    """Enforces a minimum spacing between request starts.

    Args:
        min_interval_ms: Minimum spacing in milliseconds.
        clock: Monotonic clock in seconds.
        sleep: Sleep coroutine taking seconds.
    """

    def __init__(
        self,
        min_interval_ms: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._interval = max(0.0, min_interval_ms) / 1000
        self._clock = clock
        self._sleep = sleep
        self._last_started = clock()
        self._last_finished = self._last_started
        self._lock = asyncio.Lock()

    @property
    def min_interval_ms(self) -> float:
        return self._interval * 1000

    async def wait_for_slot(self) -> float:
        """Block until the next request may start; return the time waited in ms."""
        async with self._lock:
            reference = max(self._last_started, self._last_finished)
            wait_time = reference + self._interval - self._clock()
            if wait_time > 0:
                logger.debug("Rate limit: waiting %.0fms", wait_time * 1000)
                # Sleeping inside the lock keeps queued callers in slot order
                await self._sleep(wait_time)
            self._last_started = self._clock()
            return max(0.0, wait_time) * 1000

    def mark_finished(self) -> None:
        self._last_finished = self._clock()
