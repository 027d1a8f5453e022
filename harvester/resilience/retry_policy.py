"""Centralized retry/backoff policy.

The delay before retry *n* (1-based) is ``base_delay_ms * multiplier ** (n - 1)``,
optionally spread by a jitter fraction. ``multiplier=1.0`` gives a constant
delay. The sleep coroutine is injectable so tests can run without waiting.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Bounded retry schedule shared by every call site of the HTTP client.

    Args:
        max_retries: Additional attempts after the first.
        base_delay_ms: Delay before the first retry.
        multiplier: Growth factor applied per further retry.
        jitter: Fraction (0..1) of the delay randomly added or removed.
    """

    max_retries: int
    base_delay_ms: float
    multiplier: float = 2.0
    jitter: float = 0.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    rand: Callable[[], float] = field(default=random.random, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_ms(self, retry_number: int) -> float:
        """Delay before the given retry (1 = first retry)."""
        delay = self.base_delay_ms * self.multiplier ** max(0, retry_number - 1)
        if self.jitter:
            delay *= 1 + self.jitter * (2 * self.rand() - 1)
        return max(0.0, delay)

    async def wait(self, retry_number: int) -> float:
        """Sleep out the delay before ``retry_number``; return the delay in ms."""
        delay = self.delay_ms(retry_number)
        if delay > 0:
            await self.sleep(delay / 1000)
        return delay
