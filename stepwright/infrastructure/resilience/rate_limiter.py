# File: stepwright/infrastructure/resilience/rate_limiter.py

import asyncio
import logging
import time
from typing import Awaitable, Callable

from stepwright.infrastructure.observability.metrics import RATE_LIMIT_WAITS


class RateLimiter:
    """
    Token bucket limiter for outbound calls.

    The bucket holds at most ``max_tokens`` tokens and refills continuously at
    ``refill_rate`` tokens per second. Each call consumes one token.
    ``acquire()`` waits for a token; waiters are served in arrival order
    because the wait happens under an ``asyncio.Lock``. ``try_acquire()``
    never waits and never jumps ahead of a waiter.
    """

    def __init__(
        self,
        max_tokens: int,
        refill_rate: float,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")

        self.name = name
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate
        self.logger = logging.getLogger(f"{__name__}.{name}")

        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._tokens = float(max_tokens)
        self._last_refill = clock()

    @classmethod
    def per_minute(cls, max_requests_per_minute: int, **kwargs) -> "RateLimiter":
        """Bucket of ``max_requests_per_minute`` tokens refilled over one minute."""
        return cls(max_requests_per_minute, max_requests_per_minute / 60.0, **kwargs)

    @property
    def available(self) -> int:
        self._refill()
        return int(self._tokens)

    async def acquire(self) -> None:
        """Take one token, waiting for the bucket to refill when empty."""
        async with self._lock:
            self._refill()
            while self._tokens < 1:
                wait = (1 - self._tokens) / self.refill_rate
                RATE_LIMIT_WAITS.labels(limiter=self.name).inc()
                self.logger.debug(f"Rate limiter '{self.name}' waiting {wait:.3f}s for a token")
                await self._sleep(wait)
                self._refill()
            self._tokens -= 1

    def try_acquire(self) -> bool:
        """Take one token if one is available right now."""
        if self._lock.locked():
            return False
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        self._tokens = float(self.max_tokens)
        self._last_refill = self._clock()
        self.logger.info(f"Rate limiter '{self.name}' reset")

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.max_tokens), self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def __repr__(self) -> str:
        return (f"RateLimiter(name='{self.name}', max_tokens={self.max_tokens}, "
                f"refill_rate={self.refill_rate})")
