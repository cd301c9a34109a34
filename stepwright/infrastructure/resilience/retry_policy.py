"""Retry Policy

Retries a failing async operation according to a backoff strategy.

A policy holds configuration only. Every ``execute`` call keeps its own
attempt counter and error list, so one policy instance can serve any number
of concurrent callers.

``max_attempts`` counts total attempts, the first one included: a policy with
``max_attempts=3`` invokes the operation at most three times. Attempt indices
passed to ``BackoffStrategy.delay`` are 0-based, so the delay before the
second attempt is ``delay(0)``.
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from stepwright.exceptions import RetriesExhaustedError
from stepwright.infrastructure.observability.metrics import RETRY_COUNTER


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exponential jitter adds at most this fraction of the un-jittered delay
JITTER_FRACTION = 0.5


@dataclass(frozen=True)
class BackoffStrategy:
    """How long to wait before the next attempt.

    Build instances through the factory methods; ``kind`` selects the formula.
    """
    kind: str
    delay_seconds: float = 0.0
    base: float = 0.0
    multiplier: float = 1.0
    increment: float = 0.0
    max_delay: float = float("inf")
    jitter: bool = False
    calculator: Optional[Callable[[int], float]] = field(default=None, compare=False)

    @classmethod
    def immediate(cls) -> "BackoffStrategy":
        return cls(kind="immediate")

    @classmethod
    def fixed(cls, delay: float) -> "BackoffStrategy":
        return cls(kind="fixed", delay_seconds=delay)

    @classmethod
    def linear(cls, initial: float, increment: float, max_delay: float) -> "BackoffStrategy":
        return cls(kind="linear", base=initial, increment=increment, max_delay=max_delay)

    @classmethod
    def exponential(cls, base: float = 1.0, multiplier: float = 2.0, max_delay: float = 60.0,
                    jitter: bool = False) -> "BackoffStrategy":
        return cls(kind="exponential", base=base, multiplier=multiplier, max_delay=max_delay,
                   jitter=jitter)

    @classmethod
    def decorrelated_jitter(cls, base: float, max_delay: float) -> "BackoffStrategy":
        return cls(kind="decorrelated_jitter", base=base, max_delay=max_delay)

    @classmethod
    def custom(cls, calculator: Callable[[int], float]) -> "BackoffStrategy":
        return cls(kind="custom", calculator=calculator)

    def delay(self, attempt: int) -> float:
        """Delay in seconds after the failed attempt with 0-based index ``attempt``."""
        if self.kind == "immediate":
            return 0.0
        if self.kind == "fixed":
            return self.delay_seconds
        if self.kind == "linear":
            return min(self.base + self.increment * attempt, self.max_delay)
        if self.kind == "exponential":
            delay = self.base * (self.multiplier ** attempt)
            if self.jitter:
                delay += random.uniform(0, delay * JITTER_FRACTION)
            return min(delay, self.max_delay)
        if self.kind == "decorrelated_jitter":
            previous = self.base if attempt == 0 else self.base * (3.0 ** (attempt - 1))
            return min(random.uniform(self.base, previous * 3.0), self.max_delay)
        if self.kind == "custom":
            return max(0.0, float(self.calculator(attempt)))
        raise ValueError(f"Unknown backoff strategy: {self.kind}")


def _retry_everything(error: BaseException) -> bool:
    return True


class RetryPolicy:
    """Attempt an operation up to ``max_attempts`` times.

    Args:
        max_attempts: Total attempts, at least 1
        backoff: Delay strategy between attempts (default: exponential 1s x2, capped at 60s)
        should_retry: Predicate deciding whether an error is worth another
                      attempt. Rejected errors propagate immediately.
        on_retry: Callback ``(attempt_number, error)`` invoked before each wait;
                  may be sync or async. ``attempt_number`` is 1-based and names
                  the attempt that just failed.
        wrap_exhausted: Raise ``RetriesExhaustedError`` instead of the last
                        underlying error once attempts run out
        name: Label used in logs and metrics
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff: Optional[BackoffStrategy] = None,
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        on_retry: Optional[Callable[[int, BaseException], Any]] = None,
        wrap_exhausted: bool = False,
        name: str = "operation",
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.backoff = backoff or BackoffStrategy.exponential()
        self.should_retry = should_retry or _retry_everything
        self.on_retry = on_retry
        self.wrap_exhausted = wrap_exhausted
        self.name = name

    # -- presets ----------------------------------------------------------

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1, backoff=BackoffStrategy.immediate(), name="no_retry")

    @classmethod
    def standard(cls) -> "RetryPolicy":
        return cls(max_attempts=3, backoff=BackoffStrategy.exponential(1.0, 2.0, 60.0))

    @classmethod
    def aggressive(cls) -> "RetryPolicy":
        return cls(max_attempts=5, backoff=BackoffStrategy.exponential(0.5, 2.0, 30.0, jitter=True))

    def with_name(self, name: str) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff=self.backoff,
            should_retry=self.should_retry,
            on_retry=self.on_retry,
            wrap_exhausted=self.wrap_exhausted,
            name=name,
        )

    # -- execution --------------------------------------------------------

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds or the policy gives up.

        Raises:
            The last error raised by ``operation`` (or ``RetriesExhaustedError``
            when ``wrap_exhausted`` is set). Errors rejected by ``should_retry``
            propagate unchanged after the attempt that raised them.
        """
        errors: List[str] = []
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as error:
                last_error = error
                errors.append(str(error))

                if not self.should_retry(error):
                    logger.debug(f"'{self.name}' failed with non-retryable {type(error).__name__}: {error}")
                    raise

                if attempt + 1 >= self.max_attempts:
                    break

                delay = self.backoff.delay(attempt)
                logger.info(
                    f"Retrying '{self.name}' (attempt {attempt + 2}/{self.max_attempts}) "
                    f"after {delay:.2f}s delay: {error}"
                )
                RETRY_COUNTER.labels(operation=self.name).inc()

                if self.on_retry is not None:
                    callback_result = self.on_retry(attempt + 1, error)
                    if inspect.isawaitable(callback_result):
                        await callback_result

                if delay > 0:
                    await asyncio.sleep(delay)

        logger.warning(f"'{self.name}' failed after {self.max_attempts} attempts: {errors[-1]}")
        if self.wrap_exhausted:
            raise RetriesExhaustedError(self.max_attempts, errors) from last_error
        raise last_error

    def __repr__(self) -> str:
        return f"RetryPolicy(name={self.name!r}, max_attempts={self.max_attempts}, backoff={self.backoff.kind})"
