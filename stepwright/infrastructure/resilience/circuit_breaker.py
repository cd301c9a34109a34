# File: stepwright/infrastructure/resilience/circuit_breaker.py

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from stepwright.exceptions import CircuitOpenError
from stepwright.infrastructure.observability.metrics import BREAKER_REJECTIONS, BREAKER_TRANSITIONS


T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Circuit is open, calls rejected
    HALF_OPEN = "half_open"  # Trial calls test whether the service recovered


@dataclass
class CircuitBreakerStatistics:
    """Point-in-time view of a breaker"""
    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    consecutive_failures: int
    last_failure_time: Optional[datetime] = None

    @property
    def total_calls(self) -> int:
        return self.failure_count + self.success_count

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 1.0
        return self.success_count / self.total_calls


StateChangeCallback = Callable[[CircuitState, CircuitState], Any]


class CircuitBreaker:
    """
    Circuit breaker shared by every caller routed through it.

    Transitions:
    - closed -> open: consecutive failures reach ``failure_threshold``
    - open -> half_open: ``reset_timeout`` seconds elapsed since opening,
      applied lazily on the next call or state query
    - half_open -> closed: ``success_threshold`` consecutive trial successes
    - half_open -> open: any trial failure, restarting the timeout

    At most ``half_open_max_requests`` trial calls run at once while half-open;
    further callers are rejected as if the circuit were open. All state reads
    and writes happen under an ``asyncio.Lock``; the operation itself runs
    outside the lock.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 1,
        reset_timeout: float = 60.0,
        half_open_max_requests: int = 1,
        on_state_change: Optional[StateChangeCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if success_threshold < 1:
            raise ValueError("success_threshold must be at least 1")
        if half_open_max_requests < 1:
            raise ValueError("half_open_max_requests must be at least 1")

        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max_requests = half_open_max_requests
        self.on_state_change = on_state_change
        self.logger = logging.getLogger(f"{__name__}.{name}")

        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._half_open_in_flight = 0
        self._total_failures = 0
        self._total_successes = 0
        self._last_failure_time: Optional[datetime] = None
        self._callback_tasks: Set[asyncio.Task] = set()

        self.logger.debug(f"CircuitBreaker '{name}' initialized in {self._state.value} state")

    @property
    def state(self) -> CircuitState:
        """Current state, reporting ``half_open`` once ``reset_timeout`` has elapsed.

        Read-only: the transition itself is recorded by the next call or
        ``current_state()``.
        """
        if self._reset_timeout_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    async def current_state(self) -> CircuitState:
        async with self._lock:
            self._check_reset_timeout()
            return self._state

    async def is_allowing_requests(self) -> bool:
        async with self._lock:
            self._check_reset_timeout()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN:
                return self._half_open_in_flight < self.half_open_max_requests
            return False

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: The circuit rejected the call; ``operation``
                was not invoked.
            Any error raised by ``operation``, after it has been recorded.
        """
        trial = await self._acquire()
        try:
            result = await operation()
        except asyncio.CancelledError:
            if trial:
                async with self._lock:
                    self._release_trial()
            raise
        except Exception:
            async with self._lock:
                self._record_failure(trial)
            raise

        async with self._lock:
            self._record_success(trial)
        return result

    async def reset(self) -> None:
        """Force the breaker closed and clear consecutive counters."""
        async with self._lock:
            old_state = self._state
            self._consecutive_failures = 0
            self._consecutive_successes = 0
            self._half_open_in_flight = 0
            self._opened_at = None
            self._set_state(CircuitState.CLOSED)
        self.logger.info(f"Circuit breaker '{self.name}' reset from {old_state.value}")

    async def trip(self) -> None:
        """Force the breaker open for a full ``reset_timeout``."""
        async with self._lock:
            self._open()
        self.logger.warning(f"Circuit breaker '{self.name}' tripped manually")

    def statistics(self) -> CircuitBreakerStatistics:
        return CircuitBreakerStatistics(
            name=self.name,
            state=self.state,
            failure_count=self._total_failures,
            success_count=self._total_successes,
            consecutive_failures=self._consecutive_failures,
            last_failure_time=self._last_failure_time,
        )

    # -- internals, called with the lock held ----------------------------

    async def _acquire(self) -> bool:
        """Admit or reject a call. Returns True when admitted as a half-open trial."""
        async with self._lock:
            self._check_reset_timeout()

            if self._state == CircuitState.CLOSED:
                return False

            if (self._state == CircuitState.HALF_OPEN
                    and self._half_open_in_flight < self.half_open_max_requests):
                self._half_open_in_flight += 1
                return True

            BREAKER_REJECTIONS.labels(breaker=self.name).inc()
            raise CircuitOpenError(self.name, retry_after=self._retry_after())

    def _reset_timeout_elapsed(self) -> bool:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return False
        return self._clock() - self._opened_at >= self.reset_timeout

    def _check_reset_timeout(self) -> None:
        if self._reset_timeout_elapsed():
            self._consecutive_successes = 0
            self._half_open_in_flight = 0
            self._set_state(CircuitState.HALF_OPEN)
            self.logger.info(f"Circuit breaker '{self.name}' half-opened for testing")

    def _retry_after(self) -> Optional[float]:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        return max(0.0, self.reset_timeout - (self._clock() - self._opened_at))

    def _record_failure(self, trial: bool) -> None:
        self._total_failures += 1
        self._last_failure_time = datetime.utcnow()

        if trial:
            self._release_trial()
            if self._state == CircuitState.HALF_OPEN:
                self.logger.warning(f"Circuit breaker '{self.name}' trial call failed")
                self._open()
            return

        if self._state == CircuitState.CLOSED:
            self._consecutive_failures += 1
            if self._consecutive_failures >= self.failure_threshold:
                self.logger.warning(
                    f"Circuit breaker '{self.name}' opened - consecutive failures: {self._consecutive_failures}"
                )
                self._open()

    def _record_success(self, trial: bool) -> None:
        self._total_successes += 1

        if trial:
            self._release_trial()
            if self._state == CircuitState.HALF_OPEN:
                self._consecutive_successes += 1
                if self._consecutive_successes >= self.success_threshold:
                    self._consecutive_failures = 0
                    self._consecutive_successes = 0
                    self._set_state(CircuitState.CLOSED)
                    self.logger.info(f"Circuit breaker '{self.name}' closed - service recovered")
            return

        if self._state == CircuitState.CLOSED:
            self._consecutive_failures = 0

    def _release_trial(self) -> None:
        self._half_open_in_flight = max(0, self._half_open_in_flight - 1)

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._consecutive_successes = 0
        self._set_state(CircuitState.OPEN)

    def _set_state(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state == new_state:
            return

        BREAKER_TRANSITIONS.labels(
            breaker=self.name, from_state=old_state.value, to_state=new_state.value
        ).inc()

        if self.on_state_change:
            outcome = self.on_state_change(old_state, new_state)
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_tasks.discard)

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._state.value})"


class CircuitBreakerRegistry:
    """Named breakers created on first use with a shared default configuration."""

    def __init__(self, factory: Optional[Callable[[str], CircuitBreaker]] = None, **defaults):
        self._factory = factory or (lambda name: CircuitBreaker(name=name, **defaults))
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self._factory(name)
            self._breakers[name] = breaker
        return breaker

    def register(self, breaker: CircuitBreaker) -> None:
        self._breakers[breaker.name] = breaker

    def remove(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.pop(name, None)

    def names(self) -> List[str]:
        return list(self._breakers)

    async def reset_all(self) -> None:
        for breaker in list(self._breakers.values()):
            await breaker.reset()

    def all_statistics(self) -> Dict[str, CircuitBreakerStatistics]:
        return {name: breaker.statistics() for name, breaker in self._breakers.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)
