"""
Test module for stepwright.infrastructure.resilience.circuit_breaker
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from stepwright.exceptions import CircuitOpenError
from stepwright.infrastructure.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def _fail():
    raise RuntimeError("service down")


async def _succeed():
    return "ok"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("search", failure_threshold=3, reset_timeout=30.0, clock=clock)


async def _trip(breaker, failures):
    for _ in range(failures):
        with pytest.raises(RuntimeError):
            await breaker.execute(_fail)


class TestCircuitBreakerClosed:

    @pytest.mark.asyncio
    async def test_success_passes_through(self, breaker):
        assert await breaker.execute(_succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failures_below_threshold_keep_circuit_closed(self, breaker):
        await _trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, breaker):
        await _trip(breaker, 2)
        await breaker.execute(_succeed)
        await _trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.statistics().consecutive_failures == 2

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            CircuitBreaker("x", failure_threshold=0)
        with pytest.raises(ValueError):
            CircuitBreaker("x", half_open_max_requests=0)


class TestCircuitBreakerOpen:

    @pytest.mark.asyncio
    async def test_threshold_opens_circuit_and_rejects_without_invoking(self, breaker):
        await _trip(breaker, 3)
        assert breaker.state == CircuitState.OPEN

        operation = AsyncMock(return_value="never")
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(operation)

        operation.assert_not_called()
        assert exc_info.value.breaker_name == "search"
        assert exc_info.value.retry_after == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_stays_open_before_timeout(self, breaker, clock):
        await _trip(breaker, 3)
        clock.advance(29.9)
        assert await breaker.current_state() == CircuitState.OPEN
        assert not await breaker.is_allowing_requests()


class TestCircuitBreakerHalfOpen:

    @pytest.mark.asyncio
    async def test_half_opens_after_reset_timeout(self, breaker, clock):
        await _trip(breaker, 3)
        clock.advance(30.0)
        assert await breaker.current_state() == CircuitState.HALF_OPEN
        assert await breaker.is_allowing_requests()

    @pytest.mark.asyncio
    async def test_successful_trial_closes_circuit(self, breaker, clock):
        await _trip(breaker, 3)
        clock.advance(30.0)

        assert await breaker.execute(_succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.statistics().consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_failed_trial_reopens_and_restarts_timer(self, breaker, clock):
        await _trip(breaker, 3)
        clock.advance(30.0)

        with pytest.raises(RuntimeError):
            await breaker.execute(_fail)
        assert breaker.state == CircuitState.OPEN

        clock.advance(29.0)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(_succeed)

        clock.advance(1.0)
        assert await breaker.execute(_succeed) == "ok"

    @pytest.mark.asyncio
    async def test_exactly_one_trial_call_is_admitted(self, breaker, clock):
        await _trip(breaker, 3)
        clock.advance(30.0)

        release = asyncio.Event()
        invoked = []

        async def slow_trial():
            invoked.append("trial")
            await release.wait()
            return "recovered"

        trial = asyncio.ensure_future(breaker.execute(slow_trial))
        await asyncio.sleep(0)

        second = AsyncMock(return_value="second")
        with pytest.raises(CircuitOpenError):
            await breaker.execute(second)
        second.assert_not_called()

        release.set()
        assert await trial == "recovered"
        assert invoked == ["trial"]
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_success_threshold_requires_consecutive_trials(self, clock):
        breaker = CircuitBreaker("db", failure_threshold=1, success_threshold=2,
                                 reset_timeout=5.0, clock=clock)
        await _trip(breaker, 1)
        clock.advance(5.0)

        await breaker.execute(_succeed)
        assert breaker.state == CircuitState.HALF_OPEN
        await breaker.execute(_succeed)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_state_reads_reflect_elapsed_timeout(self, breaker, clock):
        await _trip(breaker, 3)
        assert breaker.state == CircuitState.OPEN
        assert breaker.statistics().state == CircuitState.OPEN

        clock.advance(30.0)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.statistics().state == CircuitState.HALF_OPEN
        assert await breaker.current_state() == CircuitState.HALF_OPEN
        assert await breaker.execute(_succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED


class TestCircuitBreakerControls:

    @pytest.mark.asyncio
    async def test_manual_trip_and_reset(self, breaker):
        await breaker.trip()
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.execute(_succeed)

        await breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.execute(_succeed) == "ok"

    @pytest.mark.asyncio
    async def test_statistics(self, breaker):
        await breaker.execute(_succeed)
        await _trip(breaker, 1)

        stats = breaker.statistics()
        assert stats.name == "search"
        assert stats.success_count == 1
        assert stats.failure_count == 1
        assert stats.total_calls == 2
        assert stats.success_rate == 0.5
        assert stats.last_failure_time is not None

    @pytest.mark.asyncio
    async def test_state_change_callback(self, clock):
        callback = Mock()
        breaker = CircuitBreaker("cb", failure_threshold=1, reset_timeout=1.0,
                                 on_state_change=callback, clock=clock)
        await _trip(breaker, 1)
        clock.advance(1.0)
        await breaker.execute(_succeed)

        transitions = [c.args for c in callback.call_args_list]
        assert transitions == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    @pytest.mark.asyncio
    async def test_async_state_change_callback_is_scheduled(self):
        callback = AsyncMock()
        breaker = CircuitBreaker("cb", failure_threshold=1, on_state_change=callback)
        await _trip(breaker, 1)
        await asyncio.sleep(0)
        callback.assert_awaited_once_with(CircuitState.CLOSED, CircuitState.OPEN)


class TestCircuitBreakerRegistry:

    def test_get_creates_once_with_defaults(self):
        registry = CircuitBreakerRegistry(failure_threshold=2)
        first = registry.get("search")
        assert registry.get("search") is first
        assert first.failure_threshold == 2
        assert "search" in registry
        assert len(registry) == 1

    def test_factory(self):
        registry = CircuitBreakerRegistry(factory=lambda name: CircuitBreaker(name, failure_threshold=9))
        assert registry.get("x").failure_threshold == 9

    def test_register_and_remove(self):
        registry = CircuitBreakerRegistry()
        breaker = CircuitBreaker("manual")
        registry.register(breaker)
        assert registry.get("manual") is breaker
        assert registry.names() == ["manual"]
        assert registry.remove("manual") is breaker
        assert registry.remove("manual") is None

    @pytest.mark.asyncio
    async def test_reset_all_and_statistics(self):
        registry = CircuitBreakerRegistry(failure_threshold=1)
        await _trip(registry.get("a"), 1)
        await registry.get("b").execute(_succeed)

        stats = registry.all_statistics()
        assert stats["a"].state == CircuitState.OPEN
        assert stats["b"].state == CircuitState.CLOSED

        await registry.reset_all()
        assert registry.get("a").state == CircuitState.CLOSED
