"""Resilience Primitives

Independent failure-handling building blocks: ``RetryPolicy``,
``CircuitBreaker`` (with ``CircuitBreakerRegistry``), ``FallbackChain`` and
the token bucket ``RateLimiter``.
None of them depends on the planning engine.
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerStatistics,
    CircuitState,
)
from .fallback_chain import ExecutionResult, FallbackChain, StepError
from .rate_limiter import RateLimiter
from .retry_policy import BackoffStrategy, RetryPolicy

__all__ = [
    "BackoffStrategy",
    "RetryPolicy",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStatistics",
    "CircuitState",
    "FallbackChain",
    "ExecutionResult",
    "StepError",
    "RateLimiter",
]
