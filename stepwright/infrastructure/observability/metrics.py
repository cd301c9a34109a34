"""metrics.py

Purpose: Prometheus metrics for the execution core

Key Components:
--------------------------------------------------------------------------------
  STEP_COUNTER, STEP_DURATION, REPLAN_COUNTER, RUN_COUNTER
  RETRY_COUNTER, BREAKER_TRANSITIONS, FALLBACK_STEP_COUNTER, RATE_LIMIT_WAITS,
  TRIPWIRE_COUNTER
  def record_step(kind, status, duration)

Technology Stack:
--------------------------------------------------------------------------------
prometheus-client
"""

from prometheus_client import Counter, Histogram


# Plan execution
RUN_COUNTER = Counter(
    "stepwright_runs_total",
    "Total number of plan execution runs",
    ["status"],
)

STEP_COUNTER = Counter(
    "stepwright_steps_total",
    "Total number of executed plan steps",
    ["kind", "status"],
)

STEP_DURATION = Histogram(
    "stepwright_step_duration_seconds",
    "Plan step duration in seconds",
    ["kind"],
)

REPLAN_COUNTER = Counter(
    "stepwright_replans_total",
    "Total number of plan revisions requested after step failures",
)

PLAN_PARSE_FAILURES = Counter(
    "stepwright_plan_parse_failures_total",
    "Model responses that did not contain a usable plan",
    ["policy"],
)

# Resilience
RETRY_COUNTER = Counter(
    "stepwright_retries_total",
    "Retry attempts scheduled after a failed operation",
    ["operation"],
)

BREAKER_TRANSITIONS = Counter(
    "stepwright_circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["breaker", "from_state", "to_state"],
)

BREAKER_REJECTIONS = Counter(
    "stepwright_circuit_breaker_rejections_total",
    "Calls rejected without invoking the operation",
    ["breaker"],
)

FALLBACK_STEP_COUNTER = Counter(
    "stepwright_fallback_steps_total",
    "Fallback chain step outcomes",
    ["chain", "status"],
)

RATE_LIMIT_WAITS = Counter(
    "stepwright_rate_limit_waits_total",
    "Times a caller waited for a rate limiter token",
    ["limiter"],
)

# Guardrails
TRIPWIRE_COUNTER = Counter(
    "stepwright_guardrail_tripwires_total",
    "Guardrail tripwires triggered",
    ["guardrail", "guardrail_type"],
)


def record_step(kind: str, status: str, duration: float) -> None:
    """Record one finished plan step. ``kind`` is ``tool`` or ``model``."""
    STEP_COUNTER.labels(kind=kind, status=status).inc()
    STEP_DURATION.labels(kind=kind).observe(duration)
