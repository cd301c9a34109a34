"""Stepwright

Resilient multi-step execution core: goal -> dependency-ordered plan ->
concurrent step execution -> replanning on failure -> synthesized answer,
with retry, circuit breaker, fallback chain and guardrail primitives.
"""

from stepwright.exceptions import StepwrightError
from stepwright.models.plan import ExecutionPlan, PlanStep, StepStatus
from stepwright.services.planning.engine import EngineConfig, PlanExecutionEngine, PlanRunResult
from stepwright.services.planning.hooks import RunHooks

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "ExecutionPlan",
    "PlanExecutionEngine",
    "PlanRunResult",
    "PlanStep",
    "RunHooks",
    "StepStatus",
    "StepwrightError",
    "__version__",
]
