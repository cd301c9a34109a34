"""Models package - central exports for Stepwright models."""

from .guardrails import (
    GuardrailContext,
    GuardrailExecutionResult,
    GuardrailResult,
    GuardrailType,
    ToolGuardrailData,
)
from .interfaces import (
    BaseTool,
    IModelProvider,
    IToolExecutor,
    ModelOptions,
    ToolDescription,
    ToolParameter,
    ToolResult,
)
from .plan import (
    ExecutionPlan,
    InvalidStepTransition,
    PlanParseFailurePolicy,
    PlanResponse,
    PlanStep,
    PlanStepData,
    StepStatus,
)

__all__ = [
    "ExecutionPlan",
    "InvalidStepTransition",
    "PlanParseFailurePolicy",
    "PlanResponse",
    "PlanStep",
    "PlanStepData",
    "StepStatus",
    "GuardrailContext",
    "GuardrailExecutionResult",
    "GuardrailResult",
    "GuardrailType",
    "ToolGuardrailData",
    "BaseTool",
    "IModelProvider",
    "IToolExecutor",
    "ModelOptions",
    "ToolDescription",
    "ToolParameter",
    "ToolResult",
]
