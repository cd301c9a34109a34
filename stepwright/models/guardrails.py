"""Guardrail Models

Structural results produced by guardrails and the runner, plus the payload
handed to tool guardrails.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class GuardrailType(str, Enum):
    INPUT = "input"
    OUTPUT = "output"
    TOOL_INPUT = "tool_input"
    TOOL_OUTPUT = "tool_output"


class GuardrailResult(BaseModel):
    """Outcome of a single guardrail check.

    Attributes:
        tripwire_triggered: True when the payload must be rejected
        output_info: Optional diagnostic payload (matched patterns, scores)
        message: Human-readable explanation
        metadata: Extra structured detail for observability
    """
    tripwire_triggered: bool = False
    output_info: Any = None
    message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def passed(cls, message: Optional[str] = None, output_info: Any = None,
               metadata: Optional[Dict[str, Any]] = None) -> "GuardrailResult":
        return cls(tripwire_triggered=False, output_info=output_info, message=message,
                   metadata=metadata or {})

    @classmethod
    def tripwire(cls, message: str, output_info: Any = None,
                 metadata: Optional[Dict[str, Any]] = None) -> "GuardrailResult":
        return cls(tripwire_triggered=True, output_info=output_info, message=message,
                   metadata=metadata or {})


class GuardrailExecutionResult(BaseModel):
    """A guardrail's result tagged with its name, kind and duration."""
    guardrail_name: str
    guardrail_type: GuardrailType
    result: GuardrailResult
    duration_ms: float = 0.0

    @property
    def passed(self) -> bool:
        return not self.result.tripwire_triggered


class GuardrailContext(BaseModel):
    """Run information available to guardrails.

    Passed explicitly through the runner; guardrails must not look up
    ambient state.
    """
    run_id: Optional[str] = None
    goal: Optional[str] = None
    plan_revision: Optional[int] = None
    step_number: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ToolGuardrailData(BaseModel):
    """Payload for tool input/output guardrails.

    ``output`` is ``None`` for tool input checks.
    """
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[str] = None
    step_number: Optional[int] = None
