"""Guardrails

Pluggable payload checks and the runner that gates model and tool calls
with them.
"""

from .base import (
    Guardrail,
    InputGuardrail,
    OutputGuardrail,
    ToolInputGuardrail,
    ToolOutputGuardrail,
)
from .builtin import (
    BlockedPatternGuardrail,
    MaxLengthGuardrail,
    SensitiveDataGuardrail,
    TextGuardrail,
)
from .runner import GuardrailRunner, GuardrailRunnerConfig

__all__ = [
    "Guardrail",
    "InputGuardrail",
    "OutputGuardrail",
    "ToolInputGuardrail",
    "ToolOutputGuardrail",
    "TextGuardrail",
    "MaxLengthGuardrail",
    "BlockedPatternGuardrail",
    "SensitiveDataGuardrail",
    "GuardrailRunner",
    "GuardrailRunnerConfig",
]
