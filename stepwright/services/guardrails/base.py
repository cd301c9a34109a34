"""Guardrail Interfaces

A guardrail inspects a payload and returns a ``GuardrailResult``. Each kind
of payload has its own validation method, so a single class may act as
several kinds of guardrail by implementing more than one interface:

- ``InputGuardrail.validate_input(text, context)``
- ``OutputGuardrail.validate_output(text, producer, context)``
- ``ToolInputGuardrail.validate_tool_input(data)``
- ``ToolOutputGuardrail.validate_tool_output(data, output)``

Guardrails must not raise to reject a payload; they return a tripwire
result. Raising is reported as an execution failure of the guardrail.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from stepwright.models.guardrails import GuardrailContext, GuardrailResult, ToolGuardrailData


async def _call(handler: Callable[..., Any], *args) -> GuardrailResult:
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Guardrail(ABC):
    """Common base: every guardrail has a unique, human-readable name."""

    name: str = ""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class InputGuardrail(Guardrail):
    """Validates text before it reaches planning."""

    @abstractmethod
    async def validate_input(self, text: str, context: Optional[GuardrailContext] = None) -> GuardrailResult:
        pass

    @staticmethod
    def from_callable(name: str, handler: Callable[[str, Optional[GuardrailContext]], Any]) -> "InputGuardrail":
        """Wrap a sync or async ``handler(text, context)`` as an input guardrail."""
        return ClosureInputGuardrail(name, handler)


class OutputGuardrail(Guardrail):
    """Validates text produced by the model (the final answer)."""

    @abstractmethod
    async def validate_output(self, text: str, producer: str,
                              context: Optional[GuardrailContext] = None) -> GuardrailResult:
        pass

    @staticmethod
    def from_callable(name: str, handler: Callable[[str, str, Optional[GuardrailContext]], Any]) -> "OutputGuardrail":
        """Wrap a sync or async ``handler(text, producer, context)``."""
        return ClosureOutputGuardrail(name, handler)


class ToolInputGuardrail(Guardrail):
    """Validates a tool invocation before it runs."""

    @abstractmethod
    async def validate_tool_input(self, data: ToolGuardrailData) -> GuardrailResult:
        pass

    @staticmethod
    def from_callable(name: str, handler: Callable[[ToolGuardrailData], Any]) -> "ToolInputGuardrail":
        return ClosureToolInputGuardrail(name, handler)


class ToolOutputGuardrail(Guardrail):
    """Validates a tool's output before it is recorded as a step result."""

    @abstractmethod
    async def validate_tool_output(self, data: ToolGuardrailData, output: str) -> GuardrailResult:
        pass

    @staticmethod
    def from_callable(name: str, handler: Callable[[ToolGuardrailData, str], Any]) -> "ToolOutputGuardrail":
        return ClosureToolOutputGuardrail(name, handler)


class ClosureInputGuardrail(InputGuardrail):
    def __init__(self, name: str, handler: Callable[..., Any]):
        self.name = name
        self._handler = handler

    async def validate_input(self, text: str, context: Optional[GuardrailContext] = None) -> GuardrailResult:
        return await _call(self._handler, text, context)


class ClosureOutputGuardrail(OutputGuardrail):
    def __init__(self, name: str, handler: Callable[..., Any]):
        self.name = name
        self._handler = handler

    async def validate_output(self, text: str, producer: str,
                              context: Optional[GuardrailContext] = None) -> GuardrailResult:
        return await _call(self._handler, text, producer, context)


class ClosureToolInputGuardrail(ToolInputGuardrail):
    def __init__(self, name: str, handler: Callable[..., Any]):
        self.name = name
        self._handler = handler

    async def validate_tool_input(self, data: ToolGuardrailData) -> GuardrailResult:
        return await _call(self._handler, data)


class ClosureToolOutputGuardrail(ToolOutputGuardrail):
    def __init__(self, name: str, handler: Callable[..., Any]):
        self.name = name
        self._handler = handler

    async def validate_tool_output(self, data: ToolGuardrailData, output: str) -> GuardrailResult:
        return await _call(self._handler, data, output)
