"""
Exception hierarchy for the Stepwright execution core.

Every error carries a machine-readable ``error_code`` and a ``context`` dict so
user-visible failures include enough structured detail (step number, tool
name, underlying message) to diagnose a run without re-executing it.
"""

from typing import Any, Dict, List, Optional


class StepwrightError(Exception):
    """Base exception for Stepwright"""

    def __init__(self, message: str, error_code: str = None, context: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "STEPWRIGHT_ERROR"
        self.context = context or {}

    def __str__(self):
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ConfigurationError(StepwrightError):
    """Configuration-related errors"""

    def __init__(self, message: str, error_code: str = None, context: Dict[str, Any] = None):
        super().__init__(message, error_code or "CONFIG_ERROR", context)


class InvalidInputError(StepwrightError):
    """Raised when a run is started with an unusable goal."""

    def __init__(self, message: str, error_code: str = None, context: Dict[str, Any] = None):
        super().__init__(message, error_code or "INVALID_INPUT", context)


# =============================================================================
# RESILIENCE
# =============================================================================

class ResilienceError(StepwrightError):
    """Base class for retry, circuit breaker and fallback exhaustion."""

    def __init__(self, message: str, error_code: str = None, context: Dict[str, Any] = None):
        super().__init__(message, error_code or "RESILIENCE_ERROR", context)


class RetriesExhaustedError(ResilienceError):
    """All retry attempts failed.

    Only raised by a ``RetryPolicy`` configured with ``wrap_exhausted=True``;
    otherwise the last underlying error propagates unchanged.
    """

    def __init__(self, attempts: int, errors: List[str]):
        self.attempts = attempts
        self.errors = list(errors)
        last_error = self.errors[-1] if self.errors else "Unknown error"
        super().__init__(
            f"Retries exhausted after {attempts} attempts. Last error: {last_error}",
            "RETRIES_EXHAUSTED",
            {"attempts": attempts, "errors": self.errors},
        )

    @property
    def last_error(self) -> str:
        return self.errors[-1] if self.errors else "Unknown error"


class CircuitOpenError(ResilienceError):
    """The circuit breaker rejected the call without invoking the operation."""

    def __init__(self, breaker_name: str, retry_after: Optional[float] = None):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker is open for service: {breaker_name}",
            "CIRCUIT_OPEN",
            {"breaker": breaker_name, "retry_after": retry_after},
        )


class AllFallbacksFailedError(ResilienceError):
    """Every attempted step of a fallback chain failed.

    ``errors`` holds one ``"<step name>: <message>"`` entry per attempted step,
    in execution order.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            f"All fallback strategies failed. Errors: {'; '.join(self.errors)}",
            "ALL_FALLBACKS_FAILED",
            {"errors": self.errors},
        )


# =============================================================================
# GUARDRAILS
# =============================================================================

class GuardrailError(StepwrightError):
    """Base class for guardrail failures. Never retried automatically."""

    def __init__(self, message: str, guardrail_name: str, error_code: str = None,
                 context: Dict[str, Any] = None):
        self.guardrail_name = guardrail_name
        ctx = {"guardrail": guardrail_name}
        ctx.update(context or {})
        super().__init__(message, error_code or "GUARDRAIL_ERROR", ctx)


class GuardrailTripwireError(GuardrailError):
    """A guardrail rejected the payload."""

    kind = "guardrail"

    def __init__(self, guardrail_name: str, message: Optional[str] = None,
                 output_info: Any = None, context: Dict[str, Any] = None):
        self.tripwire_message = message
        self.output_info = output_info
        super().__init__(
            self._describe(guardrail_name, message),
            guardrail_name,
            "GUARDRAIL_TRIPWIRE",
            context,
        )

    def _describe(self, guardrail_name: str, message: Optional[str]) -> str:
        return f"{self.kind.capitalize()} guardrail '{guardrail_name}' tripwire triggered: {message or 'No message'}"


class InputTripwireTriggered(GuardrailTripwireError):
    kind = "input"


class OutputTripwireTriggered(GuardrailTripwireError):
    kind = "output"

    def __init__(self, guardrail_name: str, producer: str, message: Optional[str] = None,
                 output_info: Any = None):
        self.producer = producer
        super().__init__(guardrail_name, message, output_info, {"producer": producer})

    def _describe(self, guardrail_name: str, message: Optional[str]) -> str:
        return (f"Output guardrail '{guardrail_name}' tripwire triggered for '{self.producer}': "
                f"{message or 'No message'}")


class ToolInputTripwireTriggered(GuardrailTripwireError):
    kind = "tool input"

    def __init__(self, guardrail_name: str, tool_name: str, message: Optional[str] = None,
                 output_info: Any = None):
        self.tool_name = tool_name
        super().__init__(guardrail_name, message, output_info, {"tool_name": tool_name})

    def _describe(self, guardrail_name: str, message: Optional[str]) -> str:
        return (f"Tool input guardrail '{guardrail_name}' tripwire triggered for tool "
                f"'{self.tool_name}': {message or 'No message'}")


class ToolOutputTripwireTriggered(GuardrailTripwireError):
    kind = "tool output"

    def __init__(self, guardrail_name: str, tool_name: str, message: Optional[str] = None,
                 output_info: Any = None):
        self.tool_name = tool_name
        super().__init__(guardrail_name, message, output_info, {"tool_name": tool_name})

    def _describe(self, guardrail_name: str, message: Optional[str]) -> str:
        return (f"Tool output guardrail '{guardrail_name}' tripwire triggered for tool "
                f"'{self.tool_name}': {message or 'No message'}")


class GuardrailExecutionFailed(GuardrailError):
    """The guardrail itself raised instead of returning a result."""

    def __init__(self, guardrail_name: str, underlying_error: str):
        self.underlying_error = underlying_error
        super().__init__(
            f"Guardrail '{guardrail_name}' execution failed: {underlying_error}",
            guardrail_name,
            "GUARDRAIL_EXECUTION_FAILED",
            {"underlying_error": underlying_error},
        )


# =============================================================================
# PLAN EXECUTION
# =============================================================================

class PlanParseError(StepwrightError):
    """The model response did not contain a usable plan."""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(message, "PLAN_PARSE_ERROR", {"response_preview": raw_response[:200]})


class ToolExecutionError(StepwrightError):
    """The tool service reported an error for a tool invocation."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' failed: {message}", "TOOL_EXECUTION_ERROR",
                         {"tool_name": tool_name})


class StepExecutionError(StepwrightError):
    """A plan step failed; wraps the underlying tool or model error."""

    def __init__(self, step_number: int, message: str, tool_name: Optional[str] = None):
        self.step_number = step_number
        self.tool_name = tool_name
        self.reason = message
        where = f"Step {step_number}" + (f" [tool: {tool_name}]" if tool_name else "")
        super().__init__(f"{where} failed: {message}", "STEP_EXECUTION_ERROR",
                         {"step_number": step_number, "tool_name": tool_name})


class ModelProviderUnavailableError(StepwrightError):
    def __init__(self, message: str = "No model provider configured"):
        super().__init__(message, "MODEL_PROVIDER_UNAVAILABLE")


class RunCancelledError(StepwrightError):
    """The run was cancelled. ``plans`` holds every revision started so far;
    steps completed before cancellation keep their results."""

    def __init__(self, message: str = "Plan execution was cancelled", plans: Optional[List[Any]] = None):
        self.plans = list(plans or [])
        super().__init__(message, "RUN_CANCELLED", {"plan_revisions": len(self.plans)})


class RunTimeoutError(StepwrightError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Plan execution timed out after {timeout:.1f}s", "RUN_TIMEOUT",
                         {"timeout_seconds": timeout})
