"""Fallback Chain

An ordered list of alternative ways to produce a value. Steps run strictly in
declaration order and the first success wins. Builder methods return new
chains, so a configured chain can be shared and extended without affecting
other holders.

    chain = (
        FallbackChain("summary")
        .attempt("primary", call_primary)
        .attempt_if("cache", cache_enabled, read_cache)
        .fallback("static", "Summary unavailable")
    )
    value = await chain.execute()
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Tuple, TypeVar, Union

from stepwright.exceptions import AllFallbacksFailedError
from stepwright.infrastructure.observability.metrics import FALLBACK_STEP_COUNTER


logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Condition = Callable[[], Union[bool, Awaitable[bool]]]
FailureCallback = Callable[[str, BaseException], Any]

NO_STEPS_MESSAGE = "No steps configured in fallback chain"


@dataclass(frozen=True)
class StepError:
    """A failed attempt: the step's name, its position in the chain and the error."""
    step_name: str
    step_index: int
    error: BaseException

    def describe(self) -> str:
        return f"{self.step_name}: {self.error}"


@dataclass
class ExecutionResult(Generic[T]):
    """Successful chain outcome with diagnostics.

    Attributes:
        output: Value produced by the winning step
        step_name: Name of the winning step
        step_index: Declaration index of the winning step
        total_attempts: Steps actually invoked, the winner included; skipped
                        conditional steps are not counted
        errors: Failures that preceded the winner, in execution order
    """
    output: T
    step_name: str
    step_index: int
    total_attempts: int
    errors: List[StepError] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class _Step:
    name: str
    operation: Callable[[], Any]
    condition: Optional[Condition] = None
    is_terminal: bool = False


class FallbackChain(Generic[T]):
    """Named, immutable sequence of attempt steps with an optional terminal fallback."""

    def __init__(self, name: str = "fallback_chain", steps: Tuple[_Step, ...] = (),
                 failure_callback: Optional[FailureCallback] = None):
        self.name = name
        self._steps = tuple(steps)
        self._failure_callback = failure_callback

    @classmethod
    def from_operations(cls, *operations: Tuple[str, Operation], name: str = "fallback_chain") -> "FallbackChain":
        """Chain of unconditional attempts, one per ``(name, operation)`` pair."""
        chain = cls(name)
        for step_name, operation in operations:
            chain = chain.attempt(step_name, operation)
        return chain

    # -- builder ----------------------------------------------------------

    def attempt(self, name: str, operation: Operation) -> "FallbackChain":
        return self._append(_Step(name=name, operation=operation))

    def attempt_if(self, name: str, condition: Condition, operation: Operation) -> "FallbackChain":
        """Add a step that only runs when ``condition()`` is true at execution time."""
        return self._append(_Step(name=name, operation=operation, condition=condition))

    def fallback(self, name: str, value_or_operation: Any) -> "FallbackChain":
        """Add the terminal step: a literal value, or an operation expected never to fail.

        A failing terminal operation is a programming error and propagates
        as-is instead of being reported as a chain failure.
        """
        if callable(value_or_operation):
            operation = value_or_operation
        else:
            operation = lambda: value_or_operation  # noqa: E731
        return self._append(_Step(name=name, operation=operation, is_terminal=True))

    def on_failure(self, callback: FailureCallback) -> "FallbackChain":
        """Invoke ``callback(step_name, error)`` after each attempted step fails."""
        return FallbackChain(self.name, self._steps, callback)

    def _append(self, step: _Step) -> "FallbackChain":
        if self._steps and self._steps[-1].is_terminal:
            raise ValueError(f"Fallback chain '{self.name}' already ends with terminal step "
                             f"'{self._steps[-1].name}'")
        return FallbackChain(self.name, self._steps + (step,), self._failure_callback)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def __len__(self) -> int:
        return len(self._steps)

    # -- execution --------------------------------------------------------

    async def execute(self) -> T:
        result = await self.execute_with_result()
        return result.output

    async def execute_with_result(self) -> ExecutionResult[T]:
        """Run the chain and report which step produced the value.

        Raises:
            AllFallbacksFailedError: every attempted step failed, or no step
                was attemptable. ``errors`` holds one ``"name: message"``
                entry per attempted step.
        """
        if not self._steps:
            raise AllFallbacksFailedError([NO_STEPS_MESSAGE])

        errors: List[StepError] = []
        attempts = 0

        for index, step in enumerate(self._steps):
            if step.condition is not None and not await _resolve(step.condition()):
                logger.debug(f"Fallback chain '{self.name}': skipping step '{step.name}'")
                continue

            attempts += 1
            if step.is_terminal:
                output = await _resolve(step.operation())
                self._log_success(step, errors)
                return ExecutionResult(output, step.name, index, attempts, errors)

            try:
                output = await _resolve(step.operation())
            except Exception as error:
                errors.append(StepError(step.name, index, error))
                FALLBACK_STEP_COUNTER.labels(chain=self.name, status="failed").inc()
                logger.info(f"Fallback chain '{self.name}': step '{step.name}' failed: {error}")
                if self._failure_callback is not None:
                    await _resolve(self._failure_callback(step.name, error))
                continue

            self._log_success(step, errors)
            return ExecutionResult(output, step.name, index, attempts, errors)

        logger.warning(f"Fallback chain '{self.name}': all {len(errors)} attempted steps failed")
        raise AllFallbacksFailedError([e.describe() for e in errors])

    def _log_success(self, step: _Step, errors: List[StepError]) -> None:
        FALLBACK_STEP_COUNTER.labels(chain=self.name, status="succeeded").inc()
        if errors:
            logger.info(f"Fallback chain '{self.name}' recovered via '{step.name}' "
                        f"after {len(errors)} failure(s)")


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
