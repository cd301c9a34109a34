"""Guardrail Runner

Runs a set of guardrails against one payload and turns tripwires into typed
errors. Tripwires always propagate: a run either returns the results of a
fully passing guardrail set or raises.

Guardrails may be evaluated concurrently (``run_in_parallel``). The outcome
is still resolved in declaration order, so when several guardrails trip the
first declared one is reported regardless of which finished first.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Sequence, Union

from stepwright.exceptions import (
    GuardrailError,
    GuardrailExecutionFailed,
    GuardrailTripwireError,
    InputTripwireTriggered,
    OutputTripwireTriggered,
    ToolInputTripwireTriggered,
    ToolOutputTripwireTriggered,
)
from stepwright.infrastructure.observability.metrics import TRIPWIRE_COUNTER
from stepwright.models.guardrails import (
    GuardrailContext,
    GuardrailExecutionResult,
    GuardrailResult,
    GuardrailType,
    ToolGuardrailData,
)
from stepwright.services.guardrails.base import (
    Guardrail,
    InputGuardrail,
    OutputGuardrail,
    ToolInputGuardrail,
    ToolOutputGuardrail,
)

if TYPE_CHECKING:
    from stepwright.services.planning.hooks import RunHooks


logger = logging.getLogger(__name__)

Invoke = Callable[[Guardrail], Awaitable[GuardrailResult]]
TripwireFactory = Callable[[GuardrailExecutionResult], GuardrailTripwireError]


@dataclass(frozen=True)
class GuardrailRunnerConfig:
    """Runner behaviour.

    Attributes:
        run_in_parallel: Evaluate guardrails concurrently
        stop_on_first_tripwire: Sequential mode stops evaluating at the first
            tripwire; otherwise every guardrail runs and the first declared
            tripwire is raised afterwards
    """
    run_in_parallel: bool = False
    stop_on_first_tripwire: bool = True

    @classmethod
    def parallel(cls) -> "GuardrailRunnerConfig":
        return cls(run_in_parallel=True)


class GuardrailRunner:
    """Executes input, output and tool guardrails with tripwire handling."""

    def __init__(self, config: Optional[GuardrailRunnerConfig] = None,
                 hooks: Optional["RunHooks"] = None):
        self.config = config or GuardrailRunnerConfig()
        self.hooks = hooks

    # -- public entry points ---------------------------------------------

    async def run_input_guardrails(
        self,
        guardrails: Sequence[InputGuardrail],
        text: str,
        context: Optional[GuardrailContext] = None,
    ) -> List[GuardrailExecutionResult]:
        return await self._run(
            guardrails,
            GuardrailType.INPUT,
            lambda g: g.validate_input(text, context),
            lambda r: InputTripwireTriggered(r.guardrail_name, r.result.message, r.result.output_info),
            context,
        )

    async def run_output_guardrails(
        self,
        guardrails: Sequence[OutputGuardrail],
        text: str,
        producer: str,
        context: Optional[GuardrailContext] = None,
    ) -> List[GuardrailExecutionResult]:
        return await self._run(
            guardrails,
            GuardrailType.OUTPUT,
            lambda g: g.validate_output(text, producer, context),
            lambda r: OutputTripwireTriggered(r.guardrail_name, producer, r.result.message,
                                              r.result.output_info),
            context,
        )

    async def run_tool_input_guardrails(
        self,
        guardrails: Sequence[ToolInputGuardrail],
        data: ToolGuardrailData,
        context: Optional[GuardrailContext] = None,
    ) -> List[GuardrailExecutionResult]:
        return await self._run(
            guardrails,
            GuardrailType.TOOL_INPUT,
            lambda g: g.validate_tool_input(data),
            lambda r: ToolInputTripwireTriggered(r.guardrail_name, data.tool_name, r.result.message,
                                                 r.result.output_info),
            context,
        )

    async def run_tool_output_guardrails(
        self,
        guardrails: Sequence[ToolOutputGuardrail],
        data: ToolGuardrailData,
        output: str,
        context: Optional[GuardrailContext] = None,
    ) -> List[GuardrailExecutionResult]:
        return await self._run(
            guardrails,
            GuardrailType.TOOL_OUTPUT,
            lambda g: g.validate_tool_output(data, output),
            lambda r: ToolOutputTripwireTriggered(r.guardrail_name, data.tool_name, r.result.message,
                                                  r.result.output_info),
            context,
        )

    async def validate_input(self, guardrails: Sequence[InputGuardrail], text: str,
                             context: Optional[GuardrailContext] = None) -> str:
        """Return ``text`` once every input guardrail passed."""
        await self.run_input_guardrails(guardrails, text, context)
        return text

    async def validate_output(self, guardrails: Sequence[OutputGuardrail], text: str, producer: str,
                              context: Optional[GuardrailContext] = None) -> str:
        """Return ``text`` once every output guardrail passed."""
        await self.run_output_guardrails(guardrails, text, producer, context)
        return text

    # -- execution --------------------------------------------------------

    async def _run(
        self,
        guardrails: Sequence[Guardrail],
        guardrail_type: GuardrailType,
        invoke: Invoke,
        make_error: TripwireFactory,
        context: Optional[GuardrailContext],
    ) -> List[GuardrailExecutionResult]:
        if not guardrails:
            return []
        if self.config.run_in_parallel:
            return await self._run_parallel(guardrails, guardrail_type, invoke, make_error, context)
        return await self._run_sequential(guardrails, guardrail_type, invoke, make_error, context)

    async def _run_sequential(self, guardrails, guardrail_type, invoke, make_error, context):
        results: List[GuardrailExecutionResult] = []
        for guardrail in guardrails:
            execution = await self._evaluate(guardrail, guardrail_type, invoke)
            results.append(execution)
            if execution.result.tripwire_triggered:
                await self._on_tripwire(execution, context)
                if self.config.stop_on_first_tripwire:
                    raise make_error(execution)

        return self._raise_first_tripwire(results, make_error)

    async def _run_parallel(self, guardrails, guardrail_type, invoke, make_error, context):
        outcomes = await asyncio.gather(
            *(self._evaluate(g, guardrail_type, invoke) for g in guardrails),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome

        # Resolve in declaration order, exactly as the sequential scan would
        results: List[GuardrailExecutionResult] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
            if outcome.result.tripwire_triggered:
                await self._on_tripwire(outcome, context)
                if self.config.stop_on_first_tripwire:
                    raise make_error(outcome)

        return self._raise_first_tripwire(results, make_error)

    async def _evaluate(self, guardrail: Guardrail, guardrail_type: GuardrailType,
                        invoke: Invoke) -> GuardrailExecutionResult:
        start = time.perf_counter()
        try:
            result = await invoke(guardrail)
        except GuardrailError:
            raise
        except Exception as e:
            logger.error(f"Guardrail '{guardrail.name}' raised {type(e).__name__}: {e}")
            raise GuardrailExecutionFailed(guardrail.name, str(e) or type(e).__name__) from e

        if not isinstance(result, GuardrailResult):
            raise GuardrailExecutionFailed(
                guardrail.name, f"returned {type(result).__name__} instead of GuardrailResult"
            )

        return GuardrailExecutionResult(
            guardrail_name=guardrail.name,
            guardrail_type=guardrail_type,
            result=result,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    async def _on_tripwire(self, execution: GuardrailExecutionResult,
                           context: Optional[GuardrailContext]) -> None:
        logger.warning(
            f"{execution.guardrail_type.value} guardrail '{execution.guardrail_name}' "
            f"tripwire triggered: {execution.result.message or 'No message'}"
        )
        TRIPWIRE_COUNTER.labels(
            guardrail=execution.guardrail_name, guardrail_type=execution.guardrail_type.value
        ).inc()
        if self.hooks is None:
            return
        # The tripwire error must still be raised by the caller
        try:
            await self.hooks.on_guardrail_triggered(
                context, execution.guardrail_name, execution.guardrail_type, execution.result
            )
        except Exception as e:
            logger.warning(
                f"on_guardrail_triggered hook failed for '{execution.guardrail_name}': "
                f"{type(e).__name__}: {e}"
            )

    @staticmethod
    def _raise_first_tripwire(results: List[GuardrailExecutionResult],
                              make_error: TripwireFactory) -> List[GuardrailExecutionResult]:
        for execution in results:
            if execution.result.tripwire_triggered:
                raise make_error(execution)
        return results
