"""Plan Execution Engine

Turns a goal into a dependency-ordered plan, executes it and synthesizes the
final answer.

Each plan revision moves through ``planning -> executing`` and ends in one of
three ways:

- succeeded: every step completed, go to synthesis
- needs replan: at least one step failed, request a revised plan
- exhausted: steps failed but the replan budget is spent, go to synthesis
  with whatever results exist

Steps run as asyncio tasks as soon as their dependencies are completed, up
to ``max_concurrent_steps`` at a time. The replan decision is made only once
no step of the revision is running. Step failures are recorded on the step
and never abort the revision; guardrail tripwires abort the whole run.

The engine is the only writer of plan and step state.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from stepwright.exceptions import (
    GuardrailError,
    InvalidInputError,
    ModelProviderUnavailableError,
    PlanParseError,
    RunCancelledError,
    RunTimeoutError,
    StepExecutionError,
    ToolExecutionError,
)
from stepwright.infrastructure.logging.config import get_logger
from stepwright.infrastructure.logging.coordinator import LoggingCoordinator
from stepwright.infrastructure.observability.metrics import (
    PLAN_PARSE_FAILURES,
    REPLAN_COUNTER,
    RUN_COUNTER,
    record_step,
)
from stepwright.infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry
from stepwright.infrastructure.resilience.rate_limiter import RateLimiter
from stepwright.infrastructure.resilience.retry_policy import RetryPolicy
from stepwright.models.guardrails import GuardrailContext, ToolGuardrailData
from stepwright.models.interfaces import IModelProvider, IToolExecutor, ModelOptions, ToolDescription
from stepwright.models.plan import ExecutionPlan, PlanParseFailurePolicy, PlanStep
from stepwright.services.guardrails.base import (
    InputGuardrail,
    OutputGuardrail,
    ToolInputGuardrail,
    ToolOutputGuardrail,
)
from stepwright.services.guardrails.runner import GuardrailRunner
from stepwright.services.planning.hooks import RunHooks
from stepwright.services.planning.plan_parser import fallback_plan, parse_plan
from stepwright.services.planning.prompts import (
    build_planning_prompt,
    build_replan_prompt,
    build_step_prompt,
    build_synthesis_prompt,
)
from stepwright.services.planning.streaming import collect_stream


logger = get_logger(__name__)


@dataclass
class EngineConfig:
    """Explicit engine configuration.

    Attributes:
        max_replan_attempts: Revised plans requested after failures before
            giving up and synthesizing from partial results
        max_concurrent_steps: Steps running at once within a revision, unbounded when ``None``
        plan_parse_failure_policy: Fall back to a single direct-answer step or abort
        enable_streaming: Stream the synthesis response through ``on_output_token``
        run_timeout_seconds: Wall-clock limit for a whole run
        result_summary_chars: Characters of each completed result quoted in replan prompts
        instructions: Identity line prepended to every prompt
        model_options: Options forwarded to every model call
    """
    max_replan_attempts: int = 3
    max_concurrent_steps: Optional[int] = None
    plan_parse_failure_policy: PlanParseFailurePolicy = PlanParseFailurePolicy.FALLBACK
    enable_streaming: bool = False
    run_timeout_seconds: Optional[float] = None
    result_summary_chars: int = 100
    instructions: str = ""
    model_options: Optional[ModelOptions] = None

    def __post_init__(self):
        if self.max_replan_attempts < 0:
            raise ValueError("max_replan_attempts must not be negative")
        if self.max_concurrent_steps is not None and self.max_concurrent_steps < 1:
            raise ValueError("max_concurrent_steps must be at least 1")


@dataclass
class PlanRunResult:
    """Outcome of a run.

    Attributes:
        answer: Synthesized final answer
        plans: Every plan revision executed, oldest first
        iterations: Number of revisions executed
        replans: Number of revised plans requested
        metadata: Run id and step counters
    """
    answer: str
    plans: List[ExecutionPlan]
    iterations: int
    replans: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def final_plan(self) -> Optional[ExecutionPlan]:
        return self.plans[-1] if self.plans else None

    @property
    def completed_steps(self) -> List[PlanStep]:
        return [step for plan in self.plans for step in plan.completed_steps]


@dataclass
class _RunState:
    goal: str
    run_id: str = ""
    plans: List[ExecutionPlan] = field(default_factory=list)
    replans: int = 0
    budget_exhausted: bool = False
    deadlocked: bool = False
    cancelled: bool = False


class PlanExecutionEngine:
    """Plans, executes and synthesizes.

    Args:
        model_provider: Model service used for planning, model steps and synthesis
        tool_executor: Tool service for tool steps; tool steps fail without one
        config: Engine configuration, defaults when ``None``
        hooks: Lifecycle observer
        guardrail_runner: Runner for every guardrail check, created with
            ``hooks`` when ``None``
        input_guardrails: Checked against the goal before planning
        output_guardrails: Checked against the final answer
        tool_input_guardrails: Checked before every tool call
        tool_output_guardrails: Checked against every tool output
        tool_retry_policy: Wraps each tool invocation
        breaker_registry: Routes each tool through the breaker named after it
        rate_limiter: Token bucket acquired before every model call
    """

    PRODUCER = "plan_execution_engine"

    def __init__(
        self,
        model_provider: Optional[IModelProvider],
        tool_executor: Optional[IToolExecutor] = None,
        config: Optional[EngineConfig] = None,
        hooks: Optional[RunHooks] = None,
        guardrail_runner: Optional[GuardrailRunner] = None,
        input_guardrails: Sequence[InputGuardrail] = (),
        output_guardrails: Sequence[OutputGuardrail] = (),
        tool_input_guardrails: Sequence[ToolInputGuardrail] = (),
        tool_output_guardrails: Sequence[ToolOutputGuardrail] = (),
        tool_retry_policy: Optional[RetryPolicy] = None,
        breaker_registry: Optional[CircuitBreakerRegistry] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.model_provider = model_provider
        self.tool_executor = tool_executor
        self.config = config or EngineConfig()
        self.hooks = hooks or RunHooks()
        self.guardrail_runner = guardrail_runner or GuardrailRunner(hooks=self.hooks)
        self.input_guardrails = list(input_guardrails)
        self.output_guardrails = list(output_guardrails)
        self.tool_input_guardrails = list(tool_input_guardrails)
        self.tool_output_guardrails = list(tool_output_guardrails)
        self.tool_retry_policy = tool_retry_policy
        self.breaker_registry = breaker_registry
        self.rate_limiter = rate_limiter
        self._active_runs: Dict[asyncio.Task, _RunState] = {}

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(self, goal: str, history: Optional[Iterable[str]] = None) -> str:
        """Execute ``goal`` and return the synthesized answer."""
        result = await self.run_with_result(goal, history)
        return result.answer

    async def run_with_result(self, goal: str, history: Optional[Iterable[str]] = None) -> PlanRunResult:
        """Execute ``goal`` and return the answer with every plan revision.

        Raises:
            InvalidInputError: Blank goal
            ModelProviderUnavailableError: No model provider configured
            InputTripwireTriggered, ToolInputTripwireTriggered, ...: A guardrail rejected a payload
            PlanParseError: No usable plan under the ``abort`` policy
            RunCancelledError: ``cancel()`` was called
            RunTimeoutError: ``run_timeout_seconds`` elapsed
        """
        if not goal or not goal.strip():
            raise InvalidInputError("Goal must not be empty", error_code="EMPTY_GOAL")
        if self.model_provider is None:
            raise ModelProviderUnavailableError()

        state = _RunState(goal=goal)
        coordinator = LoggingCoordinator()
        state.run_id = coordinator.start_run(goal=goal).run_id

        task = asyncio.ensure_future(self._execute(state, history, coordinator))
        self._active_runs[task] = state
        status = "failed"
        try:
            result = await self._await_run(task)
            status = "completed"
            return result
        except asyncio.CancelledError:
            status = "cancelled"
            if not state.cancelled:
                raise
            error = RunCancelledError(plans=state.plans)
            await self._fire("on_error", error)
            raise error from None
        except RunTimeoutError as e:
            status = "timeout"
            await self._fire("on_error", e)
            raise
        except Exception as e:
            await self._fire("on_error", e)
            raise
        finally:
            self._active_runs.pop(task, None)
            RUN_COUNTER.labels(status=status).inc()
            summary = coordinator.end_run()
            logger.info("run_summary", status=status, revisions=len(state.plans), **summary)

    def cancel(self) -> None:
        """Cancel every active run.

        In-flight model and tool calls are cancelled and no further plan
        revision is started. Steps that already completed keep their results;
        they are reachable through ``RunCancelledError.plans``.
        """
        for task, state in list(self._active_runs.items()):
            if not task.done():
                state.cancelled = True
                task.cancel()

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._active_runs)

    # =========================================================================
    # Run orchestration
    # =========================================================================

    async def _await_run(self, task: "asyncio.Future[PlanRunResult]") -> PlanRunResult:
        timeout = self.config.run_timeout_seconds
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.warning("run_timed_out", timeout_seconds=timeout)
        raise RunTimeoutError(timeout)

    async def _execute(self, state: _RunState, history: Optional[Iterable[str]],
                       coordinator: LoggingCoordinator) -> PlanRunResult:
        goal = state.goal
        await self._fire("on_run_start", goal)

        if self.input_guardrails:
            await self.guardrail_runner.run_input_guardrails(
                self.input_guardrails, goal, GuardrailContext(run_id=state.run_id, goal=goal)
            )

        plan = await self._generate_plan(goal, history)
        while True:
            state.plans.append(plan)
            coordinator.set_plan_revision(plan.revision_count)
            logger.info("plan_ready", plan_revision=plan.revision_count, step_count=len(plan.steps))
            await self._fire("on_plan_generated", plan)

            await self._execute_plan(plan, state)

            if not plan.has_failed:
                if plan.pending_steps:
                    state.deadlocked = True
                break
            if state.replans >= self.config.max_replan_attempts:
                state.budget_exhausted = True
                logger.warning(
                    "replan_budget_exhausted",
                    max_replan_attempts=self.config.max_replan_attempts,
                    failed_steps=[s.step_number for s in plan.failed_steps],
                )
                break

            failed = plan.failed_steps
            await self._fire("on_replan", plan, failed)
            REPLAN_COUNTER.inc()
            state.replans += 1
            plan = await self._replan(plan, state)

        answer = await self._synthesize(state)
        final = state.plans[-1]
        result = PlanRunResult(
            answer=answer,
            plans=list(state.plans),
            iterations=len(state.plans),
            replans=state.replans,
            metadata={
                "run_id": state.run_id,
                "completed_steps": sum(len(p.completed_steps) for p in state.plans),
                "failed_steps": sum(len(p.failed_steps) for p in state.plans),
                "final_plan_complete": final.is_complete,
                "budget_exhausted": state.budget_exhausted,
                "deadlocked": state.deadlocked,
            },
        )
        await self._fire("on_run_end", result)
        return result

    # =========================================================================
    # Planning
    # =========================================================================

    async def _generate_plan(self, goal: str, history: Optional[Iterable[str]]) -> ExecutionPlan:
        prompt = build_planning_prompt(
            goal, self._tool_descriptions(), self.config.instructions, history
        )
        response = await self._generate(prompt)
        return self._plan_from_response(response, goal, revision_count=0)

    async def _replan(self, plan: ExecutionPlan, state: _RunState) -> ExecutionPlan:
        # Completed work of every earlier revision is still available to the new plan
        completed = [step for p in state.plans for step in p.completed_steps]
        prompt = build_replan_prompt(
            state.goal,
            completed,
            plan.failed_steps,
            self._tool_descriptions(),
            self.config.instructions,
            self.config.result_summary_chars,
        )
        response = await self._generate(prompt)
        return self._plan_from_response(response, state.goal, revision_count=plan.revision_count + 1)

    def _plan_from_response(self, response: str, goal: str, revision_count: int) -> ExecutionPlan:
        plan = parse_plan(response, goal, revision_count)
        if plan is not None:
            return plan

        policy = self.config.plan_parse_failure_policy
        PLAN_PARSE_FAILURES.labels(policy=policy.value).inc()
        if policy == PlanParseFailurePolicy.ABORT:
            raise PlanParseError("Model response did not contain a usable plan", raw_response=response)

        logger.warning("plan_parse_fallback", plan_revision=revision_count, response_length=len(response))
        return fallback_plan(goal, revision_count)

    def _tool_descriptions(self) -> List[ToolDescription]:
        if self.tool_executor is None:
            return []
        return self.tool_executor.list_tools()

    # =========================================================================
    # Execution
    # =========================================================================

    async def _execute_plan(self, plan: ExecutionPlan, state: _RunState) -> None:
        limit = self.config.max_concurrent_steps
        in_flight: Dict[asyncio.Task, PlanStep] = {}
        try:
            while True:
                for step in plan.eligible_steps:
                    if limit is not None and len(in_flight) >= limit:
                        break
                    step.mark_running()
                    task = asyncio.ensure_future(self._run_step(plan, step, state))
                    in_flight[task] = step

                if not in_flight:
                    break

                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    in_flight.pop(task)
                    # Step failures are recorded by _run_step; only fatal errors surface here
                    task.result()
        finally:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)

        if plan.pending_steps and not plan.has_failed:
            logger.warning(
                "plan_deadlocked",
                plan_revision=plan.revision_count,
                blocked_steps=[s.step_number for s in plan.pending_steps],
            )

    async def _run_step(self, plan: ExecutionPlan, step: PlanStep, state: _RunState) -> None:
        kind = "tool" if step.is_tool_step else "model"
        with LoggingCoordinator.step_scope(step.step_number):
            await self._fire("on_step_start", plan, step)
            start = time.perf_counter()
            try:
                if step.is_tool_step:
                    output = await self._execute_tool_step(plan, step, state)
                else:
                    output = await self._execute_model_step(plan, step)
            except GuardrailError:
                record_step(kind, "aborted", time.perf_counter() - start)
                raise
            except Exception as e:
                if isinstance(e, StepExecutionError):
                    error = e
                else:
                    error = StepExecutionError(step.step_number, str(e) or type(e).__name__, step.tool_name)
                step.mark_failed(error.reason)
                record_step(kind, "failed", time.perf_counter() - start)
                logger.warning("step_failed", tool_name=step.tool_name, error=error.reason,
                               error_type=type(e).__name__)
                await self._fire("on_step_failed", plan, step, error)
                return

            step.mark_completed(output)
            record_step(kind, "completed", time.perf_counter() - start)
            logger.debug("step_completed", tool_name=step.tool_name, result_length=len(output))
            await self._fire("on_step_complete", plan, step)

    async def _execute_model_step(self, plan: ExecutionPlan, step: PlanStep) -> str:
        prompt = build_step_prompt(step, plan, self.config.instructions)
        return await self._generate(prompt)

    async def _execute_tool_step(self, plan: ExecutionPlan, step: PlanStep, state: _RunState) -> str:
        if self.tool_executor is None:
            LoggingCoordinator.log_once(
                "missing_tool_executor", logger, "warning", "tool_step_without_executor",
                tool_name=step.tool_name,
            )
            raise StepExecutionError(step.step_number, "No tool executor configured", step.tool_name)

        context = GuardrailContext(
            run_id=state.run_id,
            goal=state.goal,
            plan_revision=plan.revision_count,
            step_number=step.step_number,
        )
        data = ToolGuardrailData(
            tool_name=step.tool_name,
            arguments=step.tool_arguments,
            step_number=step.step_number,
        )
        if self.tool_input_guardrails:
            await self.guardrail_runner.run_tool_input_guardrails(self.tool_input_guardrails, data, context)

        await self._fire("on_tool_start", step.tool_name, step.tool_arguments)
        output = await self._invoke_tool(step.tool_name, step.tool_arguments)
        await self._fire("on_tool_end", step.tool_name, output)

        if self.tool_output_guardrails:
            await self.guardrail_runner.run_tool_output_guardrails(
                self.tool_output_guardrails, data.model_copy(update={"output": output}), output, context
            )
        return output

    async def _invoke_tool(self, tool_name: str, arguments: Dict[str, Any]) -> str:
        """Call the tool through the optional breaker, inside the optional retry policy."""

        async def invoke() -> str:
            result = await self.tool_executor.execute(tool_name, arguments)
            if not result.success:
                raise ToolExecutionError(tool_name, result.error or "Tool reported failure")
            return result.output

        operation: Callable[[], Awaitable[str]] = invoke
        if self.breaker_registry is not None:
            breaker = self.breaker_registry.get(tool_name)

            def operation() -> Awaitable[str]:
                return breaker.execute(invoke)

        if self.tool_retry_policy is not None:
            return await self.tool_retry_policy.execute(operation)
        return await operation()

    # =========================================================================
    # Synthesis
    # =========================================================================

    async def _synthesize(self, state: _RunState) -> str:
        final = state.plans[-1]
        completed: List[Tuple[int, PlanStep]] = [
            (plan.revision_count, step) for plan in state.plans for step in plan.completed_steps
        ]
        await self._fire("on_synthesis_start", state.goal, [step for _, step in completed])

        prompt = build_synthesis_prompt(
            state.goal,
            completed,
            any_failed=not final.is_complete,
            instructions=self.config.instructions,
        )
        await self._fire("on_llm_start", prompt)
        await self._throttle()
        if self.config.enable_streaming:
            answer = await collect_stream(
                self.model_provider, prompt, self.config.model_options, on_fragment=self._on_token
            )
        else:
            answer = await self.model_provider.generate(prompt, self.config.model_options)
        await self._fire("on_llm_end", answer)

        if self.output_guardrails:
            await self.guardrail_runner.run_output_guardrails(
                self.output_guardrails,
                answer,
                self.PRODUCER,
                GuardrailContext(run_id=state.run_id, goal=state.goal, plan_revision=final.revision_count),
            )

        await self._fire("on_synthesis_complete", answer)
        return answer

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _generate(self, prompt: str) -> str:
        await self._fire("on_llm_start", prompt)
        logger.debug("model_request", prompt_length=len(prompt))
        await self._throttle()
        response = await self.model_provider.generate(prompt, self.config.model_options)
        await self._fire("on_llm_end", response)
        return response

    async def _throttle(self) -> None:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

    async def _on_token(self, token: str) -> None:
        await self._fire("on_output_token", token)

    async def _fire(self, event: str, *args) -> None:
        try:
            await getattr(self.hooks, event)(*args)
        except Exception as e:
            logger.warning("hook_failed", hook=event, error=str(e), error_type=type(e).__name__)
