"""Run Hooks

Lifecycle callbacks fired by ``PlanExecutionEngine``. Every method is a no-op
coroutine so implementations override only what they need.

Hooks observe; they never steer execution. The engine logs and discards
exceptions raised by a hook.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from stepwright.infrastructure.logging.config import get_logger
from stepwright.models.guardrails import GuardrailContext, GuardrailResult, GuardrailType
from stepwright.models.plan import ExecutionPlan, PlanStep

if TYPE_CHECKING:
    from stepwright.services.planning.engine import PlanRunResult


class RunHooks:
    """Base class for run lifecycle observers."""

    async def on_run_start(self, goal: str) -> None:
        pass

    async def on_plan_generated(self, plan: ExecutionPlan) -> None:
        pass

    async def on_step_start(self, plan: ExecutionPlan, step: PlanStep) -> None:
        pass

    async def on_step_complete(self, plan: ExecutionPlan, step: PlanStep) -> None:
        pass

    async def on_step_failed(self, plan: ExecutionPlan, step: PlanStep, error: BaseException) -> None:
        pass

    async def on_replan(self, plan: ExecutionPlan, failed_steps: List[PlanStep]) -> None:
        """Fired before a revised plan is requested for ``plan``."""
        pass

    async def on_synthesis_start(self, goal: str, completed_steps: List[PlanStep]) -> None:
        pass

    async def on_output_token(self, token: str) -> None:
        """One fragment of a streamed final answer."""
        pass

    async def on_synthesis_complete(self, answer: str) -> None:
        pass

    async def on_run_end(self, result: "PlanRunResult") -> None:
        pass

    async def on_llm_start(self, prompt: str) -> None:
        pass

    async def on_llm_end(self, response: str) -> None:
        pass

    async def on_tool_start(self, tool_name: str, arguments: Dict[str, Any]) -> None:
        pass

    async def on_tool_end(self, tool_name: str, output: str) -> None:
        pass

    async def on_guardrail_triggered(
        self,
        context: Optional[GuardrailContext],
        guardrail_name: str,
        guardrail_type: GuardrailType,
        result: GuardrailResult,
    ) -> None:
        pass

    async def on_error(self, error: BaseException) -> None:
        """The run is about to fail with ``error``."""
        pass


class CompositeRunHooks(RunHooks):
    """Fans every event out to several hooks, in registration order."""

    def __init__(self, hooks: Sequence[RunHooks]):
        self.hooks = list(hooks)

    async def on_run_start(self, goal):
        for hook in self.hooks:
            await hook.on_run_start(goal)

    async def on_plan_generated(self, plan):
        for hook in self.hooks:
            await hook.on_plan_generated(plan)

    async def on_step_start(self, plan, step):
        for hook in self.hooks:
            await hook.on_step_start(plan, step)

    async def on_step_complete(self, plan, step):
        for hook in self.hooks:
            await hook.on_step_complete(plan, step)

    async def on_step_failed(self, plan, step, error):
        for hook in self.hooks:
            await hook.on_step_failed(plan, step, error)

    async def on_replan(self, plan, failed_steps):
        for hook in self.hooks:
            await hook.on_replan(plan, failed_steps)

    async def on_synthesis_start(self, goal, completed_steps):
        for hook in self.hooks:
            await hook.on_synthesis_start(goal, completed_steps)

    async def on_output_token(self, token):
        for hook in self.hooks:
            await hook.on_output_token(token)

    async def on_synthesis_complete(self, answer):
        for hook in self.hooks:
            await hook.on_synthesis_complete(answer)

    async def on_run_end(self, result):
        for hook in self.hooks:
            await hook.on_run_end(result)

    async def on_llm_start(self, prompt):
        for hook in self.hooks:
            await hook.on_llm_start(prompt)

    async def on_llm_end(self, response):
        for hook in self.hooks:
            await hook.on_llm_end(response)

    async def on_tool_start(self, tool_name, arguments):
        for hook in self.hooks:
            await hook.on_tool_start(tool_name, arguments)

    async def on_tool_end(self, tool_name, output):
        for hook in self.hooks:
            await hook.on_tool_end(tool_name, output)

    async def on_guardrail_triggered(self, context, guardrail_name, guardrail_type, result):
        for hook in self.hooks:
            await hook.on_guardrail_triggered(context, guardrail_name, guardrail_type, result)

    async def on_error(self, error):
        for hook in self.hooks:
            await hook.on_error(error)


class LoggingRunHooks(RunHooks):
    """Emits a structured log event for every lifecycle event.

    Run and step identifiers are added by the logging context processor, so
    events only carry what is specific to them.
    """

    def __init__(self, logger_name: str = "stepwright.run", log_tokens: bool = False):
        self.logger = get_logger(logger_name)
        self.log_tokens = log_tokens

    async def on_run_start(self, goal):
        self.logger.info("run_started", goal_length=len(goal))

    async def on_plan_generated(self, plan):
        self.logger.info(
            "plan_generated",
            plan_revision=plan.revision_count,
            step_count=len(plan.steps),
            tool_steps=sum(1 for s in plan.steps if s.is_tool_step),
        )

    async def on_step_start(self, plan, step):
        self.logger.info("step_started", step_number=step.step_number, tool_name=step.tool_name)

    async def on_step_complete(self, plan, step):
        self.logger.info(
            "step_completed",
            step_number=step.step_number,
            result_length=len(step.result or ""),
        )

    async def on_step_failed(self, plan, step, error):
        self.logger.warning(
            "step_failed",
            step_number=step.step_number,
            tool_name=step.tool_name,
            error=step.error or str(error),
            error_type=type(error).__name__,
        )

    async def on_replan(self, plan, failed_steps):
        self.logger.info(
            "replan_triggered",
            plan_revision=plan.revision_count,
            failed_steps=[s.step_number for s in failed_steps],
        )

    async def on_synthesis_start(self, goal, completed_steps):
        self.logger.info("synthesis_started", completed_steps=len(completed_steps))

    async def on_output_token(self, token):
        if self.log_tokens:
            self.logger.debug("output_token", token=token)

    async def on_synthesis_complete(self, answer):
        self.logger.info("synthesis_completed", answer_length=len(answer))

    async def on_run_end(self, result):
        self.logger.info(
            "run_finished",
            iterations=result.iterations,
            replans=result.replans,
            answer_length=len(result.answer),
        )

    async def on_llm_start(self, prompt):
        self.logger.debug("llm_request", prompt_length=len(prompt))

    async def on_llm_end(self, response):
        self.logger.debug("llm_response", response_length=len(response))

    async def on_tool_start(self, tool_name, arguments):
        self.logger.debug("tool_started", tool_name=tool_name, argument_names=sorted(arguments))

    async def on_tool_end(self, tool_name, output):
        self.logger.debug("tool_finished", tool_name=tool_name, output_length=len(output))

    async def on_guardrail_triggered(self, context, guardrail_name, guardrail_type, result):
        self.logger.warning(
            "guardrail_tripwire",
            guardrail=guardrail_name,
            guardrail_type=guardrail_type.value,
            message=result.message,
        )

    async def on_error(self, error):
        self.logger.error("run_failed", error=str(error), error_type=type(error).__name__)
