"""
Test module for stepwright.services.planning.hooks
"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from stepwright.models.guardrails import GuardrailResult, GuardrailType
from stepwright.models.plan import ExecutionPlan, PlanStep
from stepwright.services.planning.hooks import CompositeRunHooks, LoggingRunHooks, RunHooks


class TestRunHooks:

    @pytest.mark.asyncio
    async def test_default_methods_are_noops(self):
        hooks = RunHooks()
        plan = ExecutionPlan(goal="g", steps=[PlanStep(step_number=1, description="a")])
        assert await hooks.on_run_start("g") is None
        assert await hooks.on_step_failed(plan, plan.steps[0], RuntimeError("x")) is None
        assert await hooks.on_output_token("tok") is None


class TestCompositeRunHooks:

    @pytest.mark.asyncio
    async def test_fans_out_in_order(self):
        order = []
        first, second = AsyncMock(spec=RunHooks), AsyncMock(spec=RunHooks)
        first.on_plan_generated.side_effect = lambda plan: order.append("first")
        second.on_plan_generated.side_effect = lambda plan: order.append("second")
        composite = CompositeRunHooks([first, second])

        plan = ExecutionPlan(goal="g")
        await composite.on_plan_generated(plan)
        await composite.on_tool_start("search", {"q": "x"})

        assert order == ["first", "second"]
        first.on_tool_start.assert_awaited_once_with("search", {"q": "x"})
        second.on_tool_start.assert_awaited_once_with("search", {"q": "x"})


class TestLoggingRunHooks:

    @pytest.mark.asyncio
    async def test_logs_lifecycle_events(self):
        logger = Mock()
        with patch("stepwright.services.planning.hooks.get_logger", return_value=logger):
            hooks = LoggingRunHooks()

        step = PlanStep(step_number=2, description="fetch", tool_name="http")
        plan = ExecutionPlan(goal="g", steps=[step])
        step.mark_running()
        step.mark_failed("Tool 'http' failed: 503")

        await hooks.on_plan_generated(plan)
        await hooks.on_step_failed(plan, step, RuntimeError("503"))
        await hooks.on_guardrail_triggered(None, "pii", GuardrailType.OUTPUT, GuardrailResult.tripwire("email"))

        logger.info.assert_called_once_with("plan_generated", plan_revision=0, step_count=1, tool_steps=1)
        failed_call, tripwire_call = logger.warning.call_args_list
        assert failed_call.args == ("step_failed",)
        assert failed_call.kwargs["step_number"] == 2
        assert failed_call.kwargs["error"] == "Tool 'http' failed: 503"
        assert tripwire_call.kwargs == {"guardrail": "pii", "guardrail_type": "output", "message": "email"}

    @pytest.mark.asyncio
    async def test_tokens_logged_only_when_enabled(self):
        logger = Mock()
        with patch("stepwright.services.planning.hooks.get_logger", return_value=logger):
            quiet, chatty = LoggingRunHooks(), LoggingRunHooks(log_tokens=True)

        await quiet.on_output_token("a")
        await chatty.on_output_token("b")
        logger.debug.assert_called_once_with("output_token", token="b")
