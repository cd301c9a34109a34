"""
Test module for stepwright.services.planning.engine
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from conftest import RecordingHooks, plan_json, step_json
from stepwright.exceptions import (
    InputTripwireTriggered,
    InvalidInputError,
    ModelProviderUnavailableError,
    OutputTripwireTriggered,
    PlanParseError,
    RunCancelledError,
    RunTimeoutError,
    ToolInputTripwireTriggered,
)
from stepwright.infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitState
from stepwright.infrastructure.resilience.rate_limiter import RateLimiter
from stepwright.infrastructure.resilience.retry_policy import BackoffStrategy, RetryPolicy
from stepwright.models.guardrails import GuardrailResult
from stepwright.models.interfaces import IToolExecutor, ToolResult
from stepwright.models.plan import PlanParseFailurePolicy, StepStatus
from stepwright.services.guardrails.base import ToolInputGuardrail
from stepwright.services.guardrails.builtin import MaxLengthGuardrail, SensitiveDataGuardrail
from stepwright.services.planning.engine import EngineConfig, PlanExecutionEngine


class BlockingToolExecutor(IToolExecutor):
    """``slow`` blocks until released; every other tool answers immediately."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = False

    async def execute(self, tool_name, arguments):
        if tool_name == "slow":
            self.started.set()
            try:
                await self.release.wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        return ToolResult.ok(f"{tool_name} done")

    def list_tools(self):
        return []


class DependencyCheckingHooks(RecordingHooks):
    """Records any step started before all of its dependencies completed."""

    def __init__(self):
        super().__init__()
        self.violations = []

    async def on_step_start(self, plan, step):
        await super().on_step_start(plan, step)
        for dep in plan.dependencies_of(step):
            if dep.status != StepStatus.COMPLETED:
                self.violations.append((step.step_number, dep.step_number, dep.status))


class TestBasicRun:

    @pytest.mark.asyncio
    async def test_tool_then_model_step(self, make_provider, make_tools, recording_hooks):
        provider = make_provider([
            plan_json(
                step_json(1, "Look up the weather", "weather", {"city": "Paris"}),
                step_json(2, "Describe it", depends_on=[1]),
            ),
            "It is sunny and 24C",
            "Paris is sunny today.",
        ])
        tools = make_tools({"weather": ["sunny, 24C"]})
        engine = PlanExecutionEngine(provider, tools, hooks=recording_hooks)

        result = await engine.run_with_result("What's the weather in Paris?")

        assert result.answer == "Paris is sunny today."
        assert result.iterations == 1
        assert result.replans == 0
        assert tools.calls == [("weather", {"city": "Paris"})]
        step1, step2 = result.final_plan.steps
        assert step1.result == "sunny, 24C"
        assert step2.result == "It is sunny and 24C"
        assert "Result from Step 1: sunny, 24C" in provider.prompts[1]
        assert "- weather: The weather tool" in provider.prompts[0]
        assert result.metadata["final_plan_complete"] is True

        assert recording_hooks.names() == [
            "run_start", "plan_generated",
            "step_start", "step_complete",
            "step_start", "step_complete",
            "synthesis_start", "synthesis_complete", "run_end",
        ]

    @pytest.mark.asyncio
    async def test_run_returns_answer(self, make_provider):
        provider = make_provider([plan_json(step_json(1, "Think")), "thought", "answer"])
        assert await PlanExecutionEngine(provider).run("Ponder") == "answer"

    @pytest.mark.asyncio
    async def test_history_reaches_planning_prompt(self, make_provider):
        provider = make_provider([plan_json(step_json(1, "Think")), "thought", "answer"])
        await PlanExecutionEngine(provider).run("Ponder", history=["user: earlier question"])
        assert "user: earlier question" in provider.prompts[0]

    @pytest.mark.asyncio
    async def test_blank_goal_rejected(self, make_provider):
        with pytest.raises(InvalidInputError):
            await PlanExecutionEngine(make_provider()).run("   ")

    @pytest.mark.asyncio
    async def test_missing_model_provider(self):
        with pytest.raises(ModelProviderUnavailableError):
            await PlanExecutionEngine(None).run("goal")

    def test_config_validation(self):
        with pytest.raises(ValueError):
            EngineConfig(max_concurrent_steps=0)
        with pytest.raises(ValueError):
            EngineConfig(max_replan_attempts=-1)


class TestDependencyOrdering:

    @pytest.mark.asyncio
    async def test_step_never_runs_before_dependencies_complete(self, make_provider, make_tools):
        provider = make_provider([
            plan_json(
                step_json(1, "root", "a"),
                step_json(2, "left", "b", depends_on=[1]),
                step_json(3, "right", "c", depends_on=[1]),
                step_json(4, "join", "d", depends_on=[2, 3]),
            ),
            "answer",
        ])
        tools = make_tools({"a": ["1"], "b": ["2"], "c": ["3"], "d": ["4"]}, delay=0.01)
        hooks = DependencyCheckingHooks()

        result = await PlanExecutionEngine(provider, tools, hooks=hooks).run_with_result("diamond")

        assert hooks.violations == []
        assert result.final_plan.is_complete
        assert [name for name, _ in tools.calls][0] == "a"
        assert [name for name, _ in tools.calls][-1] == "d"

    @pytest.mark.asyncio
    async def test_independent_steps_run_concurrently(self, make_provider, make_tools):
        steps = [step_json(n, f"fetch {n}", "fetch") for n in range(1, 5)]
        provider = make_provider([plan_json(*steps), "answer"])
        tools = make_tools({"fetch": ["page"]}, delay=0.02)

        await PlanExecutionEngine(provider, tools).run("fetch all")
        assert tools.max_active == 4

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, make_provider, make_tools):
        steps = [step_json(n, f"fetch {n}", "fetch") for n in range(1, 6)]
        provider = make_provider([plan_json(*steps), "answer"])
        tools = make_tools({"fetch": ["page"]}, delay=0.01)
        engine = PlanExecutionEngine(provider, tools, config=EngineConfig(max_concurrent_steps=2))

        result = await engine.run_with_result("fetch all")

        assert tools.max_active == 2
        assert len(tools.calls) == 5
        assert result.final_plan.is_complete

    @pytest.mark.asyncio
    async def test_deadlocked_plan_goes_to_synthesis(self, make_provider, make_tools):
        provider = make_provider([
            plan_json(step_json(1, "a", "x", depends_on=[2]), step_json(2, "b", "x", depends_on=[1])),
            "best effort",
        ])
        tools = make_tools({"x": ["never"]})

        result = await PlanExecutionEngine(provider, tools).run_with_result("cycle")

        assert result.answer == "best effort"
        assert tools.calls == []
        assert result.replans == 0
        assert result.metadata["deadlocked"] is True
        assert "No results were gathered." in provider.prompts[-1]
        assert "Some steps failed" in provider.prompts[-1]


class TestReplanning:

    @pytest.mark.asyncio
    async def test_chain_with_one_failure_replans_once(self, make_provider, make_tools, recording_hooks):
        provider = make_provider([
            plan_json(
                step_json(1, "Fetch page", "fetch", {"url": "https://example.com"}),
                step_json(2, "Parse page", "parse", depends_on=[1]),
                step_json(3, "Write report", "report", depends_on=[2]),
            ),
            plan_json(
                step_json(1, "Parse page again", "parse"),
                step_json(2, "Write report", "report", depends_on=[1]),
            ),
            "Final report",
        ])
        tools = make_tools({
            "fetch": ["<html>page</html>"],
            "parse": [RuntimeError("malformed markup"), "parsed content"],
            "report": ["report body"],
        })
        engine = PlanExecutionEngine(provider, tools, hooks=recording_hooks)

        result = await engine.run_with_result("Summarize example.com")

        assert result.answer == "Final report"
        assert result.replans == 1
        assert result.iterations == 2
        original, revised = result.plans
        assert original.revision_count == 0
        assert revised.revision_count == 1
        assert [s.status for s in original.steps] == [
            StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.PENDING,
        ]
        assert "malformed markup" in original.steps[1].error
        assert revised.is_complete

        replan_prompt = provider.prompts[1]
        assert "- Step 1 (completed): Fetch page -> Result: <html>page</html>" in replan_prompt
        assert "- Step 2 (failed): Parse page -> Error:" in replan_prompt
        assert "malformed markup" in replan_prompt

        synthesis_prompt = provider.prompts[2]
        assert "Step 1 (Fetch page): <html>page</html>" in synthesis_prompt
        assert "Step 1 (revision 1) (Parse page again): parsed content" in synthesis_prompt
        assert "Step 2 (revision 1) (Write report): report body" in synthesis_prompt
        assert "Some steps failed" not in synthesis_prompt

        assert ("replan", [2]) in recording_hooks.events
        assert ("step_failed", 2) in recording_hooks.events
        assert len(result.completed_steps) == 3

    @pytest.mark.asyncio
    async def test_budget_exhaustion_synthesizes_partial_results(self, make_provider, make_tools):
        failing_plan = plan_json(step_json(1, "Call flaky", "flaky"), step_json(2, "Think"))
        provider = make_provider([failing_plan, "thought 1", failing_plan, "thought 2", "partial answer"])
        tools = make_tools({"flaky": [RuntimeError("down")]})
        engine = PlanExecutionEngine(provider, tools, config=EngineConfig(max_replan_attempts=1))

        result = await engine.run_with_result("goal")

        assert result.answer == "partial answer"
        assert result.replans == 1
        assert result.iterations == 2
        assert result.metadata["budget_exhausted"] is True
        assert "Some steps failed" in provider.prompts[-1]
        assert "thought 1" in provider.prompts[-1]

    @pytest.mark.asyncio
    async def test_zero_replan_budget(self, make_provider, make_tools):
        provider = make_provider([plan_json(step_json(1, "Call", "flaky")), "answer"])
        tools = make_tools({"flaky": [RuntimeError("down")]})
        engine = PlanExecutionEngine(provider, tools, config=EngineConfig(max_replan_attempts=0))

        result = await engine.run_with_result("goal")
        assert result.replans == 0
        assert len(provider.prompts) == 2

    @pytest.mark.asyncio
    async def test_model_step_failure_triggers_replan(self, make_provider):
        provider = make_provider([
            plan_json(step_json(1, "Think hard")),
            ConnectionError("model overloaded"),
            plan_json(step_json(1, "Think again")),
            "thought",
            "answer",
        ])
        result = await PlanExecutionEngine(provider).run_with_result("goal")

        assert result.replans == 1
        assert result.plans[0].steps[0].error == "model overloaded"
        assert result.answer == "answer"

    @pytest.mark.asyncio
    async def test_tool_step_without_executor_fails(self, make_provider):
        provider = make_provider([plan_json(step_json(1, "Search", "search")), "answer"])
        engine = PlanExecutionEngine(provider, config=EngineConfig(max_replan_attempts=0))

        result = await engine.run_with_result("goal")
        assert result.plans[0].steps[0].error == "No tool executor configured"


class TestPlanParseFailures:

    @pytest.mark.asyncio
    async def test_fallback_policy_runs_single_direct_step(self, make_provider):
        provider = make_provider(["I'd rather just answer.", "direct result", "final"])

        result = await PlanExecutionEngine(provider).run_with_result("Explain DNS")

        assert result.answer == "final"
        steps = result.final_plan.steps
        assert len(steps) == 1
        assert steps[0].description == "Execute the task: Explain DNS"
        assert steps[0].result == "direct result"

    @pytest.mark.asyncio
    async def test_abort_policy_raises(self, make_provider, recording_hooks):
        provider = make_provider(['{"steps": []}'])
        engine = PlanExecutionEngine(
            provider,
            config=EngineConfig(plan_parse_failure_policy=PlanParseFailurePolicy.ABORT),
            hooks=recording_hooks,
        )

        with pytest.raises(PlanParseError) as exc_info:
            await engine.run("goal")
        assert exc_info.value.raw_response == '{"steps": []}'
        assert ("error", "PlanParseError") in recording_hooks.events


class TestToolResilience:

    @pytest.mark.asyncio
    async def test_retry_policy_recovers_tool_step(self, make_provider, make_tools):
        provider = make_provider([plan_json(step_json(1, "Fetch", "fetch")), "answer"])
        tools = make_tools({"fetch": [RuntimeError("blip"), "page"]})
        engine = PlanExecutionEngine(
            provider, tools,
            tool_retry_policy=RetryPolicy(max_attempts=2, backoff=BackoffStrategy.immediate()),
        )

        result = await engine.run_with_result("goal")

        assert result.replans == 0
        assert result.final_plan.steps[0].result == "page"
        assert len(tools.calls) == 2

    @pytest.mark.asyncio
    async def test_breaker_rejects_after_threshold(self, make_provider, make_tools):
        provider = make_provider([
            plan_json(step_json(1, "First", "fetch"), step_json(2, "Second", "fetch", depends_on=[1])),
            "answer",
        ])
        tools = make_tools({"fetch": [RuntimeError("down")]})
        registry = CircuitBreakerRegistry(failure_threshold=1)
        engine = PlanExecutionEngine(
            provider, tools, config=EngineConfig(max_replan_attempts=0), breaker_registry=registry,
        )

        result = await engine.run_with_result("goal")

        assert registry.get("fetch").state == CircuitState.OPEN
        assert "down" in result.final_plan.steps[0].error
        assert result.final_plan.steps[1].status == StepStatus.PENDING
        assert len(tools.calls) == 1

    @pytest.mark.asyncio
    async def test_open_breaker_fails_step_without_calling_tool(self, make_provider, make_tools):
        provider = make_provider([plan_json(step_json(1, "Fetch", "fetch")), "answer"])
        tools = make_tools({"fetch": ["page"]})
        registry = CircuitBreakerRegistry()
        await registry.get("fetch").trip()
        engine = PlanExecutionEngine(
            provider, tools, config=EngineConfig(max_replan_attempts=0), breaker_registry=registry,
        )

        result = await engine.run_with_result("goal")

        assert tools.calls == []
        assert "Circuit breaker is open" in result.final_plan.steps[0].error


class TestGuardrails:

    @pytest.mark.asyncio
    async def test_input_guardrail_blocks_before_planning(self, make_provider):
        provider = make_provider()
        engine = PlanExecutionEngine(provider, input_guardrails=[MaxLengthGuardrail(5)])

        with pytest.raises(InputTripwireTriggered):
            await engine.run("a goal that is far too long")
        assert provider.prompts == []

    @pytest.mark.asyncio
    async def test_tool_tripwire_is_fatal_and_never_retried(self, make_provider, make_tools, recording_hooks):
        provider = make_provider([
            plan_json(step_json(1, "Wipe disk", "shell", {"command": "rm -rf /"}), step_json(2, "Think")),
            "thought",
            "answer",
        ])
        tools = make_tools({"shell": ["done"]})
        guardrail = ToolInputGuardrail.from_callable(
            "no_rm",
            lambda data: GuardrailResult.tripwire("destructive command")
            if "rm -rf" in data.arguments.get("command", "") else GuardrailResult.passed(),
        )
        engine = PlanExecutionEngine(
            provider, tools,
            hooks=recording_hooks,
            tool_input_guardrails=[guardrail],
            tool_retry_policy=RetryPolicy(max_attempts=3, backoff=BackoffStrategy.immediate()),
        )

        with pytest.raises(ToolInputTripwireTriggered) as exc_info:
            await engine.run("clean up")

        assert exc_info.value.guardrail_name == "no_rm"
        assert exc_info.value.tool_name == "shell"
        assert tools.calls == []
        assert "replan" not in recording_hooks.names()
        assert ("guardrail_triggered", "no_rm") in recording_hooks.events
        assert ("error", "ToolInputTripwireTriggered") in recording_hooks.events

    @pytest.mark.asyncio
    async def test_output_guardrail_checks_final_answer(self, make_provider):
        provider = make_provider([plan_json(step_json(1, "Think")), "thought", "Contact jane@example.com"])
        engine = PlanExecutionEngine(provider, output_guardrails=[SensitiveDataGuardrail()])

        with pytest.raises(OutputTripwireTriggered) as exc_info:
            await engine.run("Who do I contact?")
        assert exc_info.value.producer == PlanExecutionEngine.PRODUCER


class TestStreaming:

    @pytest.mark.asyncio
    async def test_streamed_synthesis_forwards_tokens(self, make_provider, recording_hooks):
        provider = make_provider([plan_json(step_json(1, "Think")), "thought"], stream_text="The final answer")
        engine = PlanExecutionEngine(provider, config=EngineConfig(enable_streaming=True), hooks=recording_hooks)

        answer = await engine.run("goal")

        assert answer == "The final answer "
        assert recording_hooks.tokens == ["The ", "final ", "answer "]
        assert len(provider.stream_prompts) == 1
        assert "Results from execution" in provider.stream_prompts[0]
        assert ("synthesis_complete", "The final answer ") in recording_hooks.events


class TestCancellationAndTimeout:

    @pytest.mark.asyncio
    async def test_cancel_stops_run_and_keeps_completed_results(self, make_provider, recording_hooks):
        provider = make_provider([
            plan_json(step_json(1, "Quick", "fast"), step_json(2, "Slow", "slow", depends_on=[1])),
        ])
        tools = BlockingToolExecutor()
        engine = PlanExecutionEngine(provider, tools, hooks=recording_hooks)

        run = asyncio.ensure_future(engine.run_with_result("goal"))
        await tools.started.wait()
        assert engine.is_running
        engine.cancel()

        with pytest.raises(RunCancelledError) as exc_info:
            await run

        assert tools.cancelled
        plan = exc_info.value.plans[0]
        assert plan.steps[0].status == StepStatus.COMPLETED
        assert plan.steps[0].result == "fast done"
        assert len(provider.prompts) == 1
        assert not engine.is_running
        assert ("error", "RunCancelledError") in recording_hooks.events

    @pytest.mark.asyncio
    async def test_outer_cancellation_propagates(self, make_provider):
        provider = make_provider([plan_json(step_json(1, "Slow", "slow"))])
        tools = BlockingToolExecutor()
        engine = PlanExecutionEngine(provider, tools)

        run = asyncio.ensure_future(engine.run("goal"))
        await tools.started.wait()
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run
        await asyncio.sleep(0)
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_run_timeout(self, make_provider):
        provider = make_provider([plan_json(step_json(1, "Slow", "slow"))])
        tools = BlockingToolExecutor()
        engine = PlanExecutionEngine(provider, tools, config=EngineConfig(run_timeout_seconds=0.05))

        with pytest.raises(RunTimeoutError) as exc_info:
            await engine.run("goal")

        assert exc_info.value.timeout == 0.05
        assert tools.cancelled


class TestHookFailures:

    @pytest.mark.asyncio
    async def test_hook_errors_do_not_break_the_run(self, make_provider):
        hooks = AsyncMock()
        hooks.on_plan_generated.side_effect = RuntimeError("observer bug")
        provider = make_provider([plan_json(step_json(1, "Think")), "thought", "answer"])

        assert await PlanExecutionEngine(provider, hooks=hooks).run("goal") == "answer"
        hooks.on_run_end.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_guardrail_hook_keeps_tripwire_fatal(self, make_provider, make_tools):
        class ExplodingHooks(RecordingHooks):
            async def on_guardrail_triggered(self, context, guardrail_name, guardrail_type, result):
                raise RuntimeError("hook exploded")

        provider = make_provider([plan_json(step_json(1, "Run it", "shell")), "answer"])
        tools = make_tools({"shell": ["done"]})
        hooks = ExplodingHooks()
        guardrail = ToolInputGuardrail.from_callable(
            "always_trip", lambda data: GuardrailResult.tripwire("blocked")
        )
        engine = PlanExecutionEngine(
            provider, tools,
            config=EngineConfig(max_replan_attempts=1),
            hooks=hooks,
            tool_input_guardrails=[guardrail],
        )

        with pytest.raises(ToolInputTripwireTriggered):
            await engine.run("goal")

        assert tools.calls == []
        assert "step_failed" not in hooks.names()
        assert "replan" not in hooks.names()
        assert len(provider.prompts) == 1


class TestRateLimiting:

    @pytest.mark.asyncio
    async def test_every_model_call_takes_a_token(self, make_provider):
        limiter = RateLimiter(max_tokens=5, refill_rate=1.0, clock=lambda: 0.0, sleep=AsyncMock())
        provider = make_provider([plan_json(step_json(1, "Think")), "thought", "answer"])

        await PlanExecutionEngine(provider, rate_limiter=limiter).run("goal")

        assert len(provider.prompts) == 3
        assert limiter.available == 2

    @pytest.mark.asyncio
    async def test_streamed_synthesis_takes_a_token(self, make_provider):
        limiter = RateLimiter(max_tokens=5, refill_rate=1.0, clock=lambda: 0.0, sleep=AsyncMock())
        provider = make_provider([plan_json(step_json(1, "Think")), "thought"], stream_text="done")
        engine = PlanExecutionEngine(
            provider, config=EngineConfig(enable_streaming=True), rate_limiter=limiter,
        )

        await engine.run("goal")
        assert limiter.available == 2
