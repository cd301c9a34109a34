"""Shared pytest fixtures and configuration for Stepwright tests."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from stepwright.config.settings import reset_settings
from stepwright.models.interfaces import IModelProvider, IToolExecutor, ToolDescription, ToolResult
from stepwright.services.planning.hooks import RunHooks


class ScriptedModelProvider(IModelProvider):
    """Model provider that answers from a script.

    ``responses`` are returned in order by ``generate``; an entry that is an
    exception instance is raised instead. ``stream`` splits ``stream_text``
    into words. Every prompt is recorded in ``prompts``.
    """

    def __init__(self, responses: Optional[List[Any]] = None, default: str = "ok",
                 stream_text: str = "", delay: float = 0.0):
        self.responses = list(responses or [])
        self.default = default
        self.stream_text = stream_text
        self.delay = delay
        self.prompts: List[str] = []
        self.stream_prompts: List[str] = []

    async def generate(self, prompt, options=None):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, BaseException):
            raise response
        return response

    async def stream(self, prompt, options=None):
        self.stream_prompts.append(prompt)
        for word in self.stream_text.split(" "):
            yield word + " "


class FakeToolExecutor(IToolExecutor):
    """Tool executor driven by per-tool scripts.

    ``scripts[name]`` is a list of outputs consumed per call; an ``Exception``
    instance produces a failed ``ToolResult``. Once a script is exhausted the
    last entry repeats. Calls are recorded as ``(name, arguments)``.
    """

    def __init__(self, scripts: Optional[Dict[str, List[Any]]] = None, delay: float = 0.0):
        self.scripts = {name: list(outputs) for name, outputs in (scripts or {}).items()}
        self.delay = delay
        self.calls: List[tuple] = []
        self.active = 0
        self.max_active = 0

    async def execute(self, tool_name, arguments):
        self.calls.append((tool_name, dict(arguments)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            script = self.scripts.get(tool_name)
            if script is None:
                return ToolResult.failure(f"Tool '{tool_name}' is not registered")
            outcome = script.pop(0) if len(script) > 1 else script[0]
            if isinstance(outcome, Exception):
                return ToolResult.failure(str(outcome))
            return ToolResult.ok(outcome)
        finally:
            self.active -= 1

    def list_tools(self):
        return [ToolDescription(name=name, description=f"The {name} tool") for name in self.scripts]


class RecordingHooks(RunHooks):
    """Records every lifecycle event as ``(event, payload)``."""

    def __init__(self):
        self.events: List[tuple] = []
        self.tokens: List[str] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    async def on_run_start(self, goal):
        self.events.append(("run_start", goal))

    async def on_plan_generated(self, plan):
        self.events.append(("plan_generated", plan.revision_count))

    async def on_step_start(self, plan, step):
        self.events.append(("step_start", step.step_number))

    async def on_step_complete(self, plan, step):
        self.events.append(("step_complete", step.step_number))

    async def on_step_failed(self, plan, step, error):
        self.events.append(("step_failed", step.step_number))

    async def on_replan(self, plan, failed_steps):
        self.events.append(("replan", [s.step_number for s in failed_steps]))

    async def on_synthesis_start(self, goal, completed_steps):
        self.events.append(("synthesis_start", len(completed_steps)))

    async def on_output_token(self, token):
        self.tokens.append(token)

    async def on_synthesis_complete(self, answer):
        self.events.append(("synthesis_complete", answer))

    async def on_run_end(self, result):
        self.events.append(("run_end", result.iterations))

    async def on_guardrail_triggered(self, context, guardrail_name, guardrail_type, result):
        self.events.append(("guardrail_triggered", guardrail_name))

    async def on_error(self, error):
        self.events.append(("error", type(error).__name__))


def plan_json(*steps: Dict[str, Any]) -> str:
    """Render a plan response in the wire format."""
    return json.dumps({"steps": list(steps)})


def step_json(number: int, description: str, tool: Optional[str] = None,
              arguments: Optional[Dict[str, Any]] = None, depends_on: Optional[List[int]] = None):
    return {
        "stepNumber": number,
        "description": description,
        "toolName": tool,
        "toolArguments": arguments or {},
        "dependsOn": depends_on or [],
    }


@pytest.fixture
def recording_hooks():
    """Hooks recording every lifecycle event."""
    return RecordingHooks()


@pytest.fixture
def make_provider():
    """Factory for scripted model providers."""
    return ScriptedModelProvider


@pytest.fixture
def make_tools():
    """Factory for scripted tool executors."""
    return FakeToolExecutor


@pytest.fixture(autouse=True)
def clean_settings():
    """Each test starts without a cached settings instance."""
    reset_settings()
    yield
    reset_settings()
