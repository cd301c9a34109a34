"""Planning Prompts

Prompt templates for the four model calls of a run: planning, executing a
model-delegated step, replanning after failures and synthesizing the final
answer. The plan JSON schema shown to the model is the exact wire format
parsed by ``plan_parser``.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from stepwright.models.interfaces import ToolDescription
from stepwright.models.plan import ExecutionPlan, PlanStep


DEFAULT_PLANNER_IDENTITY = "You are an assistant that breaks goals down into structured, executable plans."
DEFAULT_ASSISTANT_IDENTITY = "You are a helpful assistant."

PLAN_SCHEMA_EXAMPLE = """{
  "steps": [
    {
      "stepNumber": 1,
      "description": "What this step accomplishes",
      "toolName": "tool_name",
      "toolArguments": {"arg1": "value1", "arg2": 42},
      "dependsOn": []
    },
    {
      "stepNumber": 2,
      "description": "A step answered by reasoning alone",
      "toolName": null,
      "toolArguments": {},
      "dependsOn": [1]
    }
  ]
}"""

PLAN_RULES = """Rules:
1. Make every step specific and actionable.
2. Only use the tools listed above.
3. List dependencies as step numbers in "dependsOn".
4. For a step without a tool, set "toolName" to null and "toolArguments" to {}.
5. Reply with the JSON object only, without any text before or after it."""

PLANNING_TEMPLATE = """{identity}

Create a step-by-step plan that accomplishes the goal below.

{tools}

For each step give a clear description, the tool to call and its arguments
if one is needed, and the numbers of the steps it depends on.

Respond with a JSON object of this shape:
{schema}

{rules}
{history}
Goal: {goal}

Plan (JSON):"""

STEP_TEMPLATE = """{identity}

You are carrying out one step of a larger plan.

Overall goal: {goal}

Current step: {description}
{context}
Complete this step and reply with its result."""

REPLAN_TEMPLATE = """{identity}

The previous plan ran into failures and needs to be revised.

Goal: {goal}

{completed}

{failed}

{tools}

Write a REVISED plan that:
1. Builds on the completed steps without repeating them
2. Works around the failures with a different approach
3. Still achieves the goal

Respond with a JSON object of this shape:
{schema}

{rules}

Revised plan (JSON):"""

SYNTHESIS_TEMPLATE = """{identity}

A plan has been executed to answer the request below.

Request: {goal}

Results from execution:
{results}
{failure_note}
Write a clear, concise final answer based on these results."""

PARTIAL_FAILURE_NOTE = (
    "\nSome steps failed during execution. Give the best answer possible "
    "with the information available.\n"
)


def render_tool_descriptions(tools: Sequence[ToolDescription]) -> str:
    """Render tools for the planner, or a notice when there are none."""
    if not tools:
        return "No tools are available."

    lines = ["Available tools:"]
    for tool in tools:
        lines.append(f"- {tool.name}: {tool.description}")
        if tool.parameters:
            lines.append("  Parameters:")
            for param in tool.parameters:
                flag = "required" if param.required else "optional"
                lines.append(f"    - {param.name} ({param.type}, {flag}): {param.description}")
    return "\n".join(lines)


def build_planning_prompt(
    goal: str,
    tools: Sequence[ToolDescription],
    instructions: str = "",
    history: Optional[Iterable[str]] = None,
) -> str:
    history_lines = [line for line in (history or []) if line]
    history_block = ""
    if history_lines:
        history_block = "\nConversation history:\n" + "\n".join(history_lines) + "\n"

    return PLANNING_TEMPLATE.format(
        identity=instructions or DEFAULT_PLANNER_IDENTITY,
        tools=render_tool_descriptions(tools),
        schema=PLAN_SCHEMA_EXAMPLE,
        rules=PLAN_RULES,
        history=history_block,
        goal=goal,
    )


def build_step_prompt(step: PlanStep, plan: ExecutionPlan, instructions: str = "") -> str:
    """Prompt for a model-delegated step, with the results of its dependencies."""
    context_lines = [
        f"Result from Step {dep.step_number}: {dep.result}"
        for dep in plan.dependencies_of(step)
        if dep.result is not None
    ]
    context = ""
    if context_lines:
        context = "\nContext from previous steps:\n" + "\n".join(context_lines) + "\n"

    return STEP_TEMPLATE.format(
        identity=instructions or DEFAULT_ASSISTANT_IDENTITY,
        goal=plan.goal,
        description=step.description,
        context=context,
    )


def build_replan_prompt(
    goal: str,
    completed: Sequence[PlanStep],
    failed: Sequence[PlanStep],
    tools: Sequence[ToolDescription],
    instructions: str = "",
    summary_chars: int = 100,
) -> str:
    """Prompt asking for a revised plan.

    Completed step results are truncated to ``summary_chars`` characters;
    failure messages are quoted in full.
    """
    completed_lines: List[str] = []
    for step in completed:
        line = f"- Step {step.step_number} (completed): {step.description}"
        if step.result is not None:
            line += f" -> Result: {step.result[:summary_chars]}"
        completed_lines.append(line)

    failed_lines: List[str] = []
    for step in failed:
        line = f"- Step {step.step_number} (failed): {step.description}"
        if step.error is not None:
            line += f" -> Error: {step.error}"
        failed_lines.append(line)

    return REPLAN_TEMPLATE.format(
        identity=instructions or DEFAULT_PLANNER_IDENTITY,
        goal=goal,
        completed="Completed steps:\n" + "\n".join(completed_lines) if completed_lines else "No steps completed.",
        failed="Failed steps:\n" + "\n".join(failed_lines) if failed_lines else "",
        tools=render_tool_descriptions(tools),
        schema=PLAN_SCHEMA_EXAMPLE,
        rules=PLAN_RULES,
    )


def build_synthesis_prompt(
    goal: str,
    completed: Sequence[Tuple[int, PlanStep]],
    any_failed: bool = False,
    instructions: str = "",
) -> str:
    """Final answer prompt.

    ``completed`` holds ``(plan_revision, step)`` pairs in execution history
    order; results of earlier revisions are labelled with their revision.
    """
    lines = []
    for revision, step in completed:
        if step.result is None:
            continue
        label = f"Step {step.step_number}"
        if revision:
            label += f" (revision {revision})"
        lines.append(f"{label} ({step.description}): {step.result}")

    return SYNTHESIS_TEMPLATE.format(
        identity=instructions or DEFAULT_ASSISTANT_IDENTITY,
        goal=goal,
        results="\n".join(lines) if lines else "No results were gathered.",
        failure_note=PARTIAL_FAILURE_NOTE if any_failed else "",
    )
