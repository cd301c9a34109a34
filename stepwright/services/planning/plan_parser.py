"""Plan Parsing

Turns a model response into an ``ExecutionPlan``. Models often wrap the plan
JSON in prose or code fences, so the first brace-balanced object is located
before decoding. Braces inside quoted strings (and escaped quotes) do not
count towards the balance.

Every failure mode (no object, unbalanced braces, invalid JSON, wrong shape,
empty step list) yields ``None``; deciding what to do about it is the
engine's job.
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError

from stepwright.models.plan import ExecutionPlan, PlanResponse, PlanStep


logger = logging.getLogger(__name__)

FALLBACK_STEP_TEMPLATE = "Execute the task: {goal}"


def extract_json(text: str) -> Optional[str]:
    """Return the first brace-balanced ``{...}`` substring of ``text``.

    Returns ``None`` when there is no opening brace or the object never
    closes.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = in_string
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]

    return None


def parse_plan(response: str, goal: str, revision_count: int = 0) -> Optional[ExecutionPlan]:
    """Parse a model response into a plan, or ``None`` if it holds no usable plan."""
    candidate = extract_json(response)
    if candidate is None:
        logger.debug("No balanced JSON object found in plan response")
        return None

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.debug(f"Plan response is not valid JSON: {e}")
        return None

    try:
        plan_response = PlanResponse.model_validate(payload)
    except ValidationError as e:
        logger.debug(f"Plan response does not match the plan schema: {e.error_count()} error(s)")
        return None

    if not plan_response.steps:
        logger.debug("Plan response contains no steps")
        return None

    return plan_response.to_plan(goal, revision_count=revision_count)


def fallback_plan(goal: str, revision_count: int = 0) -> ExecutionPlan:
    """Single model-delegated step that answers the goal directly."""
    return ExecutionPlan(
        goal=goal,
        steps=[PlanStep(step_number=1, description=FALLBACK_STEP_TEMPLATE.format(goal=goal))],
        revision_count=revision_count,
    )
