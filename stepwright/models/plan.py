"""Plan Models

Data models for dependency-ordered execution plans and the JSON wire format
exchanged with the model service.

An ``ExecutionPlan`` is one plan revision: an ordered list of ``PlanStep``
objects whose ``depends_on`` sets reference other steps of the same plan by
id. Dependency references that do not resolve are dropped when the plan is
built, so execution never has to deal with dangling ids. Plans are replaced,
not mutated, on replanning; only the engine drives step status transitions.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    """Lifecycle of a plan step. ``completed`` and ``failed`` are terminal."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanParseFailurePolicy(str, Enum):
    """What the engine does when a model response contains no usable plan."""
    FALLBACK = "fallback"  # single-step direct-answer plan
    ABORT = "abort"        # raise PlanParseError


TERMINAL_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.FAILED})


class InvalidStepTransition(ValueError):
    """Raised when a step is moved out of a terminal state or skips ``running``."""


class PlanStep(BaseModel):
    """A single step of an execution plan.

    Attributes:
        id: Opaque identifier assigned at plan construction
        step_number: 1-based ordinal used in prompts and dependency references
        description: Free-text intent of the step
        tool_name: Tool to invoke; ``None`` makes this a model-delegated step
        tool_arguments: Dynamically-typed arguments for the tool
        depends_on: Ids of steps that must be completed first
        status: Current lifecycle status
        result: Output text, set once on completion
        error: Error text, set once on failure
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    step_number: int
    description: str
    tool_name: Optional[str] = None
    tool_arguments: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_tool_step(self) -> bool:
        return self.tool_name is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_running(self) -> None:
        if self.status != StepStatus.PENDING:
            raise InvalidStepTransition(
                f"Step {self.step_number} cannot start from status '{self.status.value}'"
            )
        self.status = StepStatus.RUNNING

    def mark_completed(self, result: str) -> None:
        self._finish(StepStatus.COMPLETED)
        self.result = result

    def mark_failed(self, error: str) -> None:
        self._finish(StepStatus.FAILED)
        self.error = error

    def _finish(self, status: StepStatus) -> None:
        if self.status != StepStatus.RUNNING:
            raise InvalidStepTransition(
                f"Step {self.step_number} cannot become '{status.value}' from '{self.status.value}'"
            )
        self.status = status

    def __str__(self) -> str:
        tool_info = f" [tool: {self.tool_name}]" if self.tool_name else ""
        return f"Step {self.step_number}: {self.description}{tool_info} ({self.status.value})"


class ExecutionPlan(BaseModel):
    """One revision of a plan for a goal.

    Step ids are unique and every ``depends_on`` entry resolves to a step of
    this plan; both are enforced at construction.
    """
    goal: str
    steps: List[PlanStep] = Field(default_factory=list)
    revision_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def _normalize_dependencies(self) -> "ExecutionPlan":
        seen = set()
        unique_steps = []
        for step in self.steps:
            if step.id in seen:
                logger.warning(f"Dropping step {step.step_number}: duplicate step id {step.id}")
                continue
            seen.add(step.id)
            unique_steps.append(step)

        for step in unique_steps:
            resolved = []
            for dep_id in step.depends_on:
                if dep_id == step.id or dep_id not in seen or dep_id in resolved:
                    continue
                resolved.append(dep_id)
            if len(resolved) != len(step.depends_on):
                logger.debug(
                    f"Step {step.step_number}: dropped {len(step.depends_on) - len(resolved)} "
                    f"unresolvable dependency reference(s)"
                )
            step.depends_on = resolved

        self.steps = unique_steps
        return self

    # -- lookup -----------------------------------------------------------

    def get_step(self, step_id: str) -> Optional[PlanStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def dependencies_of(self, step: PlanStep) -> List[PlanStep]:
        return [dep for dep in (self.get_step(dep_id) for dep_id in step.depends_on) if dep]

    # -- status views -----------------------------------------------------

    @property
    def completed_steps(self) -> List[PlanStep]:
        return [s for s in self.steps if s.status == StepStatus.COMPLETED]

    @property
    def failed_steps(self) -> List[PlanStep]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]

    @property
    def pending_steps(self) -> List[PlanStep]:
        return [s for s in self.steps if s.status == StepStatus.PENDING]

    @property
    def running_steps(self) -> List[PlanStep]:
        return [s for s in self.steps if s.status == StepStatus.RUNNING]

    @property
    def is_complete(self) -> bool:
        return all(s.status == StepStatus.COMPLETED for s in self.steps)

    @property
    def has_failed(self) -> bool:
        return any(s.status == StepStatus.FAILED for s in self.steps)

    @property
    def is_settled(self) -> bool:
        """True when no step is running."""
        return not self.running_steps

    def is_eligible(self, step: PlanStep) -> bool:
        """A pending step whose dependencies are all completed."""
        if step.status != StepStatus.PENDING:
            return False
        return all(
            dep.status == StepStatus.COMPLETED for dep in self.dependencies_of(step)
        )

    @property
    def eligible_steps(self) -> List[PlanStep]:
        """Eligible steps in declared order."""
        return [s for s in self.steps if self.is_eligible(s)]

    def __str__(self) -> str:
        lines = [f'ExecutionPlan(goal: "{self.goal}", revision: {self.revision_count})', "Steps:"]
        lines.extend(f"  {step}" for step in self.steps)
        return "\n".join(lines)


# =============================================================================
# WIRE FORMAT
# =============================================================================

class PlanStepData(BaseModel):
    """One step as produced by the model: ``{stepNumber, description, toolName,
    toolArguments, dependsOn}``. Snake-case keys are accepted as well."""
    model_config = ConfigDict(populate_by_name=True)

    step_number: int = Field(alias="stepNumber")
    description: str
    tool_name: Optional[str] = Field(default=None, alias="toolName")
    tool_arguments: Optional[Dict[str, Any]] = Field(default=None, alias="toolArguments")
    depends_on: List[int] = Field(default_factory=list, alias="dependsOn")


class PlanResponse(BaseModel):
    """Top-level plan JSON object: ``{"steps": [...]}``."""
    steps: List[PlanStepData]

    def to_plan(self, goal: str, revision_count: int = 0) -> ExecutionPlan:
        """Assign ids and resolve ``dependsOn`` step numbers to step ids.

        The first step declared with a given ``stepNumber`` wins; later
        duplicates are dropped. Numbers that match no step are discarded.
        """
        number_to_id: Dict[int, str] = {}
        accepted: List[PlanStepData] = []
        for data in self.steps:
            if data.step_number in number_to_id:
                logger.warning(f"Ignoring duplicate plan step number {data.step_number}")
                continue
            number_to_id[data.step_number] = str(uuid.uuid4())
            accepted.append(data)

        steps = [
            PlanStep(
                id=number_to_id[data.step_number],
                step_number=data.step_number,
                description=data.description,
                tool_name=data.tool_name or None,
                tool_arguments=data.tool_arguments or {},
                depends_on=[number_to_id[n] for n in data.depends_on if n in number_to_id],
            )
            for data in accepted
        ]
        return ExecutionPlan(goal=goal, steps=steps, revision_count=revision_count)
