"""
Stepwright Logging Coordinator

Run-scoped logging context with deduplication of repeated operations.

The active ``RunContext`` lives in a ``ContextVar``. asyncio tasks copy the
context when created, so a step task can bind its own ``step_number`` with
``step_scope`` without affecting sibling steps.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Set


@dataclass
class RunContext:
    """
    Run-scoped data shared by every log event of one plan execution.

    Attributes:
        run_id: Unique identifier for the run
        goal: Goal text the run was started with
        plan_revision: Revision number of the plan currently executing
        step_number: Step being executed, set inside step tasks only
        start_time: Run start timestamp
        attributes: Additional run-scoped metadata
        logged_operations: Keys already logged through ``log_once``
    """
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    goal: Optional[str] = None
    plan_revision: Optional[int] = None
    step_number: Optional[int] = None
    start_time: datetime = field(default_factory=datetime.utcnow)
    attributes: Dict[str, Any] = field(default_factory=dict)
    logged_operations: Set[str] = field(default_factory=set)

    def has_logged(self, operation_key: str) -> bool:
        return operation_key in self.logged_operations

    def mark_logged(self, operation_key: str) -> None:
        self.logged_operations.add(operation_key)


run_context: ContextVar[Optional[RunContext]] = ContextVar(
    'run_context',
    default=None
)


class LoggingCoordinator:
    """
    Coordinates logging for one plan run.

    ``start_run`` installs a fresh ``RunContext``; ``end_run`` removes it and
    returns a summary suitable for a single closing log event.
    """

    _KNOWN_FIELDS = {'run_id', 'goal', 'plan_revision', 'step_number', 'start_time'}

    def __init__(self):
        self.context: Optional[RunContext] = None
        self._token = None

    def start_run(self, **initial_context) -> RunContext:
        context_args = {k: v for k, v in initial_context.items() if k in self._KNOWN_FIELDS}
        additional_attrs = {k: v for k, v in initial_context.items() if k not in self._KNOWN_FIELDS}

        self.context = RunContext(**context_args)
        if additional_attrs:
            self.context.attributes.update(additional_attrs)

        self._token = run_context.set(self.context)
        return self.context

    def end_run(self) -> Dict[str, Any]:
        if not self.context:
            return {}

        duration = (datetime.utcnow() - self.context.start_time).total_seconds()
        summary = {
            'run_id': self.context.run_id,
            'duration_seconds': duration,
            'operations_logged': len(self.context.logged_operations),
            'final_plan_revision': self.context.plan_revision,
            **self.context.attributes,
        }

        if self._token is not None:
            try:
                run_context.reset(self._token)
            except ValueError:
                # Token created in another context (run ended from a different task)
                run_context.set(None)
        self._token = None
        self.context = None

        return summary

    def set_plan_revision(self, revision: int) -> None:
        if self.context:
            self.context.plan_revision = revision

    @staticmethod
    def get_context() -> Optional[RunContext]:
        return run_context.get()

    @staticmethod
    @contextmanager
    def step_scope(step_number: int) -> Iterator[Optional[RunContext]]:
        """Bind ``step_number`` for the current task only.

        The scoped context shares ``attributes`` and ``logged_operations``
        with the run context it was derived from.
        """
        ctx = run_context.get()
        if ctx is None:
            yield None
            return
        token = run_context.set(replace(ctx, step_number=step_number))
        try:
            yield run_context.get()
        finally:
            run_context.reset(token)

    @staticmethod
    def log_once(operation_key: str, logger: Any, level: str,
                 message: str, **extra) -> None:
        """
        Log an operation only if it hasn't been logged yet in the current run.

        Outside a run the event is always logged.
        """
        ctx = run_context.get()
        if ctx and ctx.has_logged(operation_key):
            return
        log_method = getattr(logger, level.lower(), logger.info)
        log_method(message, **extra)
        if ctx:
            ctx.mark_logged(operation_key)
