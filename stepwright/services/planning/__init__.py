"""Planning

Plan parsing, prompt construction, lifecycle hooks, the synthesis streaming
channel and the ``PlanExecutionEngine`` that ties them together.
"""

from .engine import EngineConfig, PlanExecutionEngine, PlanRunResult
from .hooks import CompositeRunHooks, LoggingRunHooks, RunHooks
from .plan_parser import extract_json, fallback_plan, parse_plan
from .streaming import StreamEvent, StreamEventKind, collect_stream, stream_fragments

__all__ = [
    "EngineConfig",
    "PlanExecutionEngine",
    "PlanRunResult",
    "RunHooks",
    "CompositeRunHooks",
    "LoggingRunHooks",
    "extract_json",
    "parse_plan",
    "fallback_plan",
    "StreamEvent",
    "StreamEventKind",
    "stream_fragments",
    "collect_stream",
]
