"""
Stepwright Logging Infrastructure

Structured logging for the execution core:

- config: structlog configuration with JSON rendering, run context injection,
  field deduplication and OpenTelemetry trace ids
- coordinator: run-scoped ``RunContext`` held in a ContextVar, with
  ``log_once`` deduplication and per-step scoping
"""

from .config import StepwrightLogger, configure_logging, get_logger
from .coordinator import LoggingCoordinator, RunContext, run_context

__all__ = [
    'LoggingCoordinator',
    'RunContext',
    'run_context',
    'get_logger',
    'configure_logging',
    'StepwrightLogger',
]
