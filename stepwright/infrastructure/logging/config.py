"""
Stepwright Logging Configuration

Configures structlog with JSON formatting, run context injection,
deduplication, and OpenTelemetry integration.
"""

import logging
from typing import Any, Dict, Optional, Union

import structlog
from opentelemetry import trace


class StepwrightLogger:
    """
    Structured logging configuration for the execution core.

    Configures structlog with processors for run context injection,
    deduplication, trace context, and JSON (or console) rendering, so every
    log event emitted during a plan run carries the same correlation fields.
    """

    def __init__(self, level: Union[int, str] = logging.INFO, structured: bool = True):
        """Initialize the logger configuration.

        Args:
            level: Root log level for the stdlib handler
            structured: Render JSON when True, human-readable console output otherwise
        """
        self.level = logging.getLevelName(level) if isinstance(level, str) else level
        self.structured = structured
        self.configure_structlog()

    def configure_structlog(self) -> None:
        """
        Configure structlog with the processor chain:
        level filtering, logger name and level, ISO timestamp, exception
        information, run context injection, field deduplication,
        OpenTelemetry trace context, then rendering.
        """
        logging.basicConfig(
            format="%(message)s",
            level=self.level,
        )

        renderer = (
            structlog.processors.JSONRenderer()
            if self.structured
            else structlog.dev.ConsoleRenderer()
        )

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),

                self.add_run_context,
                self.deduplicate_fields,
                self.add_trace_context,

                renderer,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    @staticmethod
    def add_run_context(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Inject the active run's identifiers into the event.

        Fields already present on the event win over the run context.
        """
        from stepwright.infrastructure.logging.coordinator import run_context

        ctx = run_context.get()
        if ctx:
            event_dict.setdefault('run_id', ctx.run_id)
            if ctx.plan_revision is not None:
                event_dict.setdefault('plan_revision', ctx.plan_revision)
            if ctx.step_number is not None:
                event_dict.setdefault('step_number', ctx.step_number)
            for key, value in ctx.attributes.items():
                event_dict.setdefault(key, value)

        return event_dict

    @staticmethod
    def deduplicate_fields(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Keep the first occurrence of each field."""
        seen = set()
        deduped = {}

        for key, value in event_dict.items():
            if key not in seen:
                deduped[key] = value
                seen.add(key)

        return deduped

    @staticmethod
    def add_trace_context(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add OpenTelemetry trace context to log entries.

        Only recording spans contribute; ids are rendered as lowercase hex.
        """
        span = trace.get_current_span()
        if span and span.is_recording():
            span_context = span.get_span_context()
            if 'trace_id' not in event_dict:
                event_dict['trace_id'] = format(span_context.trace_id, '032x')
            if 'span_id' not in event_dict:
                event_dict['span_id'] = format(span_context.span_id, '016x')

        return event_dict


# Singleton configuration instance
_logger_config: Optional[StepwrightLogger] = None


def configure_logging(level: Union[int, str] = logging.INFO, structured: bool = True) -> StepwrightLogger:
    """Configure (or reconfigure) structlog explicitly.

    Typically called once at startup with values from ``LoggingSettings``.
    """
    global _logger_config
    _logger_config = StepwrightLogger(level=level, structured=structured)
    return _logger_config


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a configured logger instance.

    Configures structlog with defaults on first use when
    ``configure_logging`` has not been called.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("step_completed", step_number=2, duration=0.123)
    """
    global _logger_config
    if _logger_config is None:
        _logger_config = StepwrightLogger()

    return structlog.get_logger(name)
