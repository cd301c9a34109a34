"""Configuration Package

Environment-based settings for Stepwright. ``get_settings()`` is the only
entry point; everything else receives configuration explicitly.
"""

from .settings import (
    EngineSettings,
    GuardrailSettings,
    LoggingSettings,
    PlanParseFailurePolicy,
    ResilienceSettings,
    StepwrightSettings,
    get_settings,
    reset_settings,
)

__all__ = [
    "EngineSettings",
    "GuardrailSettings",
    "LoggingSettings",
    "PlanParseFailurePolicy",
    "ResilienceSettings",
    "StepwrightSettings",
    "get_settings",
    "reset_settings",
]
