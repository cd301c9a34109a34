"""
Unified Configuration System for Stepwright

Single source of truth for all configuration using pydantic-settings.

ARCHITECTURAL PRINCIPLES:
- Only this module accesses environment variables directly
- The engine and the resilience primitives receive configuration explicitly
  (``EngineConfig``, constructor arguments); they never read the environment
- Type-safe validation with automatic conversion
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from stepwright.models.plan import PlanParseFailurePolicy

if TYPE_CHECKING:
    from stepwright.infrastructure.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
    from stepwright.infrastructure.resilience.rate_limiter import RateLimiter
    from stepwright.infrastructure.resilience.retry_policy import RetryPolicy
    from stepwright.services.guardrails.base import InputGuardrail
    from stepwright.services.guardrails.runner import GuardrailRunnerConfig
    from stepwright.services.planning.engine import EngineConfig


# =============================================================================
# ENUMS
# =============================================================================

class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# NESTED CONFIGURATION SECTIONS
# =============================================================================

class EngineSettings(BaseSettings):
    """Plan execution engine configuration"""
    max_replan_attempts: int = Field(default=3, ge=0)
    max_concurrent_steps: Optional[int] = Field(default=None, ge=1)
    plan_parse_failure_policy: PlanParseFailurePolicy = Field(default=PlanParseFailurePolicy.FALLBACK)
    enable_streaming: bool = Field(default=False)
    run_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    # Characters of each completed step result quoted in replan prompts
    result_summary_chars: int = Field(default=100, ge=1)
    instructions: str = Field(default="")

    model_config = {"env_prefix": "STEPWRIGHT_ENGINE_", "extra": "ignore"}


class ResilienceSettings(BaseSettings):
    """Retry, circuit breaker and rate limit defaults"""
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay: float = Field(default=60.0, ge=0)
    retry_jitter: bool = Field(default=False)

    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_success_threshold: int = Field(default=1, ge=1)
    breaker_reset_timeout: float = Field(default=60.0, gt=0)
    breaker_half_open_max_requests: int = Field(default=1, ge=1)

    # Token bucket in front of every model call when set
    rate_limit_requests_per_minute: Optional[int] = Field(default=None, ge=1)

    @field_validator("retry_max_delay")
    @classmethod
    def validate_max_delay(cls, v, info):
        """Ensure the delay cap is not below the base delay"""
        base = info.data.get("retry_base_delay", 1.0)
        if v < base:
            raise ValueError(
                f"STEPWRIGHT_RESILIENCE_RETRY_MAX_DELAY ({v}) must not be lower than "
                f"STEPWRIGHT_RESILIENCE_RETRY_BASE_DELAY ({base})"
            )
        return v

    model_config = {"env_prefix": "STEPWRIGHT_RESILIENCE_", "extra": "ignore"}


class GuardrailSettings(BaseSettings):
    """Guardrail runner configuration"""
    run_in_parallel: bool = Field(default=False)
    stop_on_first_tripwire: bool = Field(default=True)

    # Installs a MaxLengthGuardrail on the goal when set
    max_input_length: Optional[int] = Field(default=None, ge=1)

    model_config = {"env_prefix": "STEPWRIGHT_GUARDRAIL_", "extra": "ignore"}


class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: LogLevel = Field(default=LogLevel.INFO)
    structured_logging: bool = Field(default=True)

    model_config = {"env_prefix": "STEPWRIGHT_LOG_", "extra": "ignore"}


# =============================================================================
# MAIN SETTINGS CLASS
# =============================================================================

class StepwrightSettings(BaseSettings):
    """
    Unified configuration for Stepwright.

    Sections are populated from environment variables (and ``.env``); the
    ``build_*`` factories turn them into the explicit objects the execution
    core consumes.
    """

    engine: EngineSettings = Field(default_factory=EngineSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    guardrails: GuardrailSettings = Field(default_factory=GuardrailSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def build_retry_policy(self) -> "RetryPolicy":
        """Retry policy for tool steps.

        Guardrail errors and open-circuit rejections are never retried.
        """
        from stepwright.exceptions import CircuitOpenError, GuardrailError
        from stepwright.infrastructure.resilience.retry_policy import BackoffStrategy, RetryPolicy

        r = self.resilience
        return RetryPolicy(
            max_attempts=r.retry_max_attempts,
            backoff=BackoffStrategy.exponential(
                base=r.retry_base_delay,
                multiplier=r.retry_multiplier,
                max_delay=r.retry_max_delay,
                jitter=r.retry_jitter,
            ),
            should_retry=lambda error: not isinstance(error, (GuardrailError, CircuitOpenError)),
            name="tool_step",
        )

    def build_circuit_breaker(self, name: str) -> "CircuitBreaker":
        from stepwright.infrastructure.resilience.circuit_breaker import CircuitBreaker

        r = self.resilience
        return CircuitBreaker(
            name=name,
            failure_threshold=r.breaker_failure_threshold,
            success_threshold=r.breaker_success_threshold,
            reset_timeout=r.breaker_reset_timeout,
            half_open_max_requests=r.breaker_half_open_max_requests,
        )

    def build_circuit_breaker_registry(self) -> "CircuitBreakerRegistry":
        from stepwright.infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry

        return CircuitBreakerRegistry(factory=self.build_circuit_breaker)

    def build_rate_limiter(self) -> Optional["RateLimiter"]:
        from stepwright.infrastructure.resilience.rate_limiter import RateLimiter

        rpm = self.resilience.rate_limit_requests_per_minute
        if rpm is None:
            return None
        return RateLimiter.per_minute(rpm, name="model")

    def build_guardrail_runner_config(self) -> "GuardrailRunnerConfig":
        from stepwright.services.guardrails.runner import GuardrailRunnerConfig

        return GuardrailRunnerConfig(
            run_in_parallel=self.guardrails.run_in_parallel,
            stop_on_first_tripwire=self.guardrails.stop_on_first_tripwire,
        )

    def build_input_guardrails(self) -> List["InputGuardrail"]:
        from stepwright.services.guardrails.builtin import MaxLengthGuardrail

        if self.guardrails.max_input_length is None:
            return []
        return [MaxLengthGuardrail(self.guardrails.max_input_length, name="max_input_length")]

    def configure_logging(self) -> None:
        from stepwright.infrastructure.logging.config import configure_logging

        configure_logging(level=self.logging.level.value, structured=self.logging.structured_logging)

    def build_engine_config(self) -> "EngineConfig":
        from stepwright.services.planning.engine import EngineConfig

        e = self.engine
        return EngineConfig(
            max_replan_attempts=e.max_replan_attempts,
            max_concurrent_steps=e.max_concurrent_steps,
            plan_parse_failure_policy=e.plan_parse_failure_policy,
            enable_streaming=e.enable_streaming,
            run_timeout_seconds=e.run_timeout_seconds,
            result_summary_chars=e.result_summary_chars,
            instructions=e.instructions,
        )


# =============================================================================
# GLOBAL SETTINGS INSTANCE
# =============================================================================

_settings_instance: Optional[StepwrightSettings] = None


def get_settings() -> StepwrightSettings:
    """
    Get global settings instance (singleton pattern).

    Raises:
        ConfigurationError: If settings validation fails
    """
    global _settings_instance
    if _settings_instance is None:
        try:
            from dotenv import load_dotenv

            load_dotenv(override=True)
            _settings_instance = StepwrightSettings()
            logging.getLogger(__name__).debug(
                f"Settings loaded - max_replan_attempts={_settings_instance.engine.max_replan_attempts}, "
                f"parse_failure_policy={_settings_instance.engine.plan_parse_failure_policy.value}"
            )
        except Exception as e:
            from stepwright.exceptions import ConfigurationError
            raise ConfigurationError(
                f"Settings initialization failed: {e}",
                error_code="SETTINGS_INIT_ERROR",
                context={"original_error": str(e), "error_type": type(e).__name__},
            ) from e
    return _settings_instance


def reset_settings() -> None:
    """
    Reset settings instance (primarily for testing).

    Forces recreation of settings on next get_settings() call.
    """
    global _settings_instance
    _settings_instance = None
