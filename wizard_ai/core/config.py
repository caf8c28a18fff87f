"""
Configuration for the orchestration layer.

Environment configuration (all optional, prefix WIZARD_AI_):
- WIZARD_AI_API_KEY: Gemini API key (AIza... format). Unset disables the remote path.
- WIZARD_AI_API_BASE: Base URL (default: https://generativelanguage.googleapis.com/v1beta)
- WIZARD_AI_MODEL / WIZARD_AI_PRO_MODEL: Model names for light / heavy operations
- WIZARD_AI_TEMPERATURE, WIZARD_AI_MAX_OUTPUT_TOKENS: Generation parameters
- WIZARD_AI_TIMEOUT_MS: Per-attempt timeout in milliseconds (default: 5000)
- WIZARD_AI_CACHE_TTL_MS, WIZARD_AI_CACHE_MAX_ENTRIES, WIZARD_AI_CACHE_SNAPSHOT_PATH
- WIZARD_AI_CACHE_REDIS_URL: Keep cache snapshots in Redis instead of a file
- WIZARD_AI_RATE_LIMIT_COUNT, WIZARD_AI_RATE_LIMIT_WINDOW_MS
- WIZARD_AI_MAX_RETRIES, WIZARD_AI_BACKOFF_BASE_MS, WIZARD_AI_RETRY_INVALID_RESPONSE
- WIZARD_AI_CIRCUIT_FAILURE_THRESHOLD, WIZARD_AI_CIRCUIT_OPEN_MS
- WIZARD_AI_QUEUE_MAX_CONCURRENT, WIZARD_AI_QUEUE_MAX_SIZE: Remote call admission
- WIZARD_AI_ALERT_ERROR_RATE_PCT, WIZARD_AI_ALERT_P95_LATENCY_MS,
  WIZARD_AI_ALERT_CACHE_HIT_RATE_PCT, WIZARD_AI_ALERT_COST_SPIKE_MULTIPLIER
- WIZARD_AI_MONTHLY_COST_TARGET_USD
- WIZARD_AI_LOG_LEVEL, WIZARD_AI_LOG_JSON

A .env file in the working directory is loaded first (python-dotenv); real
environment variables take precedence.
"""
import os
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "WIZARD_AI_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Recognised configuration options."""

    model_config = ConfigDict(frozen=True)

    api_key: Optional[str] = None
    api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-2.5-flash"
    pro_model: str = "gemini-2.5-pro"
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(1000, gt=0)
    timeout_ms: int = Field(5000, gt=0)

    cache_ttl_ms: int = Field(3_600_000, gt=0)  # 1 hour
    cache_max_entries: int = Field(100, gt=0)
    cache_snapshot_path: Optional[str] = None
    cache_redis_url: Optional[str] = None

    rate_limit_count: int = Field(20, gt=0)
    rate_limit_window_ms: int = Field(3_600_000, gt=0)  # 1 hour

    max_retries: int = Field(3, ge=1)
    backoff_base_ms: int = Field(1000, ge=0)
    retry_invalid_response: bool = False

    circuit_failure_threshold: int = Field(5, ge=1)
    circuit_open_ms: int = Field(300_000, gt=0)  # 5 minutes

    queue_max_concurrent: int = Field(3, gt=0)
    queue_max_size: int = Field(50, ge=0)

    alert_error_rate_pct: float = Field(5.0, gt=0)
    alert_p95_latency_ms: float = Field(3000.0, gt=0)
    alert_cache_hit_rate_pct: float = Field(70.0, ge=0, le=100)
    alert_cost_spike_multiplier: float = Field(2.0, gt=1)

    monthly_cost_target_usd: float = Field(50.0, gt=0)

    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("api_key")
    @classmethod
    def strip_api_key(cls, value: Optional[str]) -> Optional[str]:
        # Empty string means "not configured"; format is checked by the remote client.
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = value.upper().strip()
        if v not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return v

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_ms / 1000.0

    @property
    def rate_limit_window_seconds(self) -> float:
        return self.rate_limit_window_ms / 1000.0

    @property
    def backoff_base_seconds(self) -> float:
        return self.backoff_base_ms / 1000.0

    @property
    def circuit_open_seconds(self) -> float:
        return self.circuit_open_ms / 1000.0

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv: bool = True,
    ) -> "Settings":
        """
        Build settings from WIZARD_AI_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)
            dotenv: Load a .env file into os.environ first

        Raises:
            pydantic.ValidationError: If any value is invalid
        """
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        values: Dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            if field.annotation is bool:
                values[name] = raw.strip().lower() in _TRUE_VALUES
            else:
                values[name] = raw
        return cls(**values)
