"""
Unit tests for Settings.
"""
import pytest
from pydantic import ValidationError

from wizard_ai.core.config import Settings


def test_defaults():
    settings = Settings()

    assert settings.api_key is None
    assert settings.model == "gemini-2.5-flash"
    assert settings.max_retries == 3
    assert settings.rate_limit_count == 20
    assert settings.cache_max_entries == 100
    assert settings.cache_ttl_seconds == 3600.0
    assert settings.backoff_base_seconds == 1.0
    assert settings.circuit_open_seconds == 300.0
    assert settings.retry_invalid_response is False
    assert settings.queue_max_concurrent == 3
    assert settings.queue_max_size == 50
    assert settings.alert_error_rate_pct == 5.0
    assert settings.cache_redis_url is None


def test_from_env_reads_prefixed_variables():
    environ = {
        "WIZARD_AI_API_KEY": "  AIza" + "B" * 35 + "  ",
        "WIZARD_AI_TIMEOUT_MS": "2500",
        "WIZARD_AI_RATE_LIMIT_COUNT": "5",
        "WIZARD_AI_RETRY_INVALID_RESPONSE": "yes",
        "WIZARD_AI_LOG_JSON": "false",
        "WIZARD_AI_LOG_LEVEL": "debug",
        "UNRELATED": "ignored",
    }

    settings = Settings.from_env(environ)

    assert settings.api_key == "AIza" + "B" * 35
    assert settings.timeout_seconds == 2.5
    assert settings.rate_limit_count == 5
    assert settings.retry_invalid_response is True
    assert settings.log_json is False
    assert settings.log_level == "DEBUG"


def test_empty_api_key_means_unconfigured():
    assert Settings.from_env({"WIZARD_AI_API_KEY": "   "}).api_key is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_retries": 0},
        {"timeout_ms": 0},
        {"rate_limit_count": -1},
        {"temperature": 3.0},
        {"log_level": "LOUD"},
        {"queue_max_concurrent": 0},
        {"alert_cost_spike_multiplier": 1.0},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_from_env_invalid_number_rejected():
    with pytest.raises(ValidationError):
        Settings.from_env({"WIZARD_AI_CACHE_MAX_ENTRIES": "lots"})


def test_settings_are_frozen():
    settings = Settings()
    with pytest.raises(ValidationError):
        settings.model = "other"


def test_from_env_reads_queue_and_alert_settings():
    settings = Settings.from_env({
        "WIZARD_AI_QUEUE_MAX_CONCURRENT": "5",
        "WIZARD_AI_QUEUE_MAX_SIZE": "0",
        "WIZARD_AI_ALERT_P95_LATENCY_MS": "1500",
        "WIZARD_AI_CACHE_REDIS_URL": "redis://cache:6379/1",
    })

    assert settings.queue_max_concurrent == 5
    assert settings.queue_max_size == 0
    assert settings.alert_p95_latency_ms == 1500.0
    assert settings.cache_redis_url == "redis://cache:6379/1"
