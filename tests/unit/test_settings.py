"""Unit tests for application settings."""

import pytest
from pydantic import ValidationError

from rethink.settings import Settings, get_settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.environment == "development"
    assert settings.llm_provider == "openai"
    assert settings.llm_fallbacks == ""
    assert settings.circuit_failure_threshold == 5
    assert settings.retry_max_attempts == 3
    assert settings.hedge_enabled
    assert settings.thinking_target_quality == 0.9
    assert not settings.enable_parallel_thinking
    assert settings.api_key.get_secret_value() == ""


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("LLM_FALLBACKS", "groq:llama3@GROQ_API_KEY")
    monkeypatch.setenv("ENABLE_PARALLEL_THINKING", "true")
    monkeypatch.setenv("CIRCUIT_FAILURE_THRESHOLD", "2")

    settings = Settings(_env_file=None)
    assert settings.llm_fallbacks == "groq:llama3@GROQ_API_KEY"
    assert settings.enable_parallel_thinking
    assert settings.circuit_failure_threshold == 2


def test_openai_api_key_alias(monkeypatch):
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert Settings(_env_file=None).llm_api_key.get_secret_value() == "sk-test"


@pytest.mark.parametrize(
    "overrides",
    [
        {"thinking_target_quality": 1.5},
        {"llm_temperature": 3.0},
        {"circuit_failure_threshold": 0},
        {"thinking_parallel_branches": 1},
        {"environment": "qa"},
    ],
)
def test_invalid_values(overrides):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_bootstrap_scopes():
    settings = Settings(_env_file=None, api_key_scopes=" chat , admin,,")
    assert settings.bootstrap_scopes() == frozenset({"chat", "admin"})


def test_get_settings_is_cached():
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
