"""Shared settings and credential helpers for API tests.

Provides make_test_settings() and the bootstrap key used across the
API and CLI tests.
"""

from pydantic import SecretStr

from rethink.settings import Settings

BOOTSTRAP_KEY = "rtk_test-bootstrap-key"

_SETTINGS_DEFAULTS: dict = {
    "environment": "testing",
    "debug": True,
    "llm_provider": "openai",
    "llm_model": "gpt-test",
    "llm_api_key": SecretStr("test-api-key"),
    "llm_fallbacks": "",
    "rate_limit_enabled": False,
    "api_key": SecretStr(BOOTSTRAP_KEY),
    "api_key_scopes": "chat,admin",
    "api_key_pepper": SecretStr("test-pepper"),
    "hedge_enabled": False,
    "retry_base_delay_seconds": 0.0,
    "retry_max_delay_seconds": 0.0,
}


def make_test_settings(**overrides: object) -> Settings:
    """Create test Settings with safe defaults.

    Args:
        **overrides: Field overrides to merge into defaults.

    Returns:
        A Settings instance for testing.
    """
    merged = {**_SETTINGS_DEFAULTS, **overrides}
    return Settings(_env_file=None, **merged)


def bearer(secret: str = BOOTSTRAP_KEY) -> dict[str, str]:
    return {"Authorization": f"Bearer {secret}"}
