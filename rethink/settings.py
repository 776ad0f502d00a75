"""Application settings using pydantic-settings.

Loads configuration from environment variables with .env file support.
"""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,  # Allow both field name and alias
    )

    # Environment
    environment: Literal["development", "staging", "production", "testing"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Primary LLM provider
    # Supports: openai, openrouter, ollama, together, groq, or custom (with LLM_BASE_URL)
    llm_provider: str = Field(
        default="openai",
        description="Primary LLM provider (openai, openrouter, ollama, together, groq, custom)",
    )
    llm_model: str = Field(
        default="gpt-4o",
        description="Primary model name (provider-specific format)",
    )
    llm_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Default generation temperature",
    )
    llm_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for the primary provider",
        validation_alias=AliasChoices("llm_api_key", "openai_api_key", "openrouter_api_key"),
    )
    llm_base_url: str | None = Field(
        default=None,
        description="Custom base URL for OpenAI-compatible APIs",
    )
    llm_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Per-call timeout applied to every provider",
    )

    # Ordered fallback chain, e.g. "openrouter:anthropic/claude-sonnet-4@OPENROUTER_API_KEY,ollama:llama3"
    llm_fallbacks: str = Field(
        default="",
        description="Comma-separated provider:model[@ENV_VAR] entries tried after the primary",
    )

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, ge=1, le=100)
    circuit_window_seconds: float = Field(default=60.0, gt=0.0)
    circuit_cooldown_seconds: float = Field(default=30.0, gt=0.0)
    circuit_max_cooldown_seconds: float = Field(default=300.0, gt=0.0)

    # Retry
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=0.5, ge=0.0)
    retry_max_delay_seconds: float = Field(default=8.0, ge=0.0)
    retry_jitter: float = Field(default=0.5, ge=0.0, le=1.0)

    # Hedging
    hedge_enabled: bool = True
    hedge_delay_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Seconds to wait on the primary before issuing a hedge request",
    )
    hedge_cancel_losers: bool = Field(
        default=True,
        description="Cancel the slower in-flight request once one succeeds",
    )

    # Recursive thinking defaults
    thinking_max_time_seconds: float = Field(default=60.0, gt=0.0, le=3600.0)
    thinking_target_quality: float = Field(default=0.9, ge=0.0, le=1.0)
    thinking_max_rounds: int = Field(
        default=8,
        ge=1,
        description="Safety cap on rounds when the caller does not set thinking_rounds",
    )
    thinking_hard_max_rounds: int = Field(
        default=20,
        ge=1,
        description="Upper bound for any per-request thinking_rounds value",
    )
    thinking_parallel_branches: int = Field(default=2, ge=2, le=8)
    thinking_compression_budget_chars: int = Field(default=12_000, ge=500)

    # Feature flags
    enable_parallel_thinking: bool = False
    enable_adaptive_optimization: bool = False
    enable_prompt_compression: bool = False

    # API
    api_host: str = Field(default="0.0.0.0")  # noqa: S104
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_workers: int = Field(default=1, ge=1, le=16)
    allowed_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (empty = auto based on environment)",
    )
    rate_limit_enabled: bool = True
    chat_rate_limit: str = Field(default="20/minute")

    # API keys
    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Bootstrap API key registered at startup (empty = none)",
    )
    api_key_scopes: str = Field(
        default="chat,admin",
        description="Comma-separated scopes granted to the bootstrap key",
    )
    api_key_pepper: SecretStr = Field(
        default=SecretStr(""),
        description="Root key material for hashing API key secrets (generated on startup if empty)",
    )
    api_key_ttl_days: int | None = Field(
        default=None,
        ge=1,
        description="Default lifetime for newly created keys (None = no expiry)",
    )

    def bootstrap_scopes(self) -> frozenset[str]:
        """Parse the bootstrap key scope list."""
        return frozenset(s.strip() for s in self.api_key_scopes.split(",") if s.strip())


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return Settings()
