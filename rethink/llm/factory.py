"""LLM provider factory.

Builds the ranked provider chain from settings. Every backend is reached
through an OpenAI-compatible API via langchain-openai:
- OpenAI: Direct OpenAI API access
- OpenRouter: Access to many models via unified API
- Together, Groq, Ollama: OpenAI-compatible endpoints
- Any other OpenAI-compatible API: set LLM_BASE_URL

Environment variables:
- LLM_PROVIDER / LLM_MODEL / LLM_API_KEY / LLM_BASE_URL: primary provider
- LLM_FALLBACKS: ordered "provider:model[@ENV_VAR]" list, comma-separated
- LLM_TIMEOUT_SECONDS: per-call timeout for every provider
"""

import os
from typing import Any

from langchain_core.language_models import BaseChatModel

from rethink.exceptions import ConfigurationError
from rethink.llm.providers import ChatModelProviderClient, ProviderClient, ProviderDescriptor
from rethink.settings import Settings, get_settings

# Provider base URLs
PROVIDER_BASE_URLS = {
    "openrouter": "https://openrouter.ai/api/v1",
    "openai": "https://api.openai.com/v1",
    "together": "https://api.together.xyz/v1",
    "groq": "https://api.groq.com/openai/v1",
    "ollama": "http://localhost:11434/v1",
}

# Primary provider credential comes from settings.llm_api_key
PRIMARY_CREDENTIAL_REF = "LLM_API_KEY"


def parse_fallbacks(value: str) -> list[tuple[str, str, str | None]]:
    """Parse an LLM_FALLBACKS value into (provider, model, credential_ref) tuples.

    Args:
        value: Comma-separated ``provider:model[@ENV_VAR]`` entries

    Returns:
        Entries in the order given

    Raises:
        ConfigurationError: If an entry is malformed
    """
    entries = []
    for raw in value.split(","):
        raw = raw.strip()
        if not raw:
            continue
        credential_ref = None
        if "@" in raw:
            raw, credential_ref = raw.rsplit("@", 1)
            credential_ref = credential_ref.strip() or None
        provider, sep, model = raw.partition(":")
        if not sep or not provider.strip() or not model.strip():
            raise ConfigurationError(
                f"Invalid LLM_FALLBACKS entry '{raw}': expected provider:model[@ENV_VAR]"
            )
        entries.append((provider.strip(), model.strip(), credential_ref))
    return entries


def build_descriptors(settings: Settings | None = None) -> list[ProviderDescriptor]:
    """Build the ranked descriptor list: primary first, then fallbacks in order."""
    settings = settings or get_settings()
    descriptors = [
        ProviderDescriptor(
            name=f"{settings.llm_provider}:{settings.llm_model}",
            provider=settings.llm_provider,
            model=settings.llm_model,
            priority=0,
            timeout_seconds=settings.llm_timeout_seconds,
            credential_ref=PRIMARY_CREDENTIAL_REF,
            base_url=settings.llm_base_url,
        )
    ]
    seen = {descriptors[0].name}
    for rank, (provider, model, credential_ref) in enumerate(parse_fallbacks(settings.llm_fallbacks), start=1):
        name = f"{provider}:{model}"
        if name in seen:
            raise ConfigurationError(f"Provider {name} is configured more than once")
        seen.add(name)
        descriptors.append(
            ProviderDescriptor(
                name=name,
                provider=provider,
                model=model,
                priority=rank,
                timeout_seconds=settings.llm_timeout_seconds,
                credential_ref=credential_ref,
            )
        )
    return descriptors


def resolve_credential(descriptor: ProviderDescriptor, settings: Settings) -> str:
    """Resolve a descriptor's credential reference to the secret value."""
    if descriptor.credential_ref in (None, PRIMARY_CREDENTIAL_REF):
        return settings.llm_api_key.get_secret_value()
    return os.environ.get(descriptor.credential_ref, "")


def create_chat_model(
    descriptor: ProviderDescriptor,
    settings: Settings | None = None,
    **kwargs: Any,
) -> BaseChatModel:
    """Create the LangChain chat model behind one provider descriptor.

    Raises:
        ConfigurationError: If the provider is unknown or its API key is missing
    """
    from langchain_openai import ChatOpenAI

    settings = settings or get_settings()
    provider = descriptor.provider

    api_key = resolve_credential(descriptor, settings)
    if not api_key and provider != "ollama":
        raise ConfigurationError(
            f"No API key for {descriptor.name} (credential {descriptor.credential_ref or PRIMARY_CREDENTIAL_REF})"
        )

    base_url = descriptor.base_url or PROVIDER_BASE_URLS.get(provider)
    if base_url is None:
        raise ConfigurationError(
            f"Unknown provider '{provider}'. Set LLM_BASE_URL for custom providers."
        )

    llm_kwargs: dict[str, Any] = {
        "model": descriptor.model,
        "temperature": settings.llm_temperature,
        "timeout": descriptor.timeout_seconds,
        # RetryPolicy owns retries
        "max_retries": 0,
        "api_key": api_key or "ollama",
        "base_url": base_url,
        **kwargs,
    }

    if provider == "openrouter":
        llm_kwargs.setdefault("default_headers", {})
        llm_kwargs["default_headers"]["X-Title"] = "Rethink"

    return ChatOpenAI(**llm_kwargs)


def build_provider_clients(settings: Settings | None = None) -> list[ProviderClient]:
    """Build one ProviderClient per configured provider, in priority order."""
    settings = settings or get_settings()
    return [
        ChatModelProviderClient(descriptor, create_chat_model(descriptor, settings))
        for descriptor in build_descriptors(settings)
    ]


def list_supported_providers() -> dict[str, str]:
    """List supported LLM providers and their base URLs."""
    return dict(PROVIDER_BASE_URLS)
