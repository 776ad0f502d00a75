"""Unit tests for the provider chain factory."""

import pytest
from langchain_openai import ChatOpenAI

from rethink.exceptions import ConfigurationError
from rethink.llm.factory import (
    PROVIDER_BASE_URLS,
    build_descriptors,
    build_provider_clients,
    create_chat_model,
    parse_fallbacks,
    resolve_credential,
)
from rethink.llm.providers import ChatModelProviderClient
from tests.helpers.auth import make_test_settings


class TestParseFallbacks:
    def test_entries_in_order(self):
        assert parse_fallbacks("openrouter:meta/llama-3@OPENROUTER_API_KEY, ollama:llama3") == [
            ("openrouter", "meta/llama-3", "OPENROUTER_API_KEY"),
            ("ollama", "llama3", None),
        ]

    def test_empty(self):
        assert parse_fallbacks("") == []
        assert parse_fallbacks(" , ") == []

    def test_model_may_contain_colons(self):
        assert parse_fallbacks("ollama:llama3:8b") == [("ollama", "llama3:8b", None)]

    def test_empty_credential_ref(self):
        assert parse_fallbacks("groq:llama@") == [("groq", "llama", None)]

    @pytest.mark.parametrize("entries", ["openai", "openai:", ":gpt-4o"])
    def test_malformed(self, entries):
        with pytest.raises(ConfigurationError):
            parse_fallbacks(entries)


class TestBuildDescriptors:
    def test_primary_then_fallbacks(self):
        settings = make_test_settings(
            llm_fallbacks="groq:llama-3.1-70b@GROQ_API_KEY,ollama:llama3",
            llm_timeout_seconds=12.0,
        )
        descriptors = build_descriptors(settings)

        assert [d.name for d in descriptors] == ["openai:gpt-test", "groq:llama-3.1-70b", "ollama:llama3"]
        assert [d.priority for d in descriptors] == [0, 1, 2]
        assert all(d.timeout_seconds == 12.0 for d in descriptors)
        assert descriptors[1].credential_ref == "GROQ_API_KEY"

    def test_duplicate_provider_rejected(self):
        settings = make_test_settings(llm_fallbacks="openai:gpt-test")
        with pytest.raises(ConfigurationError, match="more than once"):
            build_descriptors(settings)


class TestCredentials:
    def test_primary_uses_settings_key(self):
        settings = make_test_settings()
        primary = build_descriptors(settings)[0]
        assert resolve_credential(primary, settings) == "test-api-key"

    def test_fallback_reads_named_env_var(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "groq-secret")
        settings = make_test_settings(llm_fallbacks="groq:llama@GROQ_API_KEY")
        assert resolve_credential(build_descriptors(settings)[1], settings) == "groq-secret"

    def test_missing_key_is_configuration_error(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        settings = make_test_settings(llm_fallbacks="groq:llama@GROQ_API_KEY")
        with pytest.raises(ConfigurationError, match="No API key"):
            create_chat_model(build_descriptors(settings)[1], settings)

    def test_ollama_needs_no_key(self):
        settings = make_test_settings(llm_fallbacks="ollama:llama3")
        model = create_chat_model(build_descriptors(settings)[1], settings)
        assert isinstance(model, ChatOpenAI)


class TestCreateChatModel:
    def test_unknown_provider_needs_base_url(self):
        settings = make_test_settings(llm_provider="acme")
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            create_chat_model(build_descriptors(settings)[0], settings)

    def test_custom_base_url(self):
        settings = make_test_settings(llm_provider="acme", llm_base_url="http://llm.internal/v1")
        model = create_chat_model(build_descriptors(settings)[0], settings)
        assert model.openai_api_base == "http://llm.internal/v1"

    def test_retries_are_left_to_the_dispatcher(self):
        settings = make_test_settings()
        model = create_chat_model(build_descriptors(settings)[0], settings)
        assert model.max_retries == 0
        assert model.openai_api_base == PROVIDER_BASE_URLS["openai"]

    def test_build_provider_clients(self):
        settings = make_test_settings(llm_fallbacks="ollama:llama3")
        clients = build_provider_clients(settings)
        assert [c.name for c in clients] == ["openai:gpt-test", "ollama:llama3"]
        assert all(isinstance(c, ChatModelProviderClient) for c in clients)
