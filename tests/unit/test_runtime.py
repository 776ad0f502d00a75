"""Unit tests for runtime wiring."""

import pytest

from rethink.auth.keys import SCOPE_ADMIN, SCOPE_CHAT
from rethink.llm.ranking import AdaptiveRanker
from rethink.runtime import build_runtime, thinking_config_from_settings
from tests.helpers.auth import BOOTSTRAP_KEY, make_test_settings
from tests.helpers.providers import ScriptedProvider, thinking_script


class TestBuildRuntime:
    def test_wires_injected_clients(self, test_settings, metrics):
        runtime = build_runtime(test_settings, [ScriptedProvider("openai:a")], metrics=metrics)

        assert [d.name for d in runtime.dispatcher.providers] == ["openai:a"]
        assert runtime.engine.dispatcher is runtime.dispatcher
        assert runtime.dispatcher.breakers is runtime.breakers
        assert runtime.metrics is metrics
        assert not runtime.started

    def test_builds_clients_from_settings(self, metrics):
        settings = make_test_settings(llm_fallbacks="ollama:llama3")
        runtime = build_runtime(settings, metrics=metrics)
        assert [d.name for d in runtime.dispatcher.providers] == ["openai:gpt-test", "ollama:llama3"]

    def test_feature_flags(self, metrics):
        settings = make_test_settings(
            hedge_enabled=True,
            hedge_delay_seconds=1.5,
            enable_adaptive_optimization=True,
        )
        runtime = build_runtime(settings, [ScriptedProvider("openai:a")], metrics=metrics)
        assert runtime.dispatcher.hedge_delay == 1.5
        assert isinstance(runtime.dispatcher.ranker, AdaptiveRanker)

    def test_hedging_disabled(self, test_settings, metrics):
        runtime = build_runtime(test_settings, [ScriptedProvider("openai:a")], metrics=metrics)
        assert runtime.dispatcher.hedge_delay is None
        assert runtime.dispatcher.ranker is None

    def test_circuit_transitions_reach_metrics(self, metrics):
        settings = make_test_settings(circuit_failure_threshold=1)
        runtime = build_runtime(settings, [ScriptedProvider("openai:a")], metrics=metrics)
        runtime.breakers.record("openai:a", False)

        assert metrics.get_metrics()["providers"]["circuit_transitions"] == {"openai:a:closed->open": 1}


class TestLifecycle:
    def test_start_registers_bootstrap_key(self, test_settings, metrics):
        runtime = build_runtime(test_settings, [ScriptedProvider("openai:a")], metrics=metrics)
        runtime.start()
        try:
            record = runtime.keys.validate(BOOTSTRAP_KEY)
            assert record.scopes == frozenset({SCOPE_CHAT, SCOPE_ADMIN})
        finally:
            runtime.stop()

    def test_start_is_idempotent(self, make_runtime):
        runtime = make_runtime([ScriptedProvider("openai:a")])
        runtime.start()
        assert len(runtime.keys.list_keys()) == 1

    def test_stop_closes_keystore(self, test_settings, metrics):
        runtime = build_runtime(test_settings, [ScriptedProvider("openai:a")], metrics=metrics)
        runtime.start()
        runtime.stop()
        assert not runtime.keys.is_open
        assert not runtime.started

    def test_no_bootstrap_key(self, metrics):
        from pydantic import SecretStr

        settings = make_test_settings(api_key=SecretStr(""))
        runtime = build_runtime(settings, [ScriptedProvider("openai:a")], metrics=metrics)
        runtime.start()
        assert runtime.keys.list_keys() == []
        runtime.stop()

    @pytest.mark.asyncio
    async def test_engine_runs_through_runtime(self, make_runtime):
        runtime = make_runtime([ScriptedProvider("openai:a", thinking_script([0.95]))])
        result = await runtime.engine.think("Explain recursion")
        assert result.final_quality == 0.95


def test_thinking_config_from_settings():
    settings = make_test_settings(
        thinking_max_time_seconds=30.0,
        thinking_target_quality=0.8,
        thinking_max_rounds=5,
        thinking_hard_max_rounds=10,
        enable_parallel_thinking=True,
        thinking_parallel_branches=3,
        enable_prompt_compression=True,
    )
    config = thinking_config_from_settings(settings)

    assert config.max_thinking_time == 30.0
    assert config.target_quality == 0.8
    assert config.max_rounds == 5
    assert config.hard_max_rounds == 10
    assert config.parallel_thinking
    assert config.parallel_branches == 3
    assert config.compress_prompts
