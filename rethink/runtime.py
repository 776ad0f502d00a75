"""Process runtime: owns the keystore, breakers, dispatcher and engine.

A single ThinkingRuntime is built per process (by the app factory or the
CLI) and passed by reference; nothing here is ambient global state.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import timedelta

from rethink.auth.keys import APIKeyManager
from rethink.llm.circuit_breaker import CircuitBreakerRegistry, CircuitState
from rethink.llm.dispatcher import Dispatcher
from rethink.llm.factory import build_provider_clients
from rethink.llm.hedge import HedgeController
from rethink.llm.providers import ProviderClient
from rethink.llm.ranking import AdaptiveRanker
from rethink.llm.retry import RetryConfig, RetryPolicy
from rethink.metrics import MetricsCollector, get_metrics_collector
from rethink.settings import Settings, get_settings
from rethink.thinking.engine import RecursiveThinkingEngine, ThinkingConfig

logger = logging.getLogger(__name__)


@dataclass
class ThinkingRuntime:
    """Everything one process needs to serve think() requests."""

    settings: Settings
    keys: APIKeyManager
    breakers: CircuitBreakerRegistry
    dispatcher: Dispatcher
    engine: RecursiveThinkingEngine
    metrics: MetricsCollector
    started: bool = False

    def start(self) -> None:
        """Open the keystore and register the configured bootstrap key."""
        if self.started:
            return
        self.keys.open()
        bootstrap = self.settings.api_key.get_secret_value()
        if bootstrap:
            self.keys.register("bootstrap", bootstrap, self.settings.bootstrap_scopes())
        self.started = True
        logger.info(
            "Runtime started with providers: %s",
            ", ".join(d.name for d in self.dispatcher.providers),
        )

    def stop(self) -> None:
        """Zeroize key material and drop all keys."""
        self.keys.close()
        self.started = False
        logger.info("Runtime stopped")


def thinking_config_from_settings(settings: Settings) -> ThinkingConfig:
    return ThinkingConfig(
        max_thinking_time=settings.thinking_max_time_seconds,
        target_quality=settings.thinking_target_quality,
        max_rounds=settings.thinking_max_rounds,
        hard_max_rounds=settings.thinking_hard_max_rounds,
        temperature=settings.llm_temperature,
        parallel_thinking=settings.enable_parallel_thinking,
        parallel_branches=settings.thinking_parallel_branches,
        compress_prompts=settings.enable_prompt_compression,
        compression_budget_chars=settings.thinking_compression_budget_chars,
    )


def build_runtime(
    settings: Settings | None = None,
    clients: Sequence[ProviderClient] | None = None,
    *,
    metrics: MetricsCollector | None = None,
    time_func: Callable[[], float] | None = None,
) -> ThinkingRuntime:
    """Wire a runtime from settings.

    Args:
        settings: Settings override (uses get_settings() if not provided)
        clients: Provider clients to use instead of building them from settings
        metrics: Metrics collector (defaults to the process singleton)
        time_func: Monotonic clock shared by breakers, dispatcher and engine

    Returns:
        An unstarted ThinkingRuntime
    """
    settings = settings or get_settings()
    metrics = metrics or get_metrics_collector()
    provider_clients = list(clients) if clients is not None else build_provider_clients(settings)

    breakers = CircuitBreakerRegistry(
        failure_threshold=settings.circuit_failure_threshold,
        window_seconds=settings.circuit_window_seconds,
        cooldown_seconds=settings.circuit_cooldown_seconds,
        max_cooldown_seconds=settings.circuit_max_cooldown_seconds,
        time_func=time_func,
    )

    def _on_transition(provider: str, old: CircuitState, new: CircuitState) -> None:
        metrics.record_circuit_transition(provider, old.value, new.value)

    breakers.add_listener(_on_transition)

    dispatcher = Dispatcher(
        provider_clients,
        breakers,
        RetryPolicy(
            RetryConfig(
                max_attempts=settings.retry_max_attempts,
                base_delay=settings.retry_base_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
                jitter=settings.retry_jitter,
            )
        ),
        HedgeController(breakers, cancel_losers=settings.hedge_cancel_losers),
        hedge_delay=settings.hedge_delay_seconds if settings.hedge_enabled else None,
        ranker=AdaptiveRanker() if settings.enable_adaptive_optimization else None,
        metrics=metrics,
        time_func=time_func,
    )
    engine = RecursiveThinkingEngine(
        dispatcher,
        thinking_config_from_settings(settings),
        metrics=metrics,
        time_func=time_func,
    )
    keys = APIKeyManager(
        settings.api_key_pepper.get_secret_value() or None,
        default_ttl=timedelta(days=settings.api_key_ttl_days) if settings.api_key_ttl_days else None,
    )
    return ThinkingRuntime(
        settings=settings,
        keys=keys,
        breakers=breakers,
        dispatcher=dispatcher,
        engine=engine,
        metrics=metrics,
    )
