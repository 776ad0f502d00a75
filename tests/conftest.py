"""Shared test fixtures for Rethink.

Provides settings, stub providers and a started runtime used across
unit and integration tests. Nothing here touches the network.
"""

from collections.abc import Iterator

import pytest

from rethink.metrics import MetricsCollector
from rethink.runtime import ThinkingRuntime, build_runtime
from rethink.settings import Settings
from tests.helpers.auth import make_test_settings
from tests.helpers.providers import FakeClock


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings with safe defaults."""
    return make_test_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    """A private collector so tests never share counters."""
    return MetricsCollector()


@pytest.fixture
def make_runtime(test_settings: Settings, metrics: MetricsCollector) -> Iterator:
    """Factory for started runtimes over injected provider clients."""
    started: list[ThinkingRuntime] = []

    def _make(clients, settings: Settings | None = None, **kwargs) -> ThinkingRuntime:
        runtime = build_runtime(settings or test_settings, clients, metrics=metrics, **kwargs)
        runtime.start()
        started.append(runtime)
        return runtime

    yield _make
    for runtime in started:
        runtime.stop()
