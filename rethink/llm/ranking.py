"""Adaptive provider re-ranking.

Tracks an exponentially weighted error rate and latency per provider and
produces a new ranked snapshot that demotes unhealthy providers. The input
snapshot is never mutated.
"""

import threading
from collections.abc import Sequence
from dataclasses import dataclass

from rethink.llm.providers import ProviderDescriptor


@dataclass
class ProviderHealth:
    """Smoothed observations for one provider."""

    error_rate: float = 0.0
    latency_seconds: float = 0.0
    samples: int = 0


class AdaptiveRanker:
    """Demotes providers whose smoothed error rate crosses a threshold."""

    def __init__(self, alpha: float = 0.3, demote_threshold: float = 0.5, min_samples: int = 3):
        self.alpha = alpha
        self.demote_threshold = demote_threshold
        self.min_samples = min_samples
        self._health: dict[str, ProviderHealth] = {}
        self._lock = threading.Lock()

    def observe(self, provider: str, success: bool, latency_seconds: float) -> None:
        with self._lock:
            health = self._health.setdefault(provider, ProviderHealth())
            if health.samples == 0:
                health.error_rate = 0.0 if success else 1.0
                health.latency_seconds = latency_seconds
            else:
                health.error_rate += self.alpha * ((0.0 if success else 1.0) - health.error_rate)
                health.latency_seconds += self.alpha * (latency_seconds - health.latency_seconds)
            health.samples += 1

    def health(self, provider: str) -> ProviderHealth:
        with self._lock:
            current = self._health.get(provider)
            return ProviderHealth(**vars(current)) if current else ProviderHealth()

    def is_degraded(self, provider: str) -> bool:
        health = self.health(provider)
        return health.samples >= self.min_samples and health.error_rate >= self.demote_threshold

    def rerank(self, snapshot: Sequence[ProviderDescriptor]) -> tuple[ProviderDescriptor, ...]:
        """Return a new ranking: healthy providers first, priority order preserved within each group."""
        return tuple(sorted(snapshot, key=lambda d: (self.is_degraded(d.name), d.priority)))
