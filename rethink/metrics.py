"""Operational metrics collection.

Provides in-memory metrics for HTTP requests, provider attempts, hedging,
circuit transitions and thinking runs. Metrics are ephemeral (reset on
restart) and exposed read-only through the /metrics endpoint.
"""

import time
from collections import Counter, deque
from threading import Lock
from typing import Any

# Track application start time for uptime calculation
_start_time: float = time.time()


def _percentiles(values: list[float]) -> dict[str, float]:
    if not values:
        return {"p50_ms": 0.0, "p95_ms": 0.0, "p99_ms": 0.0, "min_ms": 0.0, "max_ms": 0.0, "avg_ms": 0.0}
    ordered = sorted(values)
    n = len(ordered)
    return {
        "p50_ms": round(ordered[n // 2], 2),
        "p95_ms": round(ordered[min(n - 1, int(n * 0.95))], 2),
        "p99_ms": round(ordered[min(n - 1, int(n * 0.99))], 2),
        "min_ms": round(ordered[0], 2),
        "max_ms": round(ordered[-1], 2),
        "avg_ms": round(sum(ordered) / n, 2),
    }


class MetricsCollector:
    """Thread-safe in-memory metrics collector.

    Tracks:
    - Request counts (by method, path, status) and latency percentiles
    - Error counts (by error type)
    - Active requests (gauge)
    - Provider attempts (by provider and outcome) and provider latency
    - Hedge requests fired and won
    - Circuit breaker transitions (by provider and target state)
    - Thinking runs (by stop reason), rounds and final quality

    Uses a sliding window (last ``window_size`` samples) for percentiles.
    """

    def __init__(self, window_size: int = 1000):
        self._lock = Lock()
        self._window_size = window_size
        self.reset()

    def record_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        """Record a completed HTTP request."""
        with self._lock:
            self._request_count += 1
            self._requests_by_status[str(status_code)] += 1
            self._requests_by_path[path] += 1
            self._requests_by_method_path[f"{method} {path}"] += 1
            self._latency_window.append(duration_ms)
            if status_code >= 400:
                self._error_count += 1

    def record_error(self, error_type: str) -> None:
        """Tally an exception by class name.

        The failed request itself is counted once, by record_request.
        """
        with self._lock:
            self._errors_by_type[error_type] += 1

    def increment_active_requests(self) -> None:
        with self._lock:
            self._active_requests += 1

    def decrement_active_requests(self) -> None:
        with self._lock:
            self._active_requests = max(0, self._active_requests - 1)

    def record_provider_attempt(self, provider: str, outcome: str, duration_ms: float) -> None:
        """Record one call to one provider."""
        with self._lock:
            self._provider_attempts[f"{provider}:{outcome}"] += 1
            self._provider_latency.setdefault(provider, deque(maxlen=self._window_size)).append(
                duration_ms
            )

    def record_hedge(self, provider: str, won: bool) -> None:
        with self._lock:
            self._hedges_fired[provider] += 1
            if won:
                self._hedges_won[provider] += 1

    def record_circuit_transition(self, provider: str, old_state: str, new_state: str) -> None:
        with self._lock:
            self._circuit_transitions[f"{provider}:{old_state}->{new_state}"] += 1

    def record_thinking_run(self, stop_reason: str, rounds: int, final_quality: float) -> None:
        with self._lock:
            self._thinking_runs[stop_reason] += 1
            self._thinking_rounds_total += rounds
            self._thinking_quality_window.append(final_quality)

    def get_metrics(self) -> dict[str, Any]:
        """Get current metrics as a dictionary."""
        with self._lock:
            runs_total = sum(self._thinking_runs.values())
            qualities = list(self._thinking_quality_window)
            return {
                "requests": {
                    "total": self._request_count,
                    "by_status": dict(self._requests_by_status),
                    "by_path": dict(self._requests_by_path.most_common(20)),
                    "by_method_path": dict(self._requests_by_method_path.most_common(20)),
                },
                "latency": _percentiles(list(self._latency_window)),
                "errors": {
                    "total": self._error_count,
                    "by_type": dict(self._errors_by_type),
                },
                "active_requests": self._active_requests,
                "providers": {
                    "attempts": dict(self._provider_attempts),
                    "latency": {
                        name: _percentiles(list(window))
                        for name, window in self._provider_latency.items()
                    },
                    "hedges_fired": dict(self._hedges_fired),
                    "hedges_won": dict(self._hedges_won),
                    "circuit_transitions": dict(self._circuit_transitions),
                },
                "thinking": {
                    "runs": runs_total,
                    "by_stop_reason": dict(self._thinking_runs),
                    "avg_rounds": round(self._thinking_rounds_total / runs_total, 2) if runs_total else 0.0,
                    "avg_final_quality": round(sum(qualities) / len(qualities), 4) if qualities else 0.0,
                },
                "uptime_seconds": round(time.time() - _start_time, 2),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._request_count = 0
            self._requests_by_status: Counter[str] = Counter()
            self._requests_by_path: Counter[str] = Counter()
            self._requests_by_method_path: Counter[str] = Counter()
            self._latency_window: deque[float] = deque(maxlen=self._window_size)
            self._error_count = 0
            self._errors_by_type: Counter[str] = Counter()
            self._active_requests = 0
            self._provider_attempts: Counter[str] = Counter()
            self._provider_latency: dict[str, deque[float]] = {}
            self._hedges_fired: Counter[str] = Counter()
            self._hedges_won: Counter[str] = Counter()
            self._circuit_transitions: Counter[str] = Counter()
            self._thinking_runs: Counter[str] = Counter()
            self._thinking_rounds_total = 0
            self._thinking_quality_window: deque[float] = deque(maxlen=self._window_size)


# Singleton instance
_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create the singleton metrics collector instance."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
