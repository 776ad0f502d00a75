"""Resilient multi-provider dispatcher.

Composes the per-provider circuit breakers, the retry policy and the hedge
controller over a ranked provider snapshot into one "get a completion"
operation.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import Any

from rethink.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    DispatchError,
    ProviderError,
)
from rethink.llm.circuit_breaker import CircuitBreakerRegistry
from rethink.llm.hedge import HedgeCandidate, HedgeController
from rethink.llm.providers import (
    CompletionRequest,
    ProviderClient,
    ProviderDescriptor,
    ProviderResponse,
    classify_provider_error,
)
from rethink.llm.ranking import AdaptiveRanker
from rethink.llm.retry import RetryPolicy
from rethink.metrics import MetricsCollector

logger = logging.getLogger(__name__)


class AttemptOutcome(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RequestAttempt:
    """One call to one provider within a logical request."""

    provider: str
    attempt_index: int
    started_at: float
    ended_at: float
    outcome: AttemptOutcome
    error: str | None = None
    hedge: bool = False

    @property
    def duration_ms(self) -> float:
        return (self.ended_at - self.started_at) * 1000


@dataclass
class CompletionResult:
    """The single externally visible result of Dispatcher.complete."""

    text: str
    provider: str
    model: str
    attempts: list[RequestAttempt]
    latency_ms: float
    hedged: bool = False
    usage: dict[str, int] = field(default_factory=dict)


@dataclass
class _Reply:
    descriptor: ProviderDescriptor
    response: ProviderResponse


class _AttemptLog:
    """Append-only attempt log; indices follow submission order."""

    def __init__(self) -> None:
        self.entries: list[RequestAttempt] = []
        self._next_index = 0

    def next_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index


class Dispatcher:
    """Routes a completion request across ranked providers.

    For each request: skip providers whose circuit refuses, run the first
    eligible one under the retry policy, race it against one delayed hedge
    on the next eligible provider, and fail over down the ranking when both
    fail.
    """

    def __init__(
        self,
        clients: Sequence[ProviderClient],
        breakers: CircuitBreakerRegistry,
        retry: RetryPolicy,
        hedger: HedgeController,
        *,
        hedge_delay: float | None = 2.0,
        ranker: AdaptiveRanker | None = None,
        metrics: MetricsCollector | None = None,
        time_func: Callable[[], float] | None = None,
    ):
        self._clients: dict[str, ProviderClient] = {}
        for client in clients:
            if client.name in self._clients:
                raise ConfigurationError(f"Duplicate provider name: {client.name}")
            self._clients[client.name] = client
        self._base_snapshot: tuple[ProviderDescriptor, ...] = tuple(
            sorted((c.descriptor for c in clients), key=lambda d: d.priority)
        )
        self.breakers = breakers
        self.retry = retry
        self.hedger = hedger
        self.hedge_delay = hedge_delay
        self.ranker = ranker
        self.metrics = metrics
        self._time_func = time_func or time.monotonic

    @property
    def providers(self) -> tuple[ProviderDescriptor, ...]:
        """Registered providers in configured priority order."""
        return self._base_snapshot

    def snapshot(self) -> tuple[ProviderDescriptor, ...]:
        """Ranked provider snapshot for one request (re-ranked when adaptive)."""
        if self.ranker is not None:
            return self.ranker.rerank(self._base_snapshot)
        return self._base_snapshot

    def any_available(self) -> bool:
        """Whether at least one provider circuit would admit a call."""
        return any(self.breakers.get(d.name).is_available() for d in self._base_snapshot)

    def provider_status(self) -> list[dict[str, Any]]:
        """Read-only per-provider status for probes and the status endpoint."""
        status = []
        for descriptor in self.snapshot():
            snap = self.breakers.get(descriptor.name).snapshot()
            status.append(
                {
                    "name": descriptor.name,
                    "model": descriptor.model,
                    "priority": descriptor.priority,
                    "circuit_state": snap.state.value,
                    "failure_count": snap.failure_count,
                    "cooldown_seconds": snap.cooldown_seconds,
                    "degraded": self.ranker.is_degraded(descriptor.name) if self.ranker else False,
                }
            )
        return status

    async def complete(
        self,
        request: CompletionRequest,
        providers: Sequence[ProviderDescriptor] | None = None,
    ) -> CompletionResult:
        """Get one completion, resiliently.

        Args:
            request: The completion request
            providers: Optional ranked snapshot overriding the dispatcher's own

        Returns:
            CompletionResult from the first provider that succeeded

        Raises:
            CircuitOpenError: No provider was eligible (not retried here)
            DispatchError: Every contacted provider failed
        """
        snapshot = tuple(providers) if providers is not None else self.snapshot()
        log = _AttemptLog()
        started = self._time_func()
        contacted: set[str] = set()
        # Latest admission epoch per provider for this request
        tickets: dict[str, int] = {}
        last_error: ProviderError | None = None

        while (primary := self._next_eligible(snapshot, contacted, tickets)) is not None:
            contacted.add(primary.name)
            candidates = [
                HedgeCandidate(
                    d.name,
                    partial(self._start_hedge, d, request, log, contacted, tickets),
                    admit=partial(self._admit, d.name, tickets),
                )
                for d in snapshot
                if d.name not in contacted and d.name in self._clients
            ]
            try:
                outcome = await self.hedger.race_complete(
                    partial(self._call_with_retry, primary, request, log, tickets),
                    candidates,
                    self.hedge_delay,
                )
            except ProviderError as e:
                last_error = e
                if e.kind == "invalid_request":
                    break
                logger.warning(
                    "Provider %s gave up on %s request after %d attempt(s): %s",
                    e.provider or primary.name,
                    request.purpose,
                    e.attempts,
                    e,
                )
                continue

            reply: _Reply = outcome.result
            if outcome.hedged and self.metrics is not None:
                self.metrics.record_hedge(outcome.provider or reply.descriptor.name, outcome.hedge_won)
            return CompletionResult(
                text=reply.response.text,
                provider=reply.descriptor.name,
                model=reply.response.model,
                attempts=list(log.entries),
                latency_ms=(self._time_func() - started) * 1000,
                hedged=outcome.hedged,
                usage=reply.response.usage,
            )

        if last_error is None:
            logger.warning("No providers available for %s request: all circuits open", request.purpose)
            raise CircuitOpenError("No providers available", attempt_log=list(log.entries))

        if last_error.kind != "invalid_request" and not any(
            self.breakers.get(d.name).is_available() for d in snapshot
        ):
            raise CircuitOpenError(
                f"No providers available: all circuits open (last error from {last_error.provider}: {last_error})",
                last_error=last_error,
                attempt_log=list(log.entries),
                provider=last_error.provider,
            ) from last_error

        raise DispatchError(
            f"All providers failed; last tried {last_error.provider}: {last_error}",
            last_error=last_error,
            attempt_log=list(log.entries),
            provider=last_error.provider,
            kind=last_error.kind,
            status_code=last_error.status_code,
        ) from last_error

    def _admit(self, name: str, tickets: dict[str, int]) -> bool:
        epoch = self.breakers.admit(name)
        if epoch is None:
            return False
        tickets[name] = epoch
        return True

    def _next_eligible(
        self,
        snapshot: Sequence[ProviderDescriptor],
        contacted: set[str],
        tickets: dict[str, int],
    ) -> ProviderDescriptor | None:
        for descriptor in snapshot:
            if descriptor.name in contacted:
                continue
            if descriptor.name not in self._clients:
                logger.warning("No client registered for provider %s, skipping", descriptor.name)
                continue
            if self._admit(descriptor.name, tickets):
                return descriptor
            logger.debug("Circuit open for %s, skipping", descriptor.name)
        return None

    async def _call_with_retry(
        self,
        descriptor: ProviderDescriptor,
        request: CompletionRequest,
        log: _AttemptLog,
        tickets: dict[str, int],
    ) -> _Reply:
        return await self.retry.execute(
            lambda attempt: self._call(descriptor, request, log, tickets[descriptor.name]),
            should_continue=partial(self._admit, descriptor.name, tickets),
            label=descriptor.name,
        )

    async def _start_hedge(
        self,
        descriptor: ProviderDescriptor,
        request: CompletionRequest,
        log: _AttemptLog,
        contacted: set[str],
        tickets: dict[str, int],
    ) -> _Reply:
        contacted.add(descriptor.name)
        return await self._call(descriptor, request, log, tickets[descriptor.name], hedge=True)

    async def _call(
        self,
        descriptor: ProviderDescriptor,
        request: CompletionRequest,
        log: _AttemptLog,
        epoch: int,
        *,
        hedge: bool = False,
    ) -> _Reply:
        """One provider call, recorded on the breaker under its admission epoch."""
        client = self._clients[descriptor.name]
        breaker = self.breakers.get(descriptor.name)
        index = log.next_index()
        started = self._time_func()
        try:
            response = await asyncio.wait_for(
                client.complete(request), timeout=descriptor.timeout_seconds
            )
        except asyncio.CancelledError:
            breaker.release(epoch)
            self._finish(log, descriptor, index, started, AttemptOutcome.CANCELLED, None, hedge)
            raise
        except Exception as e:
            error = classify_provider_error(e, descriptor.name)
            if error.provider is None:
                error.provider = descriptor.name
            if error.counts_against_circuit:
                breaker.record(False, epoch)
            else:
                breaker.release(epoch)
            outcome = AttemptOutcome.TIMEOUT if error.kind == "timeout" else AttemptOutcome.ERROR
            self._finish(log, descriptor, index, started, outcome, str(error), hedge)
            logger.warning(
                "Provider %s attempt %d failed (%s): %s",
                descriptor.name,
                index,
                error.kind,
                error,
            )
            if error is e:
                raise
            raise error from e

        breaker.record(True, epoch)
        self._finish(log, descriptor, index, started, AttemptOutcome.SUCCESS, None, hedge)
        return _Reply(descriptor, response)

    def _finish(
        self,
        log: _AttemptLog,
        descriptor: ProviderDescriptor,
        index: int,
        started: float,
        outcome: AttemptOutcome,
        error: str | None,
        hedge: bool,
    ) -> None:
        ended = self._time_func()
        attempt = RequestAttempt(
            provider=descriptor.name,
            attempt_index=index,
            started_at=started,
            ended_at=ended,
            outcome=outcome,
            error=error,
            hedge=hedge,
        )
        log.entries.append(attempt)
        if self.metrics is not None:
            self.metrics.record_provider_attempt(descriptor.name, outcome.value, attempt.duration_ms)
        if self.ranker is not None and outcome != AttemptOutcome.CANCELLED:
            self.ranker.observe(descriptor.name, outcome == AttemptOutcome.SUCCESS, ended - started)
