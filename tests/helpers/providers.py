"""Deterministic provider stubs and clocks for resilience tests.

ScriptedProvider replays a fixed list of replies so tests can describe
exactly what each backend does on each call, without a network.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable, Sequence

from rethink.llm.circuit_breaker import CircuitBreakerRegistry
from rethink.llm.dispatcher import Dispatcher
from rethink.llm.hedge import HedgeController
from rethink.llm.providers import CompletionRequest, ProviderClient, ProviderDescriptor, ProviderResponse
from rethink.llm.ranking import AdaptiveRanker
from rethink.llm.retry import RetryConfig, RetryPolicy
from rethink.metrics import MetricsCollector

Reply = str | BaseException | Callable[[CompletionRequest], Awaitable[str]]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def critique(score: float, text: str = "Could be more precise.") -> str:
    """A reviewer reply in the JSON shape the critique prompt asks for."""
    return json.dumps({"critique": text, "score": score})


def thinking_script(scores: Sequence[float], answers: Sequence[str] | None = None) -> list[Reply]:
    """Alternating generate/critique replies for a sequential thinking run."""
    script: list[Reply] = []
    for i, score in enumerate(scores):
        script.append(answers[i] if answers else f"answer {i + 1}")
        script.append(critique(score))
    return script


def make_descriptor(name: str, priority: int = 0, timeout_seconds: float = 30.0) -> ProviderDescriptor:
    provider, _, model = name.partition(":")
    return ProviderDescriptor(
        name=name,
        provider=provider,
        model=model or "test-model",
        priority=priority,
        timeout_seconds=timeout_seconds,
    )


class ScriptedProvider(ProviderClient):
    """Replays ``script`` one item per call.

    Each item is a reply string, an exception to raise, or an async callable
    producing the reply. Once the script is exhausted ``default`` is used;
    with no default the call fails loudly.
    """

    def __init__(
        self,
        name: str,
        script: Sequence[Reply] = (),
        *,
        priority: int = 0,
        timeout_seconds: float = 30.0,
        default: Reply | None = None,
    ):
        super().__init__(make_descriptor(name, priority, timeout_seconds))
        self.script: list[Reply] = list(script)
        self.default = default
        self.calls: list[CompletionRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, request: CompletionRequest) -> ProviderResponse:
        self.calls.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            item = self.script.pop(0) if self.script else self.default
            if item is None:
                raise RuntimeError(f"{self.name}: script exhausted")
            if isinstance(item, BaseException):
                raise item
            if callable(item):
                item = await item(request)
            return ProviderResponse(text=item, model=self.descriptor.model)
        finally:
            self.in_flight -= 1

    @property
    def call_count(self) -> int:
        return len(self.calls)


def slow(reply: str, seconds: float) -> Callable[[CompletionRequest], Awaitable[str]]:
    """A scripted reply that arrives after ``seconds`` of (real) sleeping."""

    async def _reply(request: CompletionRequest) -> str:
        await asyncio.sleep(seconds)
        return reply

    return _reply


def gated(reply: str, release: asyncio.Event) -> Callable[[CompletionRequest], Awaitable[str]]:
    """A scripted reply held back until ``release`` is set."""

    async def _reply(request: CompletionRequest) -> str:
        await release.wait()
        return reply

    return _reply


def hang() -> Callable[[CompletionRequest], Awaitable[str]]:
    """A scripted reply that never arrives."""

    async def _reply(request: CompletionRequest) -> str:
        await asyncio.Event().wait()
        return ""

    return _reply


class PurposeProvider(ProviderClient):
    """Answers by request purpose: ``generate`` and ``critique`` callables."""

    def __init__(
        self,
        name: str,
        generate: Callable[[CompletionRequest], str],
        review: Callable[[CompletionRequest], str],
        *,
        priority: int = 0,
    ):
        super().__init__(make_descriptor(name, priority))
        self._generate = generate
        self._review = review
        self.calls: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> ProviderResponse:
        self.calls.append(request)
        await asyncio.sleep(0)
        handler = self._review if request.purpose == "critique" else self._generate
        return ProviderResponse(text=handler(request), model=self.descriptor.model)


def last_user_content(request: CompletionRequest) -> str:
    return next(m["content"] for m in reversed(request.messages) if m["role"] == "user")


async def no_sleep(_: float) -> None:
    """Drop-in for asyncio.sleep that returns at once."""


class RecordingSleep:
    """Drop-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_dispatcher(
    clients: Sequence[ProviderClient],
    *,
    threshold: int = 5,
    max_attempts: int = 3,
    hedge_delay: float | None = None,
    ranker: AdaptiveRanker | None = None,
    metrics: MetricsCollector | None = None,
    time_func: Callable[[], float] | None = None,
) -> Dispatcher:
    """Dispatcher over stub clients with instant retry backoff."""
    breakers = CircuitBreakerRegistry(
        failure_threshold=threshold, cooldown_seconds=30, time_func=time_func
    )
    return Dispatcher(
        clients,
        breakers,
        RetryPolicy(RetryConfig(max_attempts=max_attempts), sleep=no_sleep),
        HedgeController(breakers),
        hedge_delay=hedge_delay,
        ranker=ranker,
        metrics=metrics,
    )
