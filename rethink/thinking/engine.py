"""Recursive thinking engine.

Repeatedly generates a candidate answer, has it critiqued and scored, and
feeds the critique into the next round until the quality target, the time
budget or the round cap is reached. All provider traffic goes through the
Dispatcher, so circuit-breaker accounting is shared across rounds, branches
and concurrent requests.

Round state machine:
    ROUND_START -> GENERATE -> CRITIQUE -> SCORE -> CONTINUE | STOP

Stop conditions, checked after each checkpoint in this order:
    1. quality >= target_quality
    2. elapsed >= max_thinking_time
    3. round index reached the round cap
    4. no providers available (all circuits open)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from rethink.exceptions import (
    CircuitOpenError,
    LLMError,
    ThinkingTimeoutError,
    ValidationError,
)
from rethink.llm.dispatcher import Dispatcher
from rethink.llm.providers import CompletionRequest
from rethink.metrics import MetricsCollector
from rethink.thinking.compression import compress_context, truncate_middle
from rethink.thinking.prompts import load_prompt
from rethink.thinking.scoring import parse_critique

logger = logging.getLogger(__name__)


class StopReason(StrEnum):
    QUALITY_TARGET = "quality_target_reached"
    TIME_BUDGET = "time_budget_exhausted"
    SAFETY_CAP = "safety_cap_reached"
    NO_PROVIDERS = "no_providers_available"
    PROVIDER_ERROR = "provider_error"


@dataclass(frozen=True)
class ThinkingRound:
    """One generate/critique/score pass."""

    index: int
    response: str
    critique: str
    quality: float
    elapsed_seconds: float
    branch: int = 0
    provider: str | None = None


@dataclass
class ThinkingResult:
    """Outcome of one think() call.

    ``final_quality`` is the best round's quality and ``response`` the best
    round's text; ``improvement`` is final_quality minus the first round's
    quality, reported as-is.
    """

    response: str
    rounds: list[ThinkingRound]
    final_quality: float
    first_quality: float
    improvement: float
    total_time_seconds: float
    stop_reason: StopReason
    target_quality: float

    @property
    def best_round(self) -> ThinkingRound:
        return max(self.rounds, key=lambda r: (r.quality, -r.index))

    @property
    def satisfied(self) -> bool:
        """Whether the quality target was met (a safety-cap stop is not)."""
        return self.final_quality >= self.target_quality


@dataclass(frozen=True)
class ThinkingConfig:
    """Defaults for think(); per-call arguments override them."""

    max_thinking_time: float = 60.0
    target_quality: float = 0.9
    max_rounds: int = 8
    hard_max_rounds: int = 20
    temperature: float = 0.7
    critique_temperature: float = 0.0
    parallel_thinking: bool = False
    parallel_branches: int = 2
    branch_temperature_step: float = 0.15
    compress_prompts: bool = False
    compression_budget_chars: int = 12_000


RoundCallback = Callable[[ThinkingRound], Awaitable[None]]


@dataclass
class _LoopState:
    rounds: list[ThinkingRound] = field(default_factory=list)
    best: ThinkingRound | None = None
    previous: ThinkingRound | None = None
    next_index: int = 1


class RecursiveThinkingEngine:
    """Iterative refinement loop over a Dispatcher."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        config: ThinkingConfig | None = None,
        *,
        metrics: MetricsCollector | None = None,
        time_func: Callable[[], float] | None = None,
    ):
        self.dispatcher = dispatcher
        self.config = config or ThinkingConfig()
        self.metrics = metrics
        self._time_func = time_func or time.monotonic

    async def think(
        self,
        prompt: str,
        context: Sequence[dict[str, str]] | None = None,
        max_thinking_time: float | None = None,
        target_quality: float | None = None,
        *,
        max_rounds: int | None = None,
        temperature: float | None = None,
        on_round: RoundCallback | None = None,
    ) -> ThinkingResult:
        """Think about a prompt until good enough, out of time, or capped.

        Args:
            prompt: The user's question
            context: Prior conversation as role/content dicts
            max_thinking_time: Time budget in seconds (default from config)
            target_quality: Stop once a round scores at least this (0.0-1.0)
            max_rounds: Per-call round cap, bounded by the hard cap
            temperature: Generation temperature override
            on_round: Awaited with every completed round, in index order

        Returns:
            ThinkingResult built from the best round seen

        Raises:
            ValidationError: Invalid arguments
            CircuitOpenError: No provider was available before any round completed
            ThinkingTimeoutError: The budget elapsed before any round completed
            LLMError: A provider failure before any round completed
        """
        cfg = self.config
        if not prompt or not prompt.strip():
            raise ValidationError("prompt must not be empty")
        budget = cfg.max_thinking_time if max_thinking_time is None else max_thinking_time
        if budget <= 0:
            raise ValidationError("max_thinking_time must be positive")
        target = cfg.target_quality if target_quality is None else target_quality
        if not 0.0 <= target <= 1.0:
            raise ValidationError("target_quality must be between 0.0 and 1.0")
        cap = min(max_rounds if max_rounds is not None else cfg.max_rounds, cfg.hard_max_rounds)
        if cap < 1:
            raise ValidationError("thinking_rounds must be at least 1")

        context_messages = list(context or [])
        if cfg.compress_prompts:
            context_messages = compress_context(context_messages, cfg.compression_budget_chars)

        started = self._time_func()
        deadline = started + budget
        state = _LoopState()
        stop_reason: StopReason | None = None
        stop_error: LLMError | None = None

        while stop_reason is None:
            remaining = deadline - self._time_func()
            if remaining <= 0:
                stop_reason = StopReason.TIME_BUDGET
                break

            branch_count = 1
            if cfg.parallel_thinking:
                branch_count = max(1, min(cfg.parallel_branches, cap - state.next_index + 1))
            indices = list(range(state.next_index, state.next_index + branch_count))
            state.next_index += branch_count

            try:
                checkpoint = await asyncio.wait_for(
                    self._run_checkpoint(prompt, context_messages, state.previous, indices, temperature),
                    timeout=remaining,
                )
            except TimeoutError:
                logger.info("Thinking budget of %.1fs elapsed during round %d", budget, indices[0])
                stop_reason = StopReason.TIME_BUDGET
                break
            except CircuitOpenError as e:
                logger.warning("Stopping thinking at round %d: %s", indices[0], e)
                stop_reason = StopReason.NO_PROVIDERS
                stop_error = e
                break
            except LLMError as e:
                if state.best is None:
                    raise
                logger.warning("Stopping thinking at round %d after provider failure: %s", indices[0], e)
                stop_reason = StopReason.PROVIDER_ERROR
                break

            for thinking_round in checkpoint:
                state.rounds.append(thinking_round)
                if on_round is not None:
                    await on_round(thinking_round)

            leader = max(checkpoint, key=lambda r: (r.quality, -r.index))
            if state.best is None or leader.quality > state.best.quality:
                state.best = leader
            state.previous = leader
            logger.info(
                "Round %d scored %.2f (best %.2f, target %.2f)",
                leader.index,
                leader.quality,
                state.best.quality,
                target,
            )

            if leader.quality >= target:
                stop_reason = StopReason.QUALITY_TARGET
            elif self._time_func() - started >= budget:
                stop_reason = StopReason.TIME_BUDGET
            elif state.next_index > cap:
                # Highest index issued, not highest completed: failed branches still count
                stop_reason = StopReason.SAFETY_CAP

        total_time = self._time_func() - started
        if state.best is None:
            if stop_error is not None:
                raise stop_error
            raise ThinkingTimeoutError(
                f"No thinking round completed within {budget:.1f}s", budget_seconds=budget
            )

        first_quality = state.rounds[0].quality
        result = ThinkingResult(
            response=state.best.response,
            rounds=state.rounds,
            final_quality=state.best.quality,
            first_quality=first_quality,
            improvement=state.best.quality - first_quality,
            total_time_seconds=total_time,
            stop_reason=stop_reason,
            target_quality=target,
        )
        if self.metrics is not None:
            self.metrics.record_thinking_run(stop_reason.value, len(state.rounds), result.final_quality)
        logger.info(
            "Thinking finished after %d round(s) in %.2fs: %s (quality %.2f, improvement %+.2f)",
            len(state.rounds),
            total_time,
            stop_reason.value,
            result.final_quality,
            result.improvement,
        )
        return result

    async def _run_checkpoint(
        self,
        prompt: str,
        context: list[dict[str, str]],
        previous: ThinkingRound | None,
        indices: list[int],
        temperature: float | None,
    ) -> list[ThinkingRound]:
        """Run one round, or independent branches concurrently, reconciled by index."""
        if len(indices) == 1:
            return [await self._run_round(prompt, context, previous, indices[0], 0, temperature)]

        results = await asyncio.gather(
            *(
                self._run_round(prompt, context, previous, index, branch, temperature)
                for branch, index in enumerate(indices)
            ),
            return_exceptions=True,
        )
        completed: list[ThinkingRound] = []
        errors: list[BaseException] = []
        for index, outcome in zip(indices, results):
            if isinstance(outcome, ThinkingRound):
                completed.append(outcome)
            elif isinstance(outcome, LLMError):
                logger.warning("Thinking branch for round %d failed: %s", index, outcome)
                errors.append(outcome)
            else:
                raise outcome
        if not completed:
            raise next((e for e in errors if isinstance(e, CircuitOpenError)), errors[0])
        return sorted(completed, key=lambda r: r.index)

    async def _run_round(
        self,
        prompt: str,
        context: list[dict[str, str]],
        previous: ThinkingRound | None,
        index: int,
        branch: int,
        temperature: float | None,
    ) -> ThinkingRound:
        round_started = self._time_func()

        generation = await self.dispatcher.complete(
            CompletionRequest(
                messages=self._generation_messages(prompt, context, previous),
                temperature=self._branch_temperature(temperature, branch),
                purpose="generate",
            )
        )
        response = generation.text.strip()

        review = await self.dispatcher.complete(
            CompletionRequest(
                messages=self._critique_messages(prompt, response),
                temperature=self.config.critique_temperature,
                purpose="critique",
            )
        )
        critique, quality = parse_critique(review.text)

        return ThinkingRound(
            index=index,
            response=response,
            critique=critique,
            quality=quality,
            elapsed_seconds=self._time_func() - round_started,
            branch=branch,
            provider=generation.provider,
        )

    def _branch_temperature(self, temperature: float | None, branch: int) -> float:
        base = self.config.temperature if temperature is None else temperature
        return min(2.0, base + branch * self.config.branch_temperature_step)

    def _generation_messages(
        self,
        prompt: str,
        context: list[dict[str, str]],
        previous: ThinkingRound | None,
    ) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": load_prompt("generate_system")}, *context]
        if previous is None:
            messages.append({"role": "user", "content": prompt})
            return messages

        previous_response, critique = previous.response, previous.critique
        if self.config.compress_prompts:
            limit = self.config.compression_budget_chars // 3
            previous_response = truncate_middle(previous_response, limit)
            critique = truncate_middle(critique, limit)
        messages.append(
            {
                "role": "user",
                "content": load_prompt(
                    "refine_user",
                    prompt=prompt,
                    previous_response=previous_response,
                    critique=critique or "No specific problems were identified.",
                ),
            }
        )
        return messages

    def _critique_messages(self, prompt: str, response: str) -> list[dict[str, str]]:
        if self.config.compress_prompts:
            response = truncate_middle(response, self.config.compression_budget_chars // 2)
        return [
            {"role": "system", "content": load_prompt("critique_system")},
            {"role": "user", "content": load_prompt("critique_user", prompt=prompt, response=response)},
        ]


def result_to_dict(result: ThinkingResult) -> dict[str, Any]:
    """Plain-dict view of a result, for logging and the CLI."""
    return {
        "response": result.response,
        "final_quality": result.final_quality,
        "improvement": result.improvement,
        "stop_reason": result.stop_reason.value,
        "total_time_seconds": result.total_time_seconds,
        "rounds": [
            {
                "index": r.index,
                "branch": r.branch,
                "quality": r.quality,
                "critique": r.critique,
                "elapsed_seconds": r.elapsed_seconds,
            }
            for r in result.rounds
        ],
    }
