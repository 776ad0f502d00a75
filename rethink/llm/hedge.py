"""Hedged requests: bound tail latency with one redundant call.

If the primary request is still running after ``hedge_delay`` seconds, a
single duplicate request goes to the next eligible provider and whichever
succeeds first wins.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from rethink.llm.circuit_breaker import CircuitBreakerRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class HedgeCandidate(Generic[T]):
    """A provider that may receive the hedge request.

    ``start`` is only invoked once the candidate's breaker has admitted the
    call, through ``admit`` when given or the registry otherwise.
    """

    name: str
    start: Callable[[], Awaitable[T]]
    admit: Callable[[], bool] | None = None


@dataclass(frozen=True)
class HedgeOutcome(Generic[T]):
    """Winning result of a race."""

    result: T
    provider: str | None
    hedged: bool
    hedge_won: bool


class HedgeController:
    """Races a primary call against at most one delayed hedge call."""

    def __init__(self, breakers: CircuitBreakerRegistry, *, cancel_losers: bool = True):
        self.breakers = breakers
        self.cancel_losers = cancel_losers
        # Strong references to discarded losers so they are not garbage collected mid-flight
        self._background: set[asyncio.Task] = set()

    async def race_complete(
        self,
        primary: Callable[[], Awaitable[T]],
        fallback_candidates: Sequence[HedgeCandidate[T]],
        hedge_delay: float | None,
    ) -> HedgeOutcome[T]:
        """Run primary, hedging onto the first admitted candidate if it is slow.

        Args:
            primary: Factory for the primary call
            fallback_candidates: Ranked hedge targets; the breaker is
                consulted only when the hedge timer fires
            hedge_delay: Seconds to wait before hedging (None disables hedging)

        Returns:
            HedgeOutcome wrapping the first successful result

        Raises:
            Exception: The primary's error when every issued call failed
        """
        primary_task = asyncio.ensure_future(primary())
        if hedge_delay is None or not fallback_candidates:
            try:
                return HedgeOutcome(await primary_task, provider=None, hedged=False, hedge_won=False)
            finally:
                if not primary_task.done():
                    primary_task.cancel()

        hedge_task: asyncio.Task | None = None
        hedge_name: str | None = None
        cancelled = False
        try:
            done, _ = await asyncio.wait({primary_task}, timeout=hedge_delay)
            if done:
                return HedgeOutcome(primary_task.result(), provider=None, hedged=False, hedge_won=False)

            candidate = self._select_candidate(fallback_candidates)
            if candidate is None:
                logger.debug("Hedge timer fired but no candidate was admitted")
                return HedgeOutcome(await primary_task, provider=None, hedged=False, hedge_won=False)

            hedge_name = candidate.name
            logger.info("Primary slower than %.2fs, hedging onto %s", hedge_delay, hedge_name)
            hedge_task = asyncio.ensure_future(candidate.start())

            pending: set[asyncio.Future] = {primary_task, hedge_task}
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # Primary first so a simultaneous finish resolves deterministically
                for task in sorted(done, key=lambda t: t is not primary_task):
                    if task.cancelled() or task.exception() is not None:
                        continue
                    is_hedge = task is hedge_task
                    return HedgeOutcome(
                        task.result(),
                        provider=hedge_name if is_hedge else None,
                        hedged=True,
                        hedge_won=is_hedge,
                    )

            # Both failed: the primary's error wins
            if not primary_task.cancelled() and primary_task.exception() is not None:
                raise primary_task.exception()  # type: ignore[misc]
            return HedgeOutcome(hedge_task.result(), provider=hedge_name, hedged=True, hedge_won=True)
        except asyncio.CancelledError:
            # Deadline propagation: everything in flight goes, regardless of policy
            cancelled = True
            raise
        finally:
            for task in (primary_task, hedge_task):
                if task is not None and not task.done():
                    if cancelled:
                        task.cancel()
                    else:
                        self._dispose(task)

    def _select_candidate(self, candidates: Sequence[HedgeCandidate[T]]) -> HedgeCandidate[T] | None:
        for candidate in candidates:
            if candidate.admit is not None:
                admitted = candidate.admit()
            else:
                admitted = self.breakers.allow(candidate.name)
            if admitted:
                return candidate
        return None

    def _dispose(self, task: asyncio.Task) -> None:
        """Cancel a losing call, or let it finish and discard its result."""
        if self.cancel_losers:
            task.cancel()
            return
        self._background.add(task)
        task.add_done_callback(self._discard)

    def _discard(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Discarded hedge loser failed: %s", task.exception())
