"""Bounded retry with exponential backoff and jitter."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from rethink.exceptions import ProviderError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.5  # Random jitter factor (0-1)


def is_retryable(error: BaseException) -> bool:
    """Only transient provider errors are retried."""
    return isinstance(error, ProviderError) and error.retryable


class RetryPolicy:
    """Re-issues a provider-bound operation on transient failures.

    The backoff suspends only the calling task.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    def compute_delay(self, retry_number: int, error: BaseException | None = None) -> float:
        """Delay before the given retry (0-based), with jitter, capped at max_delay."""
        cfg = self.config
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            return min(float(retry_after), cfg.max_delay)

        delay = min(cfg.base_delay * (2**retry_number), cfg.max_delay)
        jitter_range = delay * cfg.jitter
        delay += self._rng.uniform(-jitter_range, jitter_range)
        return max(0.0, min(delay, cfg.max_delay))

    async def execute(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        should_continue: Callable[[], bool] | None = None,
        label: str = "",
    ) -> T:
        """Run operation, retrying transient provider errors.

        Args:
            operation: Async callable receiving the 0-based attempt number
            should_continue: Checked before every retry; returning False
                stops retrying (e.g. the provider's circuit opened)
            label: Provider name used in logs and the terminal error

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: Attempts exhausted or retrying was vetoed
            Exception: Non-retryable errors propagate unchanged
        """
        max_attempts = max(1, self.config.max_attempts)
        attempt = 0
        while True:
            try:
                return await operation(attempt)
            except Exception as e:
                if not is_retryable(e):
                    raise

                attempts_made = attempt + 1
                if attempts_made >= max_attempts:
                    logger.error(
                        "All %d attempts exhausted for %s: %s", attempts_made, label or "operation", e
                    )
                    raise RetryExhaustedError(
                        f"{label or 'operation'} failed after {attempts_made} attempts: {e}",
                        last_error=e,
                        attempts=attempts_made,
                    ) from e

                if should_continue is not None and not should_continue():
                    logger.info(
                        "Stopping retries for %s after attempt %d: circuit refused",
                        label or "operation",
                        attempts_made,
                    )
                    raise RetryExhaustedError(
                        f"{label or 'operation'} refused further attempts after {attempts_made}: {e}",
                        last_error=e,
                        attempts=attempts_made,
                    ) from e

                delay = self.compute_delay(attempt, e)
                logger.warning(
                    "Call to %s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                    label or "operation",
                    attempts_made,
                    max_attempts,
                    e,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1
