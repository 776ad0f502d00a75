"""Circuit breaker pattern for LLM providers.

One breaker per provider. State transitions are linearized by a
provider-scoped lock, so unrelated providers never contend.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation, requests pass through
    OPEN = "open"  # Tripped, requests are refused until open_until
    HALF_OPEN = "half_open"  # One trial call decides CLOSED or OPEN


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of one breaker, for status endpoints and metrics."""

    provider: str
    state: CircuitState
    failure_count: int
    last_failure_at: float | None
    open_until: float | None
    cooldown_seconds: float


# (provider, old_state, new_state)
StateListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """Sliding-window circuit breaker with a single half-open trial.

    When failures inside the window reach the threshold the circuit opens
    for the current cooldown. After the cooldown one caller is granted a
    trial; its success closes the circuit, its failure reopens it with the
    cooldown doubled (capped at max_cooldown_seconds).
    """

    def __init__(
        self,
        provider: str,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 30.0,
        max_cooldown_seconds: float = 300.0,
        time_func: Callable[[], float] | None = None,
        listeners: list[StateListener] | None = None,
    ):
        """Initialize circuit breaker.

        Args:
            provider: Provider name this breaker guards
            failure_threshold: Failures within the window that open the circuit
            window_seconds: Length of the sliding failure window
            cooldown_seconds: Initial open duration
            max_cooldown_seconds: Cap for the doubled cooldown after failed trials
            time_func: Callable returning current time in seconds (default: time.monotonic).
                       Inject a mock clock for deterministic testing.
            listeners: Callbacks invoked (outside the lock) on every transition
        """
        self.provider = provider
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.base_cooldown_seconds = cooldown_seconds
        self.max_cooldown_seconds = max(max_cooldown_seconds, cooldown_seconds)
        self._time_func = time_func or time.monotonic
        self._listeners = list(listeners or [])
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._last_failure_at: float | None = None
        self._open_until: float | None = None
        self._cooldown = cooldown_seconds
        self._trial_in_flight = False
        # Bumped on every transition; admit() hands out the current value
        self._epoch = 0

    @property
    def state(self) -> CircuitState:
        """Current state (does not perform the OPEN -> HALF_OPEN transition)."""
        return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            self._prune(self._time_func())
            return len(self._failures)

    def admit(self) -> int | None:
        """Admit a call, returning its admission epoch (None when refused).

        In OPEN, once open_until has passed, the first caller is granted the
        half-open trial and every concurrent caller is refused until the
        trial is recorded or released. Pass the epoch back to record() or
        release() so results from calls admitted before a later transition
        are recognised as stale.
        """
        transition = None
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return self._epoch

            if self._state == CircuitState.OPEN:
                now = self._time_func()
                if self._open_until is not None and now < self._open_until:
                    return None
                transition = self._transition(CircuitState.HALF_OPEN)
                self._trial_in_flight = True
                epoch = self._epoch
            elif self._trial_in_flight:
                epoch = None
            else:
                self._trial_in_flight = True
                epoch = self._epoch

        self._notify(transition)
        return epoch

    def allow(self) -> bool:
        """Return whether a call may be issued now (see admit())."""
        return self.admit() is not None

    def is_available(self) -> bool:
        """Non-mutating peek: would allow() currently grant a call?"""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                return self._open_until is None or self._time_func() >= self._open_until
            return not self._trial_in_flight

    def record(self, success: bool, epoch: int | None = None) -> None:
        """Record the outcome of a call made to this provider.

        Args:
            success: Whether the call succeeded
            epoch: Admission epoch from admit(); a result whose epoch predates
                the latest transition never changes the state. Untagged
                results are applied to the current state.
        """
        transition = None
        with self._lock:
            now = self._time_func()
            if epoch is not None and epoch != self._epoch:
                if not success:
                    self._last_failure_at = now
                logger.debug(
                    "Ignoring late %s for %s admitted in epoch %d (now %d, %s)",
                    "success" if success else "failure",
                    self.provider,
                    epoch,
                    self._epoch,
                    self._state.value,
                )

            elif self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                if success:
                    self._failures.clear()
                    self._cooldown = self.base_cooldown_seconds
                    self._open_until = None
                    transition = self._transition(CircuitState.CLOSED)
                else:
                    self._last_failure_at = now
                    self._cooldown = min(self._cooldown * 2, self.max_cooldown_seconds)
                    self._open_until = now + self._cooldown
                    transition = self._transition(CircuitState.OPEN)

            elif self._state == CircuitState.CLOSED:
                if not success:
                    self._last_failure_at = now
                    self._failures.append(now)
                    self._prune(now)
                    if len(self._failures) >= self.failure_threshold:
                        self._open_until = now + self._cooldown
                        transition = self._transition(CircuitState.OPEN)

            # OPEN: late results from calls issued before the circuit opened
            # are ignored.
            elif not success:
                self._last_failure_at = now

        if transition is not None and transition[1] == CircuitState.OPEN:
            logger.warning(
                "Circuit breaker for %s opened after %d failures. Will allow a trial in %.1fs.",
                self.provider,
                len(self._failures),
                self._cooldown,
            )
        self._notify(transition)

    def release(self, epoch: int | None = None) -> None:
        """Give back a half-open trial slot without recording an outcome.

        Only the trial's own admission (or an untagged caller) frees the slot.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and (epoch is None or epoch == self._epoch):
                self._trial_in_flight = False

    def reset(self) -> None:
        """Force the breaker back to CLOSED (operator action, tests)."""
        with self._lock:
            self._epoch += 1
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._last_failure_at = None
            self._open_until = None
            self._cooldown = self.base_cooldown_seconds
            self._trial_in_flight = False

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            self._prune(self._time_func())
            return CircuitSnapshot(
                provider=self.provider,
                state=self._state,
                failure_count=len(self._failures),
                last_failure_at=self._last_failure_at,
                open_until=self._open_until,
                cooldown_seconds=self._cooldown,
            )

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _prune(self, now: float) -> None:
        horizon = now - self.window_seconds
        while self._failures and self._failures[0] < horizon:
            self._failures.popleft()

    def _transition(self, new_state: CircuitState) -> tuple[CircuitState, CircuitState]:
        old_state = self._state
        self._state = new_state
        self._epoch += 1
        return old_state, new_state

    def _notify(self, transition: tuple[CircuitState, CircuitState] | None) -> None:
        if transition is None:
            return
        old_state, new_state = transition
        logger.info("Circuit %s: %s -> %s", self.provider, old_state.value, new_state.value)
        for listener in self._listeners:
            try:
                listener(self.provider, old_state, new_state)
            except Exception:
                logger.exception("Circuit state listener failed for %s", self.provider)


class CircuitBreakerRegistry:
    """Owns one CircuitBreaker per provider.

    The registry lock only guards breaker creation; all state changes go
    through the per-provider breaker lock.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 30.0,
        max_cooldown_seconds: float = 300.0,
        time_func: Callable[[], float] | None = None,
    ):
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self.max_cooldown_seconds = max_cooldown_seconds
        self._time_func = time_func
        self._breakers: dict[str, CircuitBreaker] = {}
        self._listeners: list[StateListener] = []
        self._lock = threading.Lock()

    def get(self, provider: str) -> CircuitBreaker:
        """Get or create the breaker for a provider."""
        breaker = self._breakers.get(provider)
        if breaker is not None:
            return breaker
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                breaker = CircuitBreaker(
                    provider,
                    failure_threshold=self.failure_threshold,
                    window_seconds=self.window_seconds,
                    cooldown_seconds=self.cooldown_seconds,
                    max_cooldown_seconds=self.max_cooldown_seconds,
                    time_func=self._time_func,
                    listeners=self._listeners,
                )
                self._breakers[provider] = breaker
            return breaker

    def allow(self, provider: str) -> bool:
        return self.get(provider).allow()

    def admit(self, provider: str) -> int | None:
        return self.get(provider).admit()

    def record(self, provider: str, success: bool) -> None:
        self.get(provider).record(success)

    def add_listener(self, listener: StateListener) -> None:
        """Register a transition listener on current and future breakers."""
        with self._lock:
            self._listeners.append(listener)
            existing = list(self._breakers.values())
        for breaker in existing:
            if listener not in breaker._listeners:
                breaker.add_listener(listener)

    def snapshots(self) -> list[CircuitSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [breaker.snapshot() for breaker in breakers]

    def clear(self) -> None:
        with self._lock:
            self._breakers.clear()
