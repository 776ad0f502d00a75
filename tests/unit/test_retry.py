"""Unit tests for RetryPolicy: bounded attempts, backoff and error classes."""

import random

import pytest

from rethink.exceptions import PermanentProviderError, RetryExhaustedError, TransientProviderError
from rethink.llm.retry import RetryConfig, RetryPolicy, is_retryable
from tests.helpers.providers import RecordingSleep


def _failing(errors: list[Exception], result: str = "ok"):
    calls: list[int] = []

    async def operation(attempt: int) -> str:
        calls.append(attempt)
        if errors:
            raise errors.pop(0)
        return result

    return operation, calls


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_first_try(self, sleep: RecordingSleep):
        policy = RetryPolicy(RetryConfig(max_attempts=3), sleep=sleep)
        operation, calls = _failing([])
        assert await policy.execute(operation) == "ok"
        assert calls == [0]
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, sleep: RecordingSleep):
        policy = RetryPolicy(RetryConfig(max_attempts=3), sleep=sleep)
        operation, calls = _failing([TransientProviderError("503", kind="server")])
        assert await policy.execute(operation) == "ok"
        assert calls == [0, 1]
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_never_retries_permanent_errors(self, sleep: RecordingSleep):
        policy = RetryPolicy(RetryConfig(max_attempts=5), sleep=sleep)
        error = PermanentProviderError("bad request", kind="invalid_request")
        operation, calls = _failing([error])

        with pytest.raises(PermanentProviderError) as exc_info:
            await policy.execute(operation)

        assert exc_info.value is error
        assert calls == [0]
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unclassified_errors_propagate_unchanged(self, sleep: RecordingSleep):
        policy = RetryPolicy(RetryConfig(max_attempts=5), sleep=sleep)
        operation, calls = _failing([KeyError("x")])
        with pytest.raises(KeyError):
            await policy.execute(operation)
        assert calls == [0]

    @pytest.mark.asyncio
    async def test_never_exceeds_max_attempts(self, sleep: RecordingSleep):
        policy = RetryPolicy(RetryConfig(max_attempts=3), sleep=sleep)
        operation, calls = _failing([TransientProviderError("timeout", kind="timeout") for _ in range(10)])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.execute(operation, label="openai:gpt-test")

        assert calls == [0, 1, 2]
        assert len(sleep.delays) == 2
        assert exc_info.value.attempts == 3
        assert exc_info.value.kind == "timeout"
        assert isinstance(exc_info.value.last_error, TransientProviderError)

    @pytest.mark.asyncio
    async def test_should_continue_veto_stops_retrying(self, sleep: RecordingSleep):
        policy = RetryPolicy(RetryConfig(max_attempts=5), sleep=sleep)
        operation, calls = _failing([TransientProviderError("503", kind="server") for _ in range(5)])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.execute(operation, should_continue=lambda: False)

        assert calls == [0]
        assert exc_info.value.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_single_attempt_config(self, sleep: RecordingSleep):
        policy = RetryPolicy(RetryConfig(max_attempts=1), sleep=sleep)
        operation, calls = _failing([TransientProviderError("503", kind="server")])
        with pytest.raises(RetryExhaustedError):
            await policy.execute(operation)
        assert calls == [0]


class TestComputeDelay:
    def test_exponential_without_jitter(self):
        policy = RetryPolicy(RetryConfig(base_delay=0.5, max_delay=8.0, jitter=0.0))
        assert [policy.compute_delay(n) for n in range(6)] == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(
            RetryConfig(base_delay=1.0, max_delay=8.0, jitter=0.5),
            rng=random.Random(42),
        )
        for _ in range(200):
            delay = policy.compute_delay(1)
            assert 1.0 <= delay <= 3.0

    def test_delay_never_exceeds_max(self):
        policy = RetryPolicy(RetryConfig(base_delay=1.0, max_delay=2.0, jitter=1.0), rng=random.Random(7))
        assert all(policy.compute_delay(5) <= 2.0 for _ in range(100))

    def test_retry_after_is_honoured_and_capped(self):
        policy = RetryPolicy(RetryConfig(base_delay=0.5, max_delay=8.0, jitter=0.0))
        assert policy.compute_delay(0, TransientProviderError("429", kind="rate_limit", retry_after=3)) == 3.0
        assert policy.compute_delay(0, TransientProviderError("429", kind="rate_limit", retry_after=60)) == 8.0


def test_is_retryable():
    assert is_retryable(TransientProviderError("x"))
    assert not is_retryable(PermanentProviderError("x"))
    assert not is_retryable(ValueError("x"))
