"""Rethink exception hierarchy.

Base exceptions for all application layers with correlation ID support.

Usage:
    from rethink.exceptions import CircuitOpenError, ProviderError

    try:
        result = await dispatcher.complete(request)
    except CircuitOpenError:
        ...  # every provider circuit is open, back off
    except ProviderError as e:
        logger.error("Provider %s failed after %d attempts", e.provider, e.attempts)
"""

import uuid
from typing import Any


class RethinkError(Exception):
    """Base exception for all Rethink application errors.

    Carries a correlation_id for tracing errors across layers.
    """

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class AuthFailure(RethinkError):
    """Credential rejected.

    The message is always generic; the specific reason (unknown, revoked,
    expired) is only logged.
    """

    def __init__(self, message: str = "Invalid or missing credentials", **kwargs: Any):
        super().__init__(message, **kwargs)


class ScopeDeniedError(RethinkError):
    """Credential is valid but lacks the scope the resource requires."""

    def __init__(self, scope: str, **kwargs: Any):
        self.scope = scope
        super().__init__(f"Missing required scope: {scope}", **kwargs)


class KeyNotFoundError(RethinkError):
    """No API key with the given identifier."""

    def __init__(self, key_id: str, **kwargs: Any):
        self.key_id = key_id
        super().__init__(f"API key not found: {key_id}", **kwargs)


class LLMError(RethinkError):
    """Errors from LLM provider operations."""

    def __init__(self, message: str, *, provider: str | None = None, **kwargs: Any):
        self.provider = provider
        super().__init__(message, **kwargs)


class ProviderError(LLMError):
    """A provider call failed.

    Attributes:
        kind: Failure class (timeout, connection, rate_limit, server,
            invalid_request, auth, quota_exhausted, unexpected)
        retryable: Whether RetryPolicy may re-issue the call
        status_code: HTTP status reported by the backend, if any
        retry_after: Backend-suggested delay in seconds, if any
        attempts: Number of calls made before this error surfaced
    """

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        kind: str = "unexpected",
        status_code: int | None = None,
        retry_after: float | None = None,
        attempts: int = 1,
        **kwargs: Any,
    ):
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after
        self.attempts = attempts
        super().__init__(message, provider=provider, **kwargs)

    @property
    def counts_against_circuit(self) -> bool:
        """Invalid requests are the caller's fault, not the provider's."""
        return self.kind != "invalid_request"


class TransientProviderError(ProviderError):
    """Timeouts, 5xx, connection failures and rate limits."""

    retryable = True


class PermanentProviderError(ProviderError):
    """Invalid requests, auth failures and exhausted quotas. Never retried."""


class RetryExhaustedError(ProviderError):
    """RetryPolicy gave up on a provider."""

    def __init__(self, message: str, *, last_error: Exception, attempts: int, **kwargs: Any):
        self.last_error = last_error
        kwargs.setdefault("provider", getattr(last_error, "provider", None))
        kwargs.setdefault("kind", getattr(last_error, "kind", "unexpected"))
        super().__init__(message, attempts=attempts, **kwargs)


class DispatchError(ProviderError):
    """Every contacted provider failed for one logical request."""

    def __init__(
        self,
        message: str,
        *,
        last_error: Exception | None,
        attempt_log: list[Any] | None = None,
        **kwargs: Any,
    ):
        self.last_error = last_error
        self.attempt_log = attempt_log or []
        kwargs.setdefault("attempts", len(self.attempt_log))
        super().__init__(message, **kwargs)


class CircuitOpenError(LLMError):
    """No provider is eligible: every circuit is open.

    Not retried by the dispatcher; the refinement loop treats it as an
    early-stop signal.
    """

    def __init__(
        self,
        message: str = "No providers available",
        *,
        last_error: Exception | None = None,
        attempt_log: list[Any] | None = None,
        **kwargs: Any,
    ):
        self.last_error = last_error
        self.attempt_log = attempt_log or []
        super().__init__(message, **kwargs)


class ThinkingTimeoutError(LLMError):
    """The thinking budget elapsed before any round completed."""

    def __init__(self, message: str, *, budget_seconds: float, **kwargs: Any):
        self.budget_seconds = budget_seconds
        super().__init__(message, **kwargs)


class ValidationError(RethinkError):
    """Errors from input validation (beyond Pydantic)."""

    pass


class ConfigurationError(RethinkError):
    """Errors from application configuration."""

    pass
