"""Resilient multi-provider LLM dispatch.

Re-exports the public API of the provider, breaker, retry, hedge and
dispatcher modules.
"""

from rethink.llm.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitSnapshot,
    CircuitState,
)
from rethink.llm.dispatcher import (
    AttemptOutcome,
    CompletionResult,
    Dispatcher,
    RequestAttempt,
)
from rethink.llm.factory import (
    PROVIDER_BASE_URLS,
    build_descriptors,
    build_provider_clients,
    list_supported_providers,
    parse_fallbacks,
)
from rethink.llm.hedge import HedgeCandidate, HedgeController, HedgeOutcome
from rethink.llm.providers import (
    ChatModelProviderClient,
    CompletionRequest,
    ProviderClient,
    ProviderDescriptor,
    ProviderResponse,
    classify_provider_error,
)
from rethink.llm.ranking import AdaptiveRanker
from rethink.llm.retry import RetryConfig, RetryPolicy, is_retryable

__all__ = [
    "PROVIDER_BASE_URLS",
    "AdaptiveRanker",
    "AttemptOutcome",
    "ChatModelProviderClient",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitSnapshot",
    "CircuitState",
    "CompletionRequest",
    "CompletionResult",
    "Dispatcher",
    "HedgeCandidate",
    "HedgeController",
    "HedgeOutcome",
    "ProviderClient",
    "ProviderDescriptor",
    "ProviderResponse",
    "RequestAttempt",
    "RetryConfig",
    "RetryPolicy",
    "build_descriptors",
    "build_provider_clients",
    "classify_provider_error",
    "is_retryable",
    "list_supported_providers",
    "parse_fallbacks",
]
