"""Provider capability interface and the LangChain-backed implementation.

A ProviderClient issues exactly one completion call to one backend and
reports its identity. It is deliberately not resilient: retries, circuit
breaking and hedging are layered on top by the Dispatcher.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from rethink.exceptions import PermanentProviderError, ProviderError, TransientProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderDescriptor:
    """Registration record for one backend. Immutable after registration."""

    name: str
    provider: str
    model: str
    priority: int = 0
    timeout_seconds: float = 30.0
    credential_ref: str | None = None
    base_url: str | None = None


@dataclass
class CompletionRequest:
    """One provider-agnostic completion request.

    messages are ``{"role": ..., "content": ...}`` dicts with role one of
    system, user, assistant.
    """

    messages: list[dict[str, str]]
    temperature: float | None = None
    max_tokens: int | None = None
    purpose: str = "generate"


@dataclass
class ProviderResponse:
    """Raw reply from a single provider call."""

    text: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)


class ProviderClient(ABC):
    """Uniform capability for issuing one completion to one backend."""

    def __init__(self, descriptor: ProviderDescriptor):
        self.descriptor = descriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> ProviderResponse:
        """Issue one completion call.

        Implementations raise ProviderError subclasses (or any exception,
        which the dispatcher classifies via classify_provider_error).
        """


_ROLE_TO_MESSAGE: dict[str, type[BaseMessage]] = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


def to_langchain_messages(messages: list[dict[str, str]]) -> list[BaseMessage]:
    """Convert role/content dicts into LangChain message objects."""
    converted: list[BaseMessage] = []
    for message in messages:
        role = message.get("role", "user")
        message_cls = _ROLE_TO_MESSAGE.get(role)
        if message_cls is None:
            raise PermanentProviderError(f"Unsupported message role: {role}", kind="invalid_request")
        converted.append(message_cls(content=message.get("content", "")))
    return converted


class ChatModelProviderClient(ProviderClient):
    """ProviderClient backed by a LangChain chat model (e.g. ChatOpenAI)."""

    def __init__(self, descriptor: ProviderDescriptor, chat_model: BaseChatModel):
        super().__init__(descriptor)
        self.chat_model = chat_model

    async def complete(self, request: CompletionRequest) -> ProviderResponse:
        invoke_kwargs: dict[str, Any] = {}
        if request.temperature is not None:
            invoke_kwargs["temperature"] = request.temperature
        if request.max_tokens is not None:
            invoke_kwargs["max_tokens"] = request.max_tokens

        try:
            message = await self.chat_model.ainvoke(
                to_langchain_messages(request.messages), **invoke_kwargs
            )
        except ProviderError:
            raise
        except Exception as e:
            raise classify_provider_error(e, self.name) from e

        usage = getattr(message, "usage_metadata", None) or {}
        content = message.content if isinstance(message.content, str) else _flatten_content(message.content)
        return ProviderResponse(
            text=content,
            model=self.descriptor.model,
            usage={k: int(v) for k, v in usage.items() if isinstance(v, int)},
        )


def _flatten_content(content: list[Any]) -> str:
    """Join multi-part message content into plain text."""
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


_QUOTA_PATTERN = re.compile(r"insufficient_quota|quota (?:exceeded|exhausted)|billing", re.IGNORECASE)


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after(exc: BaseException) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def classify_provider_error(exc: BaseException, provider: str | None) -> ProviderError:
    """Map an arbitrary backend exception onto the provider error taxonomy.

    Transient: timeouts, connection failures, 408/429 (unless quota), 5xx.
    Permanent: auth (401/403), invalid request (400/404/422), quota
    exhaustion, anything unrecognised.
    """
    if isinstance(exc, ProviderError):
        return exc

    message = str(exc) or type(exc).__name__
    type_name = type(exc).__name__

    if isinstance(exc, (TimeoutError, httpx.TimeoutException)) or "Timeout" in type_name:
        return TransientProviderError(f"Request timed out: {message}", provider=provider, kind="timeout")

    if isinstance(exc, (httpx.NetworkError, ConnectionError)) or "Connection" in type_name:
        return TransientProviderError(f"Connection failed: {message}", provider=provider, kind="connection")

    status = _status_code(exc)
    if status == 429:
        if _QUOTA_PATTERN.search(message):
            return PermanentProviderError(
                f"Quota exhausted: {message}", provider=provider, kind="quota_exhausted", status_code=status
            )
        return TransientProviderError(
            f"Rate limited: {message}",
            provider=provider,
            kind="rate_limit",
            status_code=status,
            retry_after=_retry_after(exc),
        )
    if status == 408:
        return TransientProviderError(message, provider=provider, kind="timeout", status_code=status)
    if status is not None and status >= 500:
        return TransientProviderError(
            f"Server error {status}: {message}", provider=provider, kind="server", status_code=status
        )
    if status in (401, 403):
        return PermanentProviderError(
            f"Authentication failed: {message}", provider=provider, kind="auth", status_code=status
        )
    if status is not None and 400 <= status < 500:
        return PermanentProviderError(
            f"Invalid request: {message}", provider=provider, kind="invalid_request", status_code=status
        )

    return PermanentProviderError(message, provider=provider, kind="unexpected", status_code=status)
