"""Rate limiting configuration for API endpoints.

Provides a shared Limiter instance that route modules import to apply
per-endpoint limits. The chat endpoint is the only LLM-backed route and
carries the tightest limit (CHAT_RATE_LIMIT, default 20/minute per IP).

Usage in route modules:
    from rethink.api.rate_limit import limiter

    @router.post("/chat")
    @limiter.limit(chat_rate_limit)
    async def chat(request: Request, ...):
        ...
"""

from slowapi import Limiter
from starlette.requests import Request

from rethink.settings import get_settings


def _get_real_client_ip(request: Request) -> str:
    """Extract the real client IP, respecting X-Forwarded-For from trusted proxies.

    Args:
        request: Starlette/FastAPI request object.

    Returns:
        Client IP address string.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For: client, proxy1, proxy2; take the leftmost (client)
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "127.0.0.1"


def chat_rate_limit() -> str:
    """Limit string for the chat endpoint, read from settings at request time."""
    return get_settings().chat_rate_limit


# Shared rate limiter instance.
# Toggled per app from settings.rate_limit_enabled in create_app().
limiter = Limiter(
    key_func=_get_real_client_ip,
    default_limits=["60/minute"],
)

# Maximum request body size (bytes).
# Applied via middleware in main.py to prevent DoS via large payloads.
MAX_REQUEST_BODY_BYTES = 1_048_576  # 1 MB
