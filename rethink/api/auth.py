"""Authentication and scope checks for FastAPI.

Credentials are API keys issued by the runtime's APIKeyManager, presented as
either of (checked in order):
1. Bearer token (Authorization: Bearer <key>)
2. API key header (X-API-Key)

Every failure (missing, unknown, revoked, expired) surfaces as the same
generic 401; the reason is only logged by the key manager.
"""

from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader

from rethink.api.deps import get_runtime
from rethink.auth.keys import APIKeyRecord
from rethink.exceptions import AuthFailure, ScopeDeniedError

# Header-based API key
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Routes that are exempt from authentication.
# NOTE: /metrics intentionally requires auth; only probes are fully exempt.
EXEMPT_ROUTES = {
    "/api/v1/health",
    "/api/v1/ready",
    "/api/v1/status",
}


def _extract_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    return None


async def verify_api_key(
    request: Request,
    header_key: str | None = Security(api_key_header),
) -> APIKeyRecord | None:
    """Authenticate the request and remember the key on request.state.

    Args:
        request: FastAPI request object
        header_key: API key from X-API-Key header

    Returns:
        The validated key record, or None for exempt routes

    Raises:
        AuthFailure: No valid credential was presented
    """
    if request.url.path in EXEMPT_ROUTES:
        return None

    runtime = get_runtime(request)
    presented = _extract_bearer_token(request) or header_key
    record = runtime.keys.validate(presented)
    request.state.api_key = record
    return record


def require_scope(scope: str) -> Callable[[Request], Awaitable[APIKeyRecord]]:
    """Build a dependency that requires the authenticated key to carry ``scope``.

    Usage:
        @router.post("/chat", dependencies=[Depends(require_scope(SCOPE_CHAT))])
    """

    async def _check_scope(request: Request) -> APIKeyRecord:
        record: APIKeyRecord | None = getattr(request.state, "api_key", None)
        if record is None:
            raise AuthFailure()
        if not record.has_scope(scope):
            raise ScopeDeniedError(scope)
        return record

    return _check_scope


# Dependency for endpoints that need the authenticated key record
CurrentKey = Annotated[APIKeyRecord | None, Depends(verify_api_key)]
