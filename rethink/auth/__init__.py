"""API key issuance and validation."""

from rethink.auth.keys import (
    KNOWN_SCOPES,
    SCOPE_ADMIN,
    SCOPE_CHAT,
    APIKeyManager,
    APIKeyRecord,
)

__all__ = [
    "KNOWN_SCOPES",
    "SCOPE_ADMIN",
    "SCOPE_CHAT",
    "APIKeyManager",
    "APIKeyRecord",
]
