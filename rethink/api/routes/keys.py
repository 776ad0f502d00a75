"""API key administration (scope ``admin``).

The raw secret is returned exactly once, in the POST response.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, status

from rethink.api.auth import CurrentKey, require_scope
from rethink.api.deps import RuntimeDep
from rethink.api.schemas import (
    APIKeyCreate,
    APIKeyCreatedResponse,
    APIKeyListResponse,
    APIKeyResponse,
)
from rethink.auth.keys import KNOWN_SCOPES, SCOPE_ADMIN
from rethink.exceptions import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/keys",
    tags=["API Keys"],
    dependencies=[Depends(require_scope(SCOPE_ADMIN))],
)


@router.post("", response_model=APIKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_key(body: APIKeyCreate, runtime: RuntimeDep, caller: CurrentKey) -> APIKeyCreatedResponse:
    """Issue a new API key."""
    unknown = set(body.scopes) - KNOWN_SCOPES
    if unknown:
        raise ValidationError(f"Unknown scope(s): {', '.join(sorted(unknown))}")

    expires_in = timedelta(days=body.expires_in_days) if body.expires_in_days else None
    record, secret = runtime.keys.create(body.name, body.scopes, expires_in=expires_in)
    logger.info("Key %s issued by %s", record.key_id, caller.key_id if caller else "unknown")
    return APIKeyCreatedResponse(**APIKeyResponse.from_record(record).model_dump(), secret=secret)


@router.get("", response_model=APIKeyListResponse)
async def list_keys(runtime: RuntimeDep) -> APIKeyListResponse:
    """List key metadata (never secrets)."""
    keys = [APIKeyResponse.from_record(r) for r in runtime.keys.list_keys()]
    return APIKeyListResponse(keys=keys, total=len(keys))


@router.delete("/{key_id}", response_model=APIKeyResponse)
async def revoke_key(key_id: str, runtime: RuntimeDep) -> APIKeyResponse:
    """Revoke a key. Takes effect on the key's next request."""
    return APIKeyResponse.from_record(runtime.keys.revoke(key_id))
