"""API Key management endpoints.

Create, list, revoke API keys for programmatic access.
"""

import logging

from fastapi import APIRouter, Depends, status

from trackverse.api.schemas.api_keys import (
    ApiKeyResponse,
    CreateApiKeyRequest,
    CreateApiKeyResponse,
    PermissionInfo,
)
from trackverse.app.dependencies import get_api_keys, get_current_user_id
from trackverse.core.api_keys import (
    DEFAULT_PERMISSIONS,
    PERMISSION_DESCRIPTIONS,
    create_api_key_object,
    revoke_api_key,
    validate_permissions,
)
from trackverse.core.exceptions import NotFoundError, ValidationError
from trackverse.services.stores import ApiKeyRepository

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/permissions", response_model=list[PermissionInfo], summary="List permission scopes")
async def list_permissions():
    return [
        PermissionInfo(
            permission=permission.value,
            description=description,
            default=permission in DEFAULT_PERMISSIONS,
        )
        for permission, description in PERMISSION_DESCRIPTIONS.items()
    ]


@router.get("", response_model=list[ApiKeyResponse], summary="List API keys")
async def list_api_keys(
    user_id: str = Depends(get_current_user_id),
    repo: ApiKeyRepository = Depends(get_api_keys),
):
    """List the caller's API keys, newest first, revoked ones included."""
    return [ApiKeyResponse.from_api_key(k) for k in repo.list_for_user(user_id)]


@router.post(
    "",
    response_model=CreateApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create API key",
)
async def create_api_key(
    request: CreateApiKeyRequest,
    user_id: str = Depends(get_current_user_id),
    repo: ApiKeyRepository = Depends(get_api_keys),
):
    """Create a new API key. The full key is shown ONCE."""
    check = validate_permissions(request.permissions)
    if not check.valid:
        raise ValidationError(f"Invalid permissions: {', '.join(check.invalid_permissions)}")

    api_key, full_key = create_api_key_object(
        user_id,
        request.name,
        request.permissions,
        expires_in_days=request.expires_in_days,
        rate_limit=request.rate_limit,
        test_mode=request.test_mode,
    )
    repo.add(api_key)
    logger.info("API key created", extra={"api_key_id": api_key.id, "user_id": user_id})

    return CreateApiKeyResponse(
        **ApiKeyResponse.from_api_key(api_key).model_dump(),
        key=full_key,
    )


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Revoke API key")
async def delete_api_key(
    key_id: str,
    user_id: str = Depends(get_current_user_id),
    repo: ApiKeyRepository = Depends(get_api_keys),
):
    """Revoke an API key. The record is kept with ``revoked_at`` set."""
    api_key = repo.get(key_id)
    if api_key is None or api_key.user_id != user_id:
        raise NotFoundError("API key not found")

    revoke_api_key(api_key)
    logger.info("API key revoked", extra={"api_key_id": api_key.id, "user_id": user_id})
