"""FastAPI dependency injection functions."""

import logging
from typing import Optional

from fastapi import Depends, Header, Response, Security
from fastapi.security import APIKeyHeader

from trackverse.app.config import get_settings
from trackverse.core.api_keys import (
    ApiKey,
    has_permission,
    is_api_key_expired,
    is_api_key_revoked,
    is_valid_api_key_format,
    record_api_key_usage,
)
from trackverse.core.constants import API_KEY_HEADER, ApiPermission
from trackverse.core.exceptions import ForbiddenError, RateLimitExceededError, UnauthorizedError
from trackverse.core.rate_limit import check_rate_limit, get_rate_limit_headers
from trackverse.services.stores import (
    ApiKeyRepository,
    WebhookRepository,
    get_api_key_repository,
    get_webhook_repository,
)
from trackverse.webhooks.delivery import WebhookDeliveryEngine, get_webhook_engine

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_api_keys() -> ApiKeyRepository:
    return get_api_key_repository()


def get_webhooks() -> WebhookRepository:
    return get_webhook_repository()


def get_engine() -> WebhookDeliveryEngine:
    return get_webhook_engine()


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identify the caller of management endpoints.

    There is no session auth in this service; the fronting app passes the
    signed-in user's id in ``X-User-ID``.
    """
    if not x_user_id:
        raise UnauthorizedError("Missing X-User-ID header")
    return x_user_id


async def resolve_api_key(
    raw_key: Optional[str] = Security(api_key_header),
    repo: ApiKeyRepository = Depends(get_api_keys),
) -> ApiKey:
    """Authenticate a public API request by its ``X-API-Key`` header.

    Raises:
        UnauthorizedError: Missing, malformed, unknown, expired or revoked key
    """
    if not raw_key:
        raise UnauthorizedError("Missing API key")
    if not is_valid_api_key_format(raw_key):
        raise UnauthorizedError("Malformed API key")

    api_key = repo.find_by_raw_key(raw_key)
    if api_key is None:
        raise UnauthorizedError("Invalid API key")
    if is_api_key_revoked(api_key):
        raise UnauthorizedError("API key has been revoked")
    if is_api_key_expired(api_key):
        raise UnauthorizedError("API key has expired")

    return api_key


def require_api_permission(permission: ApiPermission):
    """Dependency that authenticates, authorizes and rate limits an API key.

    Usage:
        @router.get("/prs")
        async def list_prs(api_key=Depends(require_api_permission(ApiPermission.READ_PRS))): ...
    """

    async def _check(
        response: Response,
        api_key: ApiKey = Depends(resolve_api_key),
    ) -> ApiKey:
        if not has_permission(api_key, permission):
            raise ForbiddenError(f"API key lacks required permission: {permission.value}")

        allowed, info = check_rate_limit(
            api_key.id,
            tier=get_settings().DEFAULT_RATE_LIMIT_TIER,
            limit=api_key.rate_limit,
        )
        headers = get_rate_limit_headers(info)
        if not allowed:
            logger.warning("API key rate limited", extra={"api_key_id": api_key.id})
            raise RateLimitExceededError(headers=headers)

        response.headers.update(headers)
        record_api_key_usage(api_key)
        return api_key

    return _check
