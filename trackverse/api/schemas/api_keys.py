"""API key request/response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from trackverse.core.api_keys import DEFAULT_PERMISSIONS, ApiKey


class CreateApiKeyRequest(BaseModel):
    """Create API key request."""

    name: str = Field(min_length=1, max_length=100)
    permissions: list[str] = Field(default_factory=lambda: [p.value for p in DEFAULT_PERMISSIONS])
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=3650)
    rate_limit: Optional[int] = Field(default=None, ge=1)
    test_mode: bool = False


class ApiKeyResponse(BaseModel):
    """API key as listed. Never carries the secret or its hash."""

    id: str
    name: str
    key_prefix: str
    permissions: list[str]
    rate_limit: int
    usage_count: int
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    revoked_at: Optional[datetime] = None

    @classmethod
    def from_api_key(cls, api_key: ApiKey) -> "ApiKeyResponse":
        return cls(
            id=api_key.id,
            name=api_key.name,
            key_prefix=api_key.key_prefix,
            permissions=[p.value for p in api_key.permissions],
            rate_limit=api_key.rate_limit,
            usage_count=api_key.usage_count,
            last_used_at=api_key.last_used_at,
            expires_at=api_key.expires_at,
            created_at=api_key.created_at,
            revoked_at=api_key.revoked_at,
        )


class CreateApiKeyResponse(ApiKeyResponse):
    """Returned once, on creation: includes the full key."""

    key: str
    message: str = "Save this key now. It will not be shown again."


class PermissionInfo(BaseModel):
    permission: str
    description: str
    default: bool
