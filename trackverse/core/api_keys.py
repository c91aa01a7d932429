"""API key generation, hashing and permission checks.

Keys look like ``tv_live_<48 hex>`` (or ``tv_test_`` for sandbox keys).
Only the SHA-256 hash and a short display prefix are ever stored; the full
key is returned once, at creation time.

Everything here is pure: invalid input is reported through return values,
never by raising.
"""

import hashlib
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, NamedTuple, Optional

from trackverse.core.constants import ApiPermission

API_KEY_PATTERN = re.compile(r"^tv_(live|test)_[a-f0-9]{48}$")

DEFAULT_API_KEY_RATE_LIMIT = 100  # requests per hour

DEFAULT_PERMISSIONS: list[ApiPermission] = [
    ApiPermission.READ_PROFILE,
    ApiPermission.READ_PRS,
    ApiPermission.READ_RANKINGS,
    ApiPermission.READ_MEETS,
]

ALL_PERMISSIONS: list[ApiPermission] = list(ApiPermission)

PERMISSION_DESCRIPTIONS: dict[ApiPermission, str] = {
    ApiPermission.READ_PROFILE: "Read athlete profiles",
    ApiPermission.READ_PRS: "Read personal records and results",
    ApiPermission.READ_WORKOUTS: "Read workout data",
    ApiPermission.READ_RANKINGS: "Read rankings data",
    ApiPermission.READ_MEETS: "Read meet information and results",
    ApiPermission.WRITE_WORKOUTS: "Create and update workouts",
    ApiPermission.WRITE_RESULTS: "Submit competition results",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ApiKey:
    """A caller's credential. ``key`` holds the SHA-256 hash, never the secret."""
    id: str
    user_id: str
    name: str
    key: str
    key_prefix: str
    permissions: list[ApiPermission]
    rate_limit: int = DEFAULT_API_KEY_RATE_LIMIT
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    revoked_at: Optional[datetime] = None


class GeneratedApiKey(NamedTuple):
    key: str
    hash: str
    prefix: str


class PermissionCheck(NamedTuple):
    valid: bool
    invalid_permissions: list[str]


# ─── Generation ────────────────────────────────────────────────────────────

def _generate(mode: str) -> GeneratedApiKey:
    random_part = secrets.token_hex(24)
    key = f"tv_{mode}_{random_part}"
    return GeneratedApiKey(
        key=key,
        hash=hash_api_key(key),
        prefix=f"tv_{mode}_{random_part[:8]}",
    )


def generate_api_key() -> GeneratedApiKey:
    """Generate a live API key with its hash and display prefix."""
    return _generate("live")


def generate_test_api_key() -> GeneratedApiKey:
    """Generate a sandbox API key with its hash and display prefix."""
    return _generate("test")


def hash_api_key(key: str) -> str:
    """Hash an API key for storage and lookup."""
    return hashlib.sha256(key.encode()).hexdigest()


def is_valid_api_key_format(key: str) -> bool:
    return isinstance(key, str) and API_KEY_PATTERN.match(key) is not None


def is_test_key(key: str) -> bool:
    return key.startswith("tv_test_")


def mask_api_key(key: str) -> str:
    """Mask an API key for display.

    Example: tv_live_1a2b...9f0e
    """
    if len(key) < 20:
        return "****"
    return f"{key[:12]}...{key[-4:]}"


# ─── Permissions ───────────────────────────────────────────────────────────

def has_permission(api_key: ApiKey, required: ApiPermission) -> bool:
    return required in api_key.permissions


def has_any_permission(api_key: ApiKey, required: Iterable[ApiPermission]) -> bool:
    return any(p in api_key.permissions for p in required)


def has_all_permissions(api_key: ApiKey, required: Iterable[ApiPermission]) -> bool:
    return all(p in api_key.permissions for p in required)


def validate_permissions(permissions: Iterable[str]) -> PermissionCheck:
    """Check requested scopes against the known permission set."""
    valid_values = {p.value for p in ALL_PERMISSIONS}
    invalid = [p for p in permissions if str(getattr(p, "value", p)) not in valid_values]
    return PermissionCheck(valid=not invalid, invalid_permissions=invalid)


# ─── Lifecycle ─────────────────────────────────────────────────────────────

def is_api_key_expired(api_key: ApiKey, now: Optional[datetime] = None) -> bool:
    if api_key.expires_at is None:
        return False
    return api_key.expires_at < (now or _utcnow())


def is_api_key_revoked(api_key: ApiKey) -> bool:
    return api_key.revoked_at is not None


def is_api_key_valid(api_key: ApiKey, now: Optional[datetime] = None) -> bool:
    """A key is valid while it is neither expired nor revoked."""
    return not is_api_key_expired(api_key, now) and not is_api_key_revoked(api_key)


def create_api_key_object(
    user_id: str,
    name: str,
    permissions: Iterable[ApiPermission],
    expires_in_days: Optional[int] = None,
    rate_limit: Optional[int] = None,
    test_mode: bool = False,
) -> tuple[ApiKey, str]:
    """Build a new API key record.

    Unknown scopes are dropped; callers that need to reject them run
    ``validate_permissions`` first.

    Returns:
        (api_key, full_key) - full_key is shown once to the user, api_key
        only carries its hash
    """
    generated = generate_test_api_key() if test_mode else generate_api_key()
    now = _utcnow()
    valid_values = {p.value for p in ALL_PERMISSIONS}

    api_key = ApiKey(
        id=f"key_{secrets.token_hex(12)}",
        user_id=user_id,
        name=name,
        key=generated.hash,
        key_prefix=generated.prefix,
        permissions=[
            ApiPermission(p) for p in permissions if str(getattr(p, "value", p)) in valid_values
        ],
        rate_limit=rate_limit or DEFAULT_API_KEY_RATE_LIMIT,
        created_at=now,
    )

    if expires_in_days:
        api_key.expires_at = now + timedelta(days=expires_in_days)

    return api_key, generated.key


def record_api_key_usage(api_key: ApiKey) -> ApiKey:
    """Count one authenticated request against the key."""
    api_key.usage_count += 1
    api_key.last_used_at = _utcnow()
    return api_key


def revoke_api_key(api_key: ApiKey) -> ApiKey:
    """Mark a key dead. Keys are never hard-deleted."""
    if api_key.revoked_at is None:
        api_key.revoked_at = _utcnow()
    return api_key
