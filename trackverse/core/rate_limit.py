"""Fixed-window rate limiting for the public API.

Two quotas are enforced:
- per API key, on a one-hour window sized by the key's tier
- per client IP for unauthenticated traffic, 30 requests per minute

A window starts on the first request and ends ``window_seconds`` later; once
``reset_at`` has passed the next request opens a fresh window. A request
arriving exactly at ``reset_at`` still belongs to the old window.

Known limitation: windows are fixed, not sliding. A caller can spend a full
quota in the last second of one window and another full quota in the first
second of the next, i.e. up to 2x the nominal rate across a boundary.

Production note: the default store is process-local. Swap in a
``RateLimitStore`` backed by an atomic key-value store for multi-instance
deployments.
"""

import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from trackverse.app.config import get_settings
from trackverse.core.api_keys import is_api_key_valid, is_valid_api_key_format
from trackverse.core.constants import API_KEY_HEADER, RateLimitTier
from trackverse.services.stores import get_api_key_repository


class TierLimits(NamedTuple):
    requests_per_hour: int
    requests_per_day: int


RATE_LIMIT_TIERS: dict[RateLimitTier, TierLimits] = {
    RateLimitTier.FREE: TierLimits(requests_per_hour=100, requests_per_day=1_000),
    RateLimitTier.PRO: TierLimits(requests_per_hour=10_000, requests_per_day=100_000),
    RateLimitTier.ENTERPRISE: TierLimits(requests_per_hour=100_000, requests_per_day=1_000_000),
}


@dataclass
class RateLimitWindow:
    """Counter for one key in the current window."""
    count: int
    reset_at: int  # epoch milliseconds


@dataclass(frozen=True)
class RateLimitInfo:
    """Quota snapshot returned to API callers."""
    limit: int
    remaining: int
    reset: int  # unix seconds


class WindowDecision(NamedTuple):
    allowed: bool
    count: int
    reset_at: int
    now: int


def get_rate_limit_tier(tier: Union[RateLimitTier, str, None]) -> TierLimits:
    """Return the limits for ``tier``, falling back to the free tier."""
    try:
        return RATE_LIMIT_TIERS[RateLimitTier(tier)]
    except ValueError:
        return RATE_LIMIT_TIERS[RateLimitTier.FREE]


# ─── Stores ────────────────────────────────────────────────────────────────

class RateLimitStore(ABC):
    """Storage for rate limit windows, keyed by limiter key."""

    @abstractmethod
    def get(self, key: str) -> Optional[RateLimitWindow]:
        ...

    @abstractmethod
    def set(self, key: str, window: RateLimitWindow) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def items(self) -> list[tuple[str, RateLimitWindow]]:
        ...


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local dict store."""

    def __init__(self):
        self._windows: dict[str, RateLimitWindow] = {}

    def get(self, key: str) -> Optional[RateLimitWindow]:
        return self._windows.get(key)

    def set(self, key: str, window: RateLimitWindow) -> None:
        self._windows[key] = window

    def delete(self, key: str) -> None:
        self._windows.pop(key, None)

    def items(self) -> list[tuple[str, RateLimitWindow]]:
        return list(self._windows.items())

    def __len__(self) -> int:
        return len(self._windows)


# ─── Limiter ───────────────────────────────────────────────────────────────

class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter.

    Args:
        store: Window storage (defaults to in-memory)
        window_seconds: Window length
        clock: Returns the current unix time in seconds
    """

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        window_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.window_ms = int(window_seconds * 1000)
        self._clock = clock
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def hit(self, key: str, limit: int) -> WindowDecision:
        """Consume one request for ``key`` if the quota allows it."""
        now = self.now_ms()

        with self._lock:
            existing = self.store.get(key)

            if existing is None or existing.reset_at < now:
                if limit <= 0:
                    return WindowDecision(False, 0, now + self.window_ms, now)
                window = RateLimitWindow(count=1, reset_at=now + self.window_ms)
                self.store.set(key, window)
                return WindowDecision(True, window.count, window.reset_at, now)

            if existing.count >= limit:
                return WindowDecision(False, existing.count, existing.reset_at, now)

            existing.count += 1
            self.store.set(key, existing)
            return WindowDecision(True, existing.count, existing.reset_at, now)

    def peek(self, key: str) -> Optional[RateLimitWindow]:
        """Return the live window for ``key`` without consuming a request."""
        window = self.store.get(key)
        if window is None or window.reset_at < self.now_ms():
            return None
        return window

    def cleanup(self) -> int:
        """Delete expired windows. Returns the number removed."""
        now = self.now_ms()
        removed = 0
        with self._lock:
            for key, window in self.store.items():
                if window.reset_at < now:
                    self.store.delete(key)
                    removed += 1
        return removed


_api_key_limiter: Optional[FixedWindowRateLimiter] = None
_ip_limiter: Optional[FixedWindowRateLimiter] = None


def get_api_key_limiter() -> FixedWindowRateLimiter:
    """Get or create the process-wide per-key limiter."""
    global _api_key_limiter
    if _api_key_limiter is None:
        _api_key_limiter = FixedWindowRateLimiter(
            window_seconds=get_settings().API_KEY_RATE_WINDOW_SECONDS,
        )
    return _api_key_limiter


def get_ip_limiter() -> FixedWindowRateLimiter:
    """Get or create the process-wide per-IP limiter."""
    global _ip_limiter
    if _ip_limiter is None:
        _ip_limiter = FixedWindowRateLimiter(
            window_seconds=get_settings().IP_RATE_WINDOW_SECONDS,
        )
    return _ip_limiter


def reset_rate_limiters() -> None:
    """Drop all process-wide windows."""
    global _api_key_limiter, _ip_limiter
    _api_key_limiter = None
    _ip_limiter = None


# ─── API key quota ─────────────────────────────────────────────────────────

def _api_key_bucket(api_key_id: str) -> str:
    return f"ratelimit:{api_key_id}:hour"


def check_rate_limit(
    api_key_id: str,
    tier: Union[RateLimitTier, str] = RateLimitTier.FREE,
    limit: Optional[int] = None,
    limiter: Optional[FixedWindowRateLimiter] = None,
) -> tuple[bool, RateLimitInfo]:
    """Consume one request from an API key's hourly quota.

    Args:
        api_key_id: API key identifier
        tier: Rate limit tier, sizes the quota
        limit: Explicit requests-per-window override (e.g. the key's own limit)
        limiter: Limiter to use (defaults to the process-wide one)

    Returns:
        (allowed, info). When denied, ``remaining`` is 0 and ``reset`` is the
        current window's expiry.
    """
    limiter = limiter or get_api_key_limiter()
    quota = limit if limit is not None else get_rate_limit_tier(tier).requests_per_hour

    decision = limiter.hit(_api_key_bucket(api_key_id), quota)
    reset = decision.reset_at // 1000

    if not decision.allowed:
        return False, RateLimitInfo(limit=quota, remaining=0, reset=reset)

    return True, RateLimitInfo(limit=quota, remaining=max(0, quota - decision.count), reset=reset)


def get_rate_limit_status(
    api_key_id: str,
    tier: Union[RateLimitTier, str] = RateLimitTier.FREE,
    limit: Optional[int] = None,
    limiter: Optional[FixedWindowRateLimiter] = None,
) -> RateLimitInfo:
    """Return the current quota for an API key without consuming a request."""
    limiter = limiter or get_api_key_limiter()
    quota = limit if limit is not None else get_rate_limit_tier(tier).requests_per_hour

    window = limiter.peek(_api_key_bucket(api_key_id))
    if window is None:
        return RateLimitInfo(
            limit=quota,
            remaining=quota,
            reset=(limiter.now_ms() + limiter.window_ms) // 1000,
        )

    return RateLimitInfo(
        limit=quota,
        remaining=max(0, quota - window.count),
        reset=window.reset_at // 1000,
    )


def get_rate_limit_headers(info: RateLimitInfo) -> dict[str, str]:
    """Map a quota snapshot to the standard rate limit headers."""
    return {
        "X-RateLimit-Limit": str(info.limit),
        "X-RateLimit-Remaining": str(info.remaining),
        "X-RateLimit-Reset": str(info.reset),
    }


# ─── IP quota ──────────────────────────────────────────────────────────────

def check_ip_rate_limit(
    ip: str,
    limiter: Optional[FixedWindowRateLimiter] = None,
    limit: Optional[int] = None,
) -> tuple[bool, Optional[int]]:
    """Consume one request from an IP's per-minute quota.

    Returns:
        (allowed, retry_after_seconds). ``retry_after`` is None when allowed.
    """
    limiter = limiter or get_ip_limiter()
    quota = limit if limit is not None else get_settings().IP_RATE_LIMIT

    decision = limiter.hit(f"ip:{ip}", quota)
    if decision.allowed:
        return True, None

    return False, math.ceil((decision.reset_at - decision.now) / 1000)


def cleanup_rate_limits() -> int:
    """Sweep expired windows from the process-wide limiters.

    Not triggered automatically; the app lifespan runs it periodically.
    """
    return get_api_key_limiter().cleanup() + get_ip_limiter().cleanup()


# ─── Middleware ────────────────────────────────────────────────────────────

class IpRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP limit for requests that carry no live API key.

    Requests with a known, unrevoked, unexpired key are limited per key by
    the route dependency instead. A malformed or unknown key counts against
    the caller's IP like no key at all.
    """

    SKIP_PATHS = {"/api/health", "/api/v1/health", "/health"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS or self._has_live_api_key(request):
            return await call_next(request)

        allowed, retry_after = check_ip_rate_limit(self._get_client_ip(request))
        if not allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)

    def _has_live_api_key(self, request: Request) -> bool:
        raw_key = request.headers.get(API_KEY_HEADER)
        if not raw_key or not is_valid_api_key_format(raw_key):
            return False

        api_key = get_api_key_repository().find_by_raw_key(raw_key)
        return api_key is not None and is_api_key_valid(api_key)

    def _get_client_ip(self, request: Request) -> str:
        """Use the direct client address; X-Forwarded-For only as fallback."""
        if request.client and request.client.host:
            return request.client.host

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

        return "unknown"
