"""Custom exceptions for the TrackVerse API.

Only the web layer raises these. The rate limiter, key model and webhook
engine report expected failures as return values.
"""

from typing import Optional


class TrackVerseException(Exception):
    """Base exception for the TrackVerse API."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(TrackVerseException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404)


class UnauthorizedError(TrackVerseException):
    """Missing or invalid credentials."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, 401)


class ForbiddenError(TrackVerseException):
    """Credentials lack the required permission."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, 403)


class ValidationError(TrackVerseException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, 422)


class RateLimitExceededError(TrackVerseException):
    """Request quota exhausted for the current window."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        headers: Optional[dict[str, str]] = None,
        retry_after: Optional[int] = None,
    ):
        self.headers = headers or {}
        self.retry_after = retry_after
        super().__init__(message, 429)
