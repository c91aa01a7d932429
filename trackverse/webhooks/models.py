"""Webhook subscription and delivery records."""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from trackverse.core.constants import DeliveryStatus, WebhookEvent, WebhookStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a trailing Z."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Webhook:
    """A subscriber registration.

    Deliveries are only attempted while ``status`` is active and the event is
    in ``events``.
    """
    id: str
    user_id: str
    url: str
    events: list[WebhookEvent]
    secret: str
    status: WebhookStatus = WebhookStatus.ACTIVE
    failure_count: int = 0
    last_triggered_at: Optional[datetime] = None
    last_response_code: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def accepts(self, event: WebhookEvent) -> bool:
        return self.status == WebhookStatus.ACTIVE and event in self.events


@dataclass
class WebhookDelivery:
    """One webhook + event + payload, mutated in place by each attempt."""
    id: str
    webhook_id: str
    event: WebhookEvent
    payload: dict[str, Any]
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    response_code: Optional[int] = None
    response_body: Optional[str] = None
    duration: Optional[int] = None  # milliseconds
    next_retry_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        """Succeeded, or failed with no retry scheduled."""
        if self.status == DeliveryStatus.SUCCESS:
            return True
        return self.status == DeliveryStatus.FAILED and self.next_retry_at is None

    def wire_body(self) -> dict[str, Any]:
        """The JSON document POSTed to the subscriber."""
        return {
            "id": self.id,
            "event": self.event.value,
            "data": self.payload,
            "createdAt": isoformat(self.created_at),
        }


@dataclass
class WebhookTestResult:
    success: bool
    status_code: Optional[int] = None
    duration: Optional[int] = None
    error: Optional[str] = None


def new_webhook_id() -> str:
    return f"wh_{secrets.token_hex(12)}"


def new_delivery_id() -> str:
    return f"whd_{secrets.token_hex(12)}"
