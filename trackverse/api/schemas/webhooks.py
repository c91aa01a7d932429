"""Webhook request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import AnyHttpUrl, BaseModel, Field

from trackverse.core.constants import DeliveryStatus, WebhookEvent, WebhookStatus
from trackverse.webhooks.models import Webhook, WebhookDelivery, WebhookTestResult


class CreateWebhookRequest(BaseModel):
    """Register a webhook subscriber."""

    url: AnyHttpUrl
    events: list[WebhookEvent] = Field(min_length=1)


class UpdateWebhookRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    url: Optional[AnyHttpUrl] = None
    events: Optional[list[WebhookEvent]] = Field(default=None, min_length=1)
    status: Optional[WebhookStatus] = None


class WebhookResponse(BaseModel):
    id: str
    url: str
    events: list[WebhookEvent]
    status: WebhookStatus
    failure_count: int
    last_triggered_at: Optional[datetime] = None
    last_response_code: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> "WebhookResponse":
        return cls(
            id=webhook.id,
            url=webhook.url,
            events=webhook.events,
            status=webhook.status,
            failure_count=webhook.failure_count,
            last_triggered_at=webhook.last_triggered_at,
            last_response_code=webhook.last_response_code,
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
        )


class CreateWebhookResponse(WebhookResponse):
    """Returned once, on creation: includes the signing secret."""

    secret: str


class WebhookDeliveryResponse(BaseModel):
    id: str
    webhook_id: str
    event: WebhookEvent
    payload: dict[str, Any]
    status: DeliveryStatus
    attempts: int
    response_code: Optional[int] = None
    response_body: Optional[str] = None
    duration: Optional[int] = None
    next_retry_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_delivery(cls, delivery: WebhookDelivery) -> "WebhookDeliveryResponse":
        return cls(
            id=delivery.id,
            webhook_id=delivery.webhook_id,
            event=delivery.event,
            payload=delivery.payload,
            status=delivery.status,
            attempts=delivery.attempts,
            response_code=delivery.response_code,
            response_body=delivery.response_body,
            duration=delivery.duration,
            next_retry_at=delivery.next_retry_at,
            created_at=delivery.created_at,
        )


class WebhookTestResponse(BaseModel):
    success: bool
    status_code: Optional[int] = None
    duration: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: WebhookTestResult) -> "WebhookTestResponse":
        return cls(
            success=result.success,
            status_code=result.status_code,
            duration=result.duration,
            error=result.error,
        )
