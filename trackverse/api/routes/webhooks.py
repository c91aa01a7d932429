"""Webhook management endpoints.

Register subscribers, pause/resume them, send a test ping and inspect
delivery history.
"""

import logging

from fastapi import APIRouter, Depends, status

from trackverse.api.schemas.webhooks import (
    CreateWebhookRequest,
    CreateWebhookResponse,
    UpdateWebhookRequest,
    WebhookDeliveryResponse,
    WebhookResponse,
    WebhookTestResponse,
)
from trackverse.app.dependencies import get_current_user_id, get_engine, get_webhooks
from trackverse.core.constants import WebhookStatus
from trackverse.core.exceptions import NotFoundError
from trackverse.core.webhook_signing import generate_webhook_secret
from trackverse.services.stores import WebhookRepository
from trackverse.webhooks.delivery import WebhookDeliveryEngine
from trackverse.webhooks.models import Webhook, new_webhook_id

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_owned(repo: WebhookRepository, webhook_id: str, user_id: str) -> Webhook:
    webhook = repo.get(webhook_id)
    if webhook is None or webhook.user_id != user_id:
        raise NotFoundError("Webhook not found")
    return webhook


@router.get("", response_model=list[WebhookResponse], summary="List webhooks")
async def list_webhooks(
    user_id: str = Depends(get_current_user_id),
    repo: WebhookRepository = Depends(get_webhooks),
):
    return [WebhookResponse.from_webhook(w) for w in repo.list_for_user(user_id)]


@router.post(
    "",
    response_model=CreateWebhookResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register webhook",
)
async def create_webhook(
    request: CreateWebhookRequest,
    user_id: str = Depends(get_current_user_id),
    repo: WebhookRepository = Depends(get_webhooks),
):
    """Register a subscriber. The signing secret is shown ONCE."""
    webhook = Webhook(
        id=new_webhook_id(),
        user_id=user_id,
        url=str(request.url),
        events=list(dict.fromkeys(request.events)),
        secret=generate_webhook_secret(),
    )
    repo.add(webhook)
    logger.info("Webhook registered", extra={"webhook_id": webhook.id, "user_id": user_id})

    return CreateWebhookResponse(
        **WebhookResponse.from_webhook(webhook).model_dump(),
        secret=webhook.secret,
    )


@router.get("/{webhook_id}", response_model=WebhookResponse, summary="Get webhook")
async def get_webhook(
    webhook_id: str,
    user_id: str = Depends(get_current_user_id),
    repo: WebhookRepository = Depends(get_webhooks),
):
    return WebhookResponse.from_webhook(_get_owned(repo, webhook_id, user_id))


@router.patch("/{webhook_id}", response_model=WebhookResponse, summary="Update webhook")
async def update_webhook(
    webhook_id: str,
    request: UpdateWebhookRequest,
    user_id: str = Depends(get_current_user_id),
    repo: WebhookRepository = Depends(get_webhooks),
):
    """Change URL, events or status. Re-activating resets the failure count."""
    webhook = _get_owned(repo, webhook_id, user_id)

    if request.url is not None:
        webhook.url = str(request.url)
    if request.events is not None:
        webhook.events = list(dict.fromkeys(request.events))
    if request.status is not None:
        if request.status == WebhookStatus.ACTIVE and webhook.status != WebhookStatus.ACTIVE:
            webhook.failure_count = 0
        webhook.status = request.status

    repo.touch(webhook)
    return WebhookResponse.from_webhook(webhook)


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete webhook")
async def delete_webhook(
    webhook_id: str,
    user_id: str = Depends(get_current_user_id),
    repo: WebhookRepository = Depends(get_webhooks),
):
    _get_owned(repo, webhook_id, user_id)
    repo.delete(webhook_id)
    logger.info("Webhook deleted", extra={"webhook_id": webhook_id, "user_id": user_id})


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse, summary="Send test ping")
async def ping_webhook(
    webhook_id: str,
    user_id: str = Depends(get_current_user_id),
    repo: WebhookRepository = Depends(get_webhooks),
    engine: WebhookDeliveryEngine = Depends(get_engine),
):
    """Send a signed ``test`` event and report how the subscriber answered."""
    webhook = _get_owned(repo, webhook_id, user_id)
    result = await engine.test_webhook(webhook)
    return WebhookTestResponse.from_result(result)


@router.get(
    "/{webhook_id}/deliveries",
    response_model=list[WebhookDeliveryResponse],
    summary="List deliveries",
)
async def list_deliveries(
    webhook_id: str,
    user_id: str = Depends(get_current_user_id),
    repo: WebhookRepository = Depends(get_webhooks),
    engine: WebhookDeliveryEngine = Depends(get_engine),
):
    """Delivery history for one webhook, newest first."""
    _get_owned(repo, webhook_id, user_id)
    deliveries = engine.queue.list_deliveries(webhook_id)
    return [WebhookDeliveryResponse.from_delivery(d) for d in reversed(deliveries)]
