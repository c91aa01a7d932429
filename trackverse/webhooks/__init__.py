"""
Webhook delivery system for TrackVerse events.

Components:
- payloads.py: Typed event payloads and builders
- retry.py: Backoff schedule for failed deliveries
- queue.py: Delivery record storage
- delivery.py: Signed HTTP delivery and fan-out
- worker.py: Background retry driver
"""

from trackverse.webhooks.delivery import WebhookDeliveryEngine, get_webhook_engine
from trackverse.webhooks.models import Webhook, WebhookDelivery, WebhookTestResult
from trackverse.webhooks.worker import WebhookRetryWorker

__all__ = [
    "Webhook",
    "WebhookDelivery",
    "WebhookDeliveryEngine",
    "WebhookRetryWorker",
    "WebhookTestResult",
    "get_webhook_engine",
]
