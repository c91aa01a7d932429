"""Webhook delivery engine.

Fans a domain event out to every active subscriber, POSTs a signed JSON
body to each, records the outcome on the delivery record and schedules a
retry with exponential backoff when the attempt failed.

Wire format (POST, application/json):
    {"id": <delivery id>, "event": <event>, "data": <payload>, "createdAt": <ISO-8601>}

Failures (non-2xx, timeouts, connection errors, unexpected transport
errors) are folded into the delivery's ``failed`` state; nothing here
raises for them. A failure that never reached the server leaves
``response_code`` unset and stores the error message as ``response_body``.
An unknown event name matches no subscriber and queues nothing.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union

import httpx
import structlog

from trackverse.app.config import get_settings
from trackverse.core.constants import DeliveryStatus, WebhookEvent, WebhookStatus
from trackverse.core.webhook_signing import build_delivery_headers
from trackverse.webhooks.models import (
    Webhook,
    WebhookDelivery,
    WebhookTestResult,
    isoformat,
    new_delivery_id,
)
from trackverse.webhooks.payloads import EventPayload, serialize_event
from trackverse.webhooks.queue import DeliveryQueue, InMemoryDeliveryQueue
from trackverse.webhooks.retry import RetryStrategy

logger = structlog.get_logger(__name__)

TEST_EVENT = "test"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _error_message(error: Exception) -> str:
    return str(error) or type(error).__name__


def _parse_event(event: Union[WebhookEvent, str]) -> Optional[WebhookEvent]:
    try:
        return WebhookEvent(event)
    except ValueError:
        logger.warning("Unknown webhook event", webhook_event=str(getattr(event, "value", event)))
        return None


class WebhookDeliveryEngine:
    """Queues, sends and retries webhook deliveries.

    Args:
        queue: Delivery storage (defaults to in-memory)
        retry_strategy: Backoff schedule (defaults to 3 attempts, 2/4 minutes)
        transport: httpx transport override, used by tests
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        queue: Optional[DeliveryQueue] = None,
        retry_strategy: Optional[RetryStrategy] = None,
        delivery_timeout: Optional[float] = None,
        test_timeout: Optional[float] = None,
        response_body_limit: Optional[int] = None,
        max_consecutive_failures: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = get_settings()
        self.queue = queue if queue is not None else InMemoryDeliveryQueue()
        self.retry_strategy = retry_strategy or RetryStrategy.exponential(
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
            base_delay=settings.WEBHOOK_RETRY_BASE_SECONDS,
        )
        self.delivery_timeout = delivery_timeout or settings.WEBHOOK_DELIVERY_TIMEOUT
        self.test_timeout = test_timeout or settings.WEBHOOK_TEST_TIMEOUT
        self.response_body_limit = response_body_limit or settings.WEBHOOK_RESPONSE_BODY_LIMIT
        self.max_consecutive_failures = (
            max_consecutive_failures or settings.WEBHOOK_MAX_CONSECUTIVE_FAILURES
        )
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: set[asyncio.Task] = set()

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def now(self) -> datetime:
        return self._clock()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ─── Queueing ──────────────────────────────────────────────

    def queue_webhook_delivery(
        self,
        webhook: Webhook,
        event: Union[WebhookEvent, str],
        payload: dict[str, Any],
    ) -> Optional[WebhookDelivery]:
        """Create a pending delivery record and append it to the queue.

        Returns None, queueing nothing, when ``event`` is not a known event.
        """
        event = _parse_event(event)
        if event is None:
            return None

        delivery = WebhookDelivery(
            id=new_delivery_id(),
            webhook_id=webhook.id,
            event=event,
            payload=payload,
            created_at=self._clock(),
        )
        self.queue.append(delivery)
        return delivery

    # ─── Sending ───────────────────────────────────────────────

    async def process_webhook_delivery(
        self,
        delivery: WebhookDelivery,
        webhook: Webhook,
    ) -> WebhookDelivery:
        """Make one delivery attempt and record its outcome in place."""
        if delivery.status == DeliveryStatus.SUCCESS:
            return delivery

        body = json.dumps(delivery.wire_body())
        headers = build_delivery_headers(body, webhook.secret, delivery.event.value, delivery.id)

        # Cleared up front so the retry worker never picks an in-flight attempt
        delivery.next_retry_at = None
        started = time.monotonic()

        try:
            async with self._client(self.delivery_timeout) as client:
                response = await client.post(webhook.url, content=body, headers=headers)
            delivery.response_code = response.status_code
            delivery.response_body = response.text[: self.response_body_limit]
            succeeded = response.is_success
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            delivery.response_code = None
            delivery.response_body = _error_message(e)[: self.response_body_limit]
            succeeded = False
        except Exception as e:
            logger.error(
                "Webhook send failed unexpectedly",
                delivery_id=delivery.id,
                webhook_id=webhook.id,
                error=str(e),
                exc_info=True,
            )
            delivery.response_code = None
            delivery.response_body = _error_message(e)[: self.response_body_limit]
            succeeded = False

        delivery.duration = _elapsed_ms(started)
        delivery.attempts += 1
        now = self._clock()

        if succeeded:
            delivery.status = DeliveryStatus.SUCCESS
        else:
            delivery.status = DeliveryStatus.FAILED
            delivery.next_retry_at = self.retry_strategy.next_retry_at(delivery.attempts, now)

        self._record_outcome(webhook, delivery, succeeded, now)

        logger.info(
            "Webhook delivery attempted",
            delivery_id=delivery.id,
            webhook_id=webhook.id,
            webhook_event=delivery.event.value,
            status=delivery.status.value,
            attempts=delivery.attempts,
            response_code=delivery.response_code,
            duration_ms=delivery.duration,
            next_retry_at=isoformat(delivery.next_retry_at) if delivery.next_retry_at else None,
        )
        return delivery

    def _record_outcome(
        self,
        webhook: Webhook,
        delivery: WebhookDelivery,
        succeeded: bool,
        now: datetime,
    ) -> None:
        webhook.last_triggered_at = now
        webhook.last_response_code = delivery.response_code
        webhook.updated_at = now

        if succeeded:
            webhook.failure_count = 0
            return

        webhook.failure_count += 1
        if (
            webhook.status == WebhookStatus.ACTIVE
            and webhook.failure_count >= self.max_consecutive_failures
        ):
            webhook.status = WebhookStatus.FAILED
            logger.warning(
                "Webhook disabled after consecutive failures",
                webhook_id=webhook.id,
                failure_count=webhook.failure_count,
            )

    # ─── Fan-out ───────────────────────────────────────────────

    def dispatch(self, delivery: WebhookDelivery, webhook: Webhook) -> asyncio.Task:
        """Process a delivery in the background without waiting for it."""
        task = asyncio.create_task(self._process_safely(delivery, webhook))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process_safely(self, delivery: WebhookDelivery, webhook: Webhook) -> None:
        try:
            await self.process_webhook_delivery(delivery, webhook)
        except Exception as e:
            logger.error(
                "Webhook delivery crashed",
                delivery_id=delivery.id,
                webhook_id=webhook.id,
                error=str(e),
                exc_info=True,
            )

    async def trigger_webhooks(
        self,
        webhooks: Iterable[Webhook],
        event: Union[WebhookEvent, str],
        payload: dict[str, Any],
    ) -> list[WebhookDelivery]:
        """Queue and dispatch a delivery for every active subscriber of ``event``.

        Returns as soon as the deliveries are queued; sending happens in the
        background and errors there are logged, never raised here. An unknown
        event matches no subscriber.
        """
        event = _parse_event(event)
        if event is None:
            return []

        deliveries = []

        for webhook in webhooks:
            if not webhook.accepts(event):
                continue
            delivery = self.queue_webhook_delivery(webhook, event, payload)
            self.dispatch(delivery, webhook)
            deliveries.append(delivery)

        if deliveries:
            logger.debug("Webhooks triggered", webhook_event=event.value, count=len(deliveries))
        return deliveries

    async def trigger_event(
        self,
        webhooks: Iterable[Webhook],
        event: EventPayload,
    ) -> list[WebhookDelivery]:
        """Serialize a typed event and trigger its subscribers."""
        name, payload = serialize_event(event)
        return await self.trigger_webhooks(webhooks, name, payload)

    async def drain(self) -> None:
        """Wait until every background delivery has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ─── Subscriber check ──────────────────────────────────────

    async def test_webhook(self, webhook: Webhook) -> WebhookTestResult:
        """Send a synthetic ``test`` event to validate a subscriber URL.

        Independent of the delivery queue; nothing is recorded.
        """
        body = json.dumps({
            "type": TEST_EVENT,
            "message": "This is a test webhook from TrackVerse",
            "timestamp": isoformat(self._clock()),
        })
        delivery_id = f"test_{int(time.time() * 1000)}"
        headers = build_delivery_headers(body, webhook.secret, TEST_EVENT, delivery_id)
        started = time.monotonic()

        try:
            async with self._client(self.test_timeout) as client:
                response = await client.post(webhook.url, content=body, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return WebhookTestResult(
                success=False,
                duration=_elapsed_ms(started),
                error=_error_message(e),
            )

        return WebhookTestResult(
            success=response.is_success,
            status_code=response.status_code,
            duration=_elapsed_ms(started),
        )

    test_webhook.__test__ = False


_engine: Optional[WebhookDeliveryEngine] = None


def get_webhook_engine() -> WebhookDeliveryEngine:
    """Get or create the singleton WebhookDeliveryEngine."""
    global _engine
    if _engine is None:
        _engine = WebhookDeliveryEngine()
    return _engine


def set_webhook_engine(engine: Optional[WebhookDeliveryEngine]) -> None:
    """Replace the singleton (None resets it)."""
    global _engine
    _engine = engine


# ─── Module-level shortcuts on the singleton engine ───

def queue_webhook_delivery(
    webhook: Webhook,
    event: Union[WebhookEvent, str],
    payload: dict[str, Any],
) -> Optional[WebhookDelivery]:
    return get_webhook_engine().queue_webhook_delivery(webhook, event, payload)


async def process_webhook_delivery(delivery: WebhookDelivery, webhook: Webhook) -> WebhookDelivery:
    return await get_webhook_engine().process_webhook_delivery(delivery, webhook)


async def trigger_webhooks(
    webhooks: Iterable[Webhook],
    event: Union[WebhookEvent, str],
    payload: dict[str, Any],
) -> list[WebhookDelivery]:
    return await get_webhook_engine().trigger_webhooks(webhooks, event, payload)


async def test_webhook(webhook: Webhook) -> WebhookTestResult:
    return await get_webhook_engine().test_webhook(webhook)


test_webhook.__test__ = False
