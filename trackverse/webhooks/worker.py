"""Background retry driver for failed webhook deliveries.

Every ``interval`` seconds the worker scans the delivery queue for failed
deliveries whose ``next_retry_at`` has arrived and hands them back to the
engine. Runs as an asyncio task inside the API process; no external
scheduler needed.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional

import structlog

from trackverse.app.config import get_settings
from trackverse.webhooks.delivery import WebhookDeliveryEngine
from trackverse.webhooks.models import Webhook

logger = structlog.get_logger(__name__)

WebhookLookup = Callable[[str], Optional[Webhook]]


class WebhookRetryWorker:
    """Periodic scan-and-redeliver loop.

    Args:
        engine: Engine owning the delivery queue
        webhook_lookup: Resolves a webhook id to its current registration
        interval: Seconds between scans
    """

    def __init__(
        self,
        engine: WebhookDeliveryEngine,
        webhook_lookup: WebhookLookup,
        interval: Optional[float] = None,
    ):
        self.engine = engine
        self.webhook_lookup = webhook_lookup
        self.interval = interval or get_settings().WEBHOOK_RETRY_POLL_INTERVAL
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def run_once(self, now: Optional[datetime] = None) -> int:
        """Dispatch every due retry. Returns how many were re-attempted.

        Deliveries whose webhook is gone or no longer active lose their
        retry slot instead of being sent.
        """
        now = now or self.engine.now()
        dispatched = 0

        for delivery in self.engine.queue.due(now):
            webhook = self.webhook_lookup(delivery.webhook_id)
            if webhook is None or not webhook.accepts(delivery.event):
                delivery.next_retry_at = None
                logger.info(
                    "Webhook retry dropped",
                    delivery_id=delivery.id,
                    webhook_id=delivery.webhook_id,
                    reason="missing" if webhook is None else webhook.status.value,
                )
                continue

            # Not due again until this attempt records its outcome
            delivery.next_retry_at = None
            self.engine.dispatch(delivery, webhook)
            dispatched += 1

        if dispatched:
            logger.info("Webhook retries dispatched", count=dispatched)
        return dispatched

    async def start(self) -> None:
        """Start the periodic scan in the background."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Webhook retry worker started", interval=self.interval)

    async def stop(self) -> None:
        """Stop scanning. In-flight deliveries are left to the engine."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Webhook retry worker stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _loop(self) -> None:
        while self._running:
            try:
                self.run_once()
            except Exception as e:
                logger.error("Webhook retry scan failed", error=str(e), exc_info=True)
            await asyncio.sleep(self.interval)
