"""Webhook delivery queue.

The in-memory queue is a logical enqueue, not a durable one: a process
restart loses every pending and failed delivery. Implement ``DeliveryQueue``
over a real store to keep them.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from trackverse.core.constants import DeliveryStatus
from trackverse.webhooks.models import WebhookDelivery


class DeliveryQueue(ABC):
    """Storage for webhook delivery records."""

    @abstractmethod
    def append(self, delivery: WebhookDelivery) -> None:
        ...

    @abstractmethod
    def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        ...

    @abstractmethod
    def list_deliveries(self, webhook_id: Optional[str] = None) -> list[WebhookDelivery]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    def due(self, now: datetime) -> list[WebhookDelivery]:
        """Failed deliveries whose retry time has arrived."""
        return [
            d for d in self.list_deliveries()
            if d.status == DeliveryStatus.FAILED
            and d.next_retry_at is not None
            and d.next_retry_at <= now
        ]


class InMemoryDeliveryQueue(DeliveryQueue):
    """Process-local list of deliveries, oldest first."""

    def __init__(self, max_size: int = 10_000):
        self._deliveries: list[WebhookDelivery] = []
        self._by_id: dict[str, WebhookDelivery] = {}
        self._max_size = max_size

    def append(self, delivery: WebhookDelivery) -> None:
        self._deliveries.append(delivery)
        self._by_id[delivery.id] = delivery
        self._evict()

    def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        return self._by_id.get(delivery_id)

    def list_deliveries(self, webhook_id: Optional[str] = None) -> list[WebhookDelivery]:
        if webhook_id is None:
            return list(self._deliveries)
        return [d for d in self._deliveries if d.webhook_id == webhook_id]

    def clear(self) -> None:
        self._deliveries.clear()
        self._by_id.clear()

    def __len__(self) -> int:
        return len(self._deliveries)

    def _evict(self) -> None:
        """Drop the oldest terminal records once the bound is exceeded."""
        overflow = len(self._deliveries) - self._max_size
        if overflow <= 0:
            return
        kept = []
        for delivery in self._deliveries:
            if overflow > 0 and delivery.is_terminal:
                self._by_id.pop(delivery.id, None)
                overflow -= 1
                continue
            kept.append(delivery)
        self._deliveries = kept
