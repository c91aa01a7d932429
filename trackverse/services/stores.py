"""In-memory repositories for API keys and webhook registrations.

Nothing is persisted: a restart forgets every key and webhook. The
repositories are the seam where a database-backed implementation would go.
"""

import threading
from datetime import datetime, timezone
from typing import Optional

from trackverse.core.api_keys import ApiKey, hash_api_key
from trackverse.webhooks.models import Webhook


class ApiKeyRepository:
    """API keys indexed by id and by key hash."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_id: dict[str, ApiKey] = {}
        self._by_hash: dict[str, str] = {}

    def add(self, api_key: ApiKey) -> ApiKey:
        with self._lock:
            self._by_id[api_key.id] = api_key
            self._by_hash[api_key.key] = api_key.id
        return api_key

    def get(self, key_id: str) -> Optional[ApiKey]:
        return self._by_id.get(key_id)

    def find_by_raw_key(self, raw_key: str) -> Optional[ApiKey]:
        """Resolve a presented secret through its hash."""
        key_id = self._by_hash.get(hash_api_key(raw_key))
        return self._by_id.get(key_id) if key_id else None

    def list_for_user(self, user_id: str) -> list[ApiKey]:
        keys = [k for k in self._by_id.values() if k.user_id == user_id]
        return sorted(keys, key=lambda k: k.created_at, reverse=True)

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
            self._by_hash.clear()


class WebhookRepository:
    """Webhook registrations indexed by id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._webhooks: dict[str, Webhook] = {}

    def add(self, webhook: Webhook) -> Webhook:
        with self._lock:
            self._webhooks[webhook.id] = webhook
        return webhook

    def get(self, webhook_id: str) -> Optional[Webhook]:
        return self._webhooks.get(webhook_id)

    def delete(self, webhook_id: str) -> bool:
        with self._lock:
            return self._webhooks.pop(webhook_id, None) is not None

    def list_for_user(self, user_id: str) -> list[Webhook]:
        hooks = [w for w in self._webhooks.values() if w.user_id == user_id]
        return sorted(hooks, key=lambda w: w.created_at, reverse=True)

    def touch(self, webhook: Webhook) -> None:
        webhook.updated_at = datetime.now(timezone.utc)

    def clear(self) -> None:
        with self._lock:
            self._webhooks.clear()


_api_keys: Optional[ApiKeyRepository] = None
_webhooks: Optional[WebhookRepository] = None


def get_api_key_repository() -> ApiKeyRepository:
    """Get or create the singleton ApiKeyRepository."""
    global _api_keys
    if _api_keys is None:
        _api_keys = ApiKeyRepository()
    return _api_keys


def get_webhook_repository() -> WebhookRepository:
    """Get or create the singleton WebhookRepository."""
    global _webhooks
    if _webhooks is None:
        _webhooks = WebhookRepository()
    return _webhooks
