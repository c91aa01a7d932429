"""Tests for the webhook delivery engine."""

import json
from datetime import timedelta

import httpx
import pytest

from trackverse.core.constants import DeliveryStatus, WebhookEvent, WebhookStatus
from trackverse.core.webhook_signing import verify_webhook_signature
from trackverse.webhooks.delivery import WebhookDeliveryEngine
from trackverse.webhooks.payloads import PRSet, build_pr_set_payload
from trackverse.webhooks.queue import InMemoryDeliveryQueue
from trackverse.webhooks.retry import RetryStrategy

PR_PAYLOAD = build_pr_set_payload({
    "userId": "u1",
    "event": "100m",
    "time": 10.5,
    "previousTime": 10.67,
    "date": "2026-01-04",
})


@pytest.mark.unit
class TestQueueWebhookDelivery:

    def test_creates_pending_record(self, engine, make_webhook, clock):
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, "pr.set", PR_PAYLOAD)

        assert delivery.id.startswith("whd_")
        assert delivery.webhook_id == webhook.id
        assert delivery.event == WebhookEvent.PR_SET
        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.attempts == 0
        assert delivery.created_at == clock.now()
        assert engine.queue.get(delivery.id) is delivery


@pytest.mark.unit
class TestProcessWebhookDelivery:

    async def test_success(self, engine, subscriber, make_webhook):
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)

        assert delivery.status == DeliveryStatus.SUCCESS
        assert delivery.attempts == 1
        assert delivery.response_code == 200
        assert delivery.response_body == "ok"
        assert delivery.duration is not None
        assert delivery.next_retry_at is None
        assert webhook.failure_count == 0
        assert webhook.last_response_code == 200

    async def test_request_is_signed_wire_body(self, engine, subscriber, make_webhook, clock):
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)

        request = subscriber.requests[0]
        assert request.method == "POST"
        assert str(request.url) == webhook.url
        assert request.headers["X-TrackVerse-Event"] == "pr.set"
        assert request.headers["X-TrackVerse-Delivery"] == delivery.id
        assert verify_webhook_signature(
            request.content, request.headers["X-TrackVerse-Signature"], webhook.secret,
        )

        body = json.loads(request.content)
        assert body["id"] == delivery.id
        assert body["event"] == "pr.set"
        assert body["createdAt"] == "2026-01-04T12:00:00.000Z"
        assert body["data"]["pr"]["improvement"] == pytest.approx(0.17)

    async def test_server_error_schedules_retry(self, engine, subscriber, make_webhook, clock):
        subscriber.status_code = 500
        subscriber.body = "boom"
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)

        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.attempts == 1
        assert delivery.response_code == 500
        assert delivery.response_body == "boom"
        assert delivery.next_retry_at == clock.now() + timedelta(minutes=2)
        assert webhook.failure_count == 1

    async def test_network_error_has_no_response_code(self, engine, subscriber, make_webhook):
        subscriber.error = httpx.ConnectError("connection refused")
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)

        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.response_code is None
        assert delivery.response_body == "connection refused"
        assert delivery.next_retry_at is not None

    async def test_unexpected_transport_error_schedules_retry(self, engine, subscriber, make_webhook, clock):
        subscriber.error = RuntimeError("handler crashed")
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)

        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.attempts == 1
        assert delivery.response_code is None
        assert delivery.response_body == "handler crashed"
        assert delivery.next_retry_at == clock.now() + timedelta(minutes=2)
        assert webhook.failure_count == 1

    async def test_uses_delivery_timeout(self, engine, subscriber, make_webhook):
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)

        assert subscriber.timeouts == [30.0]

    async def test_response_body_truncated(self, subscriber, make_webhook, clock):
        subscriber.body = "x" * 5000
        engine = WebhookDeliveryEngine(
            response_body_limit=1000, transport=subscriber.transport, clock=clock.now,
        )
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)

        assert len(delivery.response_body) == 1000

    async def test_succeeded_delivery_not_resent(self, engine, subscriber, make_webhook):
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)
        await engine.process_webhook_delivery(delivery, webhook)

        assert delivery.attempts == 1
        assert len(subscriber.requests) == 1

    async def test_exhausts_after_three_attempts(self, engine, subscriber, make_webhook, clock):
        subscriber.status_code = 503
        webhook = make_webhook()
        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)

        await engine.process_webhook_delivery(delivery, webhook)
        assert delivery.next_retry_at == clock.now() + timedelta(minutes=2)

        clock.advance(minutes=2)
        await engine.process_webhook_delivery(delivery, webhook)
        assert delivery.next_retry_at == clock.now() + timedelta(minutes=4)

        clock.advance(minutes=4)
        await engine.process_webhook_delivery(delivery, webhook)
        assert delivery.attempts == 3
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.next_retry_at is None
        assert delivery.is_terminal

    async def test_webhook_disabled_after_consecutive_failures(self, subscriber, make_webhook, clock):
        subscriber.status_code = 500
        engine = WebhookDeliveryEngine(
            retry_strategy=RetryStrategy.none(),
            max_consecutive_failures=2,
            transport=subscriber.transport,
            clock=clock.now,
        )
        webhook = make_webhook()

        for _ in range(2):
            delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)
            await engine.process_webhook_delivery(delivery, webhook)

        assert webhook.failure_count == 2
        assert webhook.status == WebhookStatus.FAILED

    async def test_success_resets_failure_count(self, engine, subscriber, make_webhook):
        webhook = make_webhook()
        webhook.failure_count = 4

        delivery = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)
        await engine.process_webhook_delivery(delivery, webhook)

        assert webhook.failure_count == 0


@pytest.mark.unit
class TestTriggerWebhooks:

    async def test_only_active_subscribers_receive(self, engine, subscriber, make_webhook):
        webhooks = [
            make_webhook(events=[WebhookEvent.PR_SET]),
            make_webhook(events=[WebhookEvent.PR_SET, WebhookEvent.RESULT_ADDED]),
            make_webhook(events=[WebhookEvent.PR_SET], status=WebhookStatus.PAUSED),
            make_webhook(events=[WebhookEvent.RESULT_ADDED]),
            make_webhook(events=[WebhookEvent.PR_SET], status=WebhookStatus.FAILED),
        ]

        deliveries = await engine.trigger_webhooks(webhooks, "pr.set", PR_PAYLOAD)
        await engine.drain()

        assert len(deliveries) == 2
        assert {d.webhook_id for d in deliveries} == {webhooks[0].id, webhooks[1].id}
        assert len(subscriber.requests) == 2
        assert len(engine.queue) == 2

    async def test_returns_before_delivery_completes(self, engine, make_webhook):
        deliveries = await engine.trigger_webhooks([make_webhook()], WebhookEvent.PR_SET, PR_PAYLOAD)

        assert deliveries[0].status == DeliveryStatus.PENDING
        assert engine.in_flight == 1

        await engine.drain()
        assert deliveries[0].status == DeliveryStatus.SUCCESS
        assert engine.in_flight == 0

    async def test_no_subscribers(self, engine, subscriber):
        assert await engine.trigger_webhooks([], WebhookEvent.PR_SET, PR_PAYLOAD) == []
        assert subscriber.requests == []

    async def test_trigger_event_serializes_typed_payload(self, engine, subscriber, make_webhook):
        event = PRSet(user_id="u1", event_name="100m", time=10.5, date="2026-01-04", previous_time=10.67)

        deliveries = await engine.trigger_event([make_webhook()], event)
        await engine.drain()

        assert deliveries[0].event == WebhookEvent.PR_SET
        assert deliveries[0].payload["pr"]["improvement"] == pytest.approx(0.17)

    async def test_unknown_event_matches_nothing(self, engine, subscriber, make_webhook):
        deliveries = await engine.trigger_webhooks([make_webhook()], "pr.deleted", {})
        await engine.drain()

        assert deliveries == []
        assert subscriber.requests == []
        assert len(engine.queue) == 0

    def test_unknown_event_is_not_queued(self, engine, make_webhook):
        assert engine.queue_webhook_delivery(make_webhook(), "pr.deleted", {}) is None
        assert len(engine.queue) == 0

    async def test_winter_classic_pr_delivered_once(self, engine, subscriber, make_webhook):
        payload = build_pr_set_payload({
            "userId": "u1",
            "event": "100m",
            "time": 10.15,
            "previousTime": 10.32,
            "date": "2026-01-04",
            "meetName": "Winter Classic",
        })

        deliveries = await engine.trigger_webhooks([make_webhook()], "pr.set", payload)
        await engine.drain()

        assert len(deliveries) == 1
        assert deliveries[0].status == DeliveryStatus.SUCCESS
        assert deliveries[0].attempts == 1

        sent = json.loads(subscriber.requests[0].content)["data"]["pr"]
        assert sent["improvement"] == pytest.approx(0.17)
        assert sent["meetName"] == "Winter Classic"

    async def test_crashing_delivery_is_logged_not_raised(self, engine, make_webhook, monkeypatch):
        async def _boom(delivery, webhook):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine, "process_webhook_delivery", _boom)
        deliveries = await engine.trigger_webhooks([make_webhook()], WebhookEvent.PR_SET, PR_PAYLOAD)
        await engine.drain()

        assert deliveries[0].status == DeliveryStatus.PENDING


@pytest.mark.unit
class TestSubscriberPing:

    async def test_ping_success(self, engine, subscriber, make_webhook):
        webhook = make_webhook()
        result = await engine.test_webhook(webhook)

        assert result.success is True
        assert result.status_code == 200
        assert result.error is None
        assert subscriber.timeouts == [10.0]

        request = subscriber.requests[0]
        assert request.headers["X-TrackVerse-Event"] == "test"
        assert json.loads(request.content)["type"] == "test"
        assert verify_webhook_signature(
            request.content, request.headers["X-TrackVerse-Signature"], webhook.secret,
        )

    async def test_ping_is_not_queued(self, engine, make_webhook):
        await engine.test_webhook(make_webhook())
        assert len(engine.queue) == 0

    async def test_ping_failure(self, engine, subscriber, make_webhook):
        subscriber.status_code = 404
        result = await engine.test_webhook(make_webhook())
        assert result.success is False
        assert result.status_code == 404

    async def test_ping_network_error(self, engine, subscriber, make_webhook):
        subscriber.error = httpx.ConnectTimeout("timed out")
        result = await engine.test_webhook(make_webhook())
        assert result.success is False
        assert result.status_code is None
        assert result.error == "timed out"


@pytest.mark.unit
class TestDeliveryQueue:

    def test_due_selects_failed_with_elapsed_retry(self, engine, make_webhook, clock):
        webhook = make_webhook()
        due = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, {})
        due.status = DeliveryStatus.FAILED
        due.next_retry_at = clock.now()

        later = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, {})
        later.status = DeliveryStatus.FAILED
        later.next_retry_at = clock.now() + timedelta(minutes=1)

        engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, {})

        assert engine.queue.due(clock.now()) == [due]

    def test_bounded_queue_evicts_terminal_first(self, engine, make_webhook):
        queue = InMemoryDeliveryQueue(max_size=2)
        webhook = make_webhook()

        done = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, {})
        done.status = DeliveryStatus.SUCCESS
        pending = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, {})
        newest = engine.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, {})

        for delivery in (done, pending, newest):
            queue.append(delivery)

        assert queue.list_deliveries() == [pending, newest]
        assert queue.get(done.id) is None


@pytest.mark.unit
class TestModuleShortcuts:
    """Module-level functions delegate to the process-wide engine."""

    async def test_delegate_to_singleton(self, engine, subscriber, make_webhook):
        from trackverse.webhooks import delivery as webhook_delivery

        webhook_delivery.set_webhook_engine(engine)
        assert webhook_delivery.get_webhook_engine() is engine

        webhook = make_webhook()
        queued = webhook_delivery.queue_webhook_delivery(webhook, WebhookEvent.PR_SET, PR_PAYLOAD)
        await webhook_delivery.process_webhook_delivery(queued, webhook)
        assert queued.status == DeliveryStatus.SUCCESS

        triggered = await webhook_delivery.trigger_webhooks([webhook], WebhookEvent.PR_SET, PR_PAYLOAD)
        await engine.drain()
        assert triggered[0].status == DeliveryStatus.SUCCESS

        result = await webhook_delivery.test_webhook(webhook)
        assert result.success is True
        assert len(engine.queue) == 2

    def test_reset_creates_fresh_engine(self, engine):
        from trackverse.webhooks import delivery as webhook_delivery

        webhook_delivery.set_webhook_engine(engine)
        webhook_delivery.set_webhook_engine(None)
        assert webhook_delivery.get_webhook_engine() is not engine
