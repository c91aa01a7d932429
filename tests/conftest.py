"""Shared pytest fixtures for the TrackVerse API test suite.

Provides:
- Controllable clocks for the rate limiter and webhook engine
- A fake subscriber endpoint (httpx.MockTransport) that records requests
- Webhook factory
- FastAPI app and test client (httpx.AsyncClient over ASGITransport)
"""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from trackverse.core.constants import WebhookEvent, WebhookStatus  # noqa: E402
from trackverse.core.rate_limit import reset_rate_limiters  # noqa: E402
from trackverse.services.stores import (  # noqa: E402
    get_api_key_repository,
    get_webhook_repository,
)
from trackverse.webhooks.delivery import WebhookDeliveryEngine, set_webhook_engine  # noqa: E402
from trackverse.webhooks.models import Webhook, new_webhook_id  # noqa: E402


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced clock, usable as a datetime or unix-seconds source."""

    def __init__(self, start: datetime = datetime(2026, 1, 4, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Subscriber endpoint
# ---------------------------------------------------------------------------

class FakeSubscriber:
    """Records every request and answers with a configurable status.

    Set ``error`` to an exception instance to simulate a network failure.
    """

    def __init__(self, status_code: int = 200, body: str = "ok"):
        self.status_code = status_code
        self.body = body
        self.error = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.body)

    @property
    def timeouts(self) -> list[float]:
        """Read timeout each request was sent with."""
        return [r.extensions["timeout"]["read"] for r in self.requests]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def subscriber() -> FakeSubscriber:
    return FakeSubscriber()


@pytest.fixture
def engine(subscriber, clock) -> WebhookDeliveryEngine:
    """Engine wired to the fake subscriber and fake clock."""
    return WebhookDeliveryEngine(transport=subscriber.transport, clock=clock.now)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

@pytest.fixture
def make_webhook():
    def _make(
        events=(WebhookEvent.PR_SET,),
        status=WebhookStatus.ACTIVE,
        url="https://hooks.example.com/trackverse",
        user_id="u1",
    ) -> Webhook:
        return Webhook(
            id=new_webhook_id(),
            user_id=user_id,
            url=url,
            events=list(events),
            secret="whsec_test_secret",
            status=status,
        )

    return _make


# ---------------------------------------------------------------------------
# Process-wide state
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_state():
    """Start every test with empty limiters, stores and engine."""
    reset_rate_limiters()
    get_api_key_repository().clear()
    get_webhook_repository().clear()
    set_webhook_engine(None)
    yield
    set_webhook_engine(None)


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app(engine):
    """FastAPI app whose webhook engine talks to the fake subscriber."""
    set_webhook_engine(engine)

    from trackverse.app.main import create_app
    return create_app()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user_headers() -> dict:
    return {"X-User-ID": "u1"}
