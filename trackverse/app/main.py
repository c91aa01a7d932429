"""TrackVerse API - FastAPI Application."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trackverse.api.routes import health
from trackverse.api.v1.router import api_v1_router
from trackverse.app.config import get_settings
from trackverse.core.logging_config import setup_logging
from trackverse.core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from trackverse.core.rate_limit import IpRateLimitMiddleware, cleanup_rate_limits
from trackverse.services.stores import get_webhook_repository
from trackverse.webhooks.delivery import get_webhook_engine
from trackverse.webhooks.worker import WebhookRetryWorker

logger = logging.getLogger(__name__)


async def _rate_limit_cleanup_loop(interval: float) -> None:
    """Periodically drop expired rate limit windows."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = cleanup_rate_limits()
            if removed:
                logger.info(f"[rate-limit] Removed {removed} expired window(s)")
        except Exception as e:
            logger.error(f"[rate-limit] Cleanup error: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging()

    engine = get_webhook_engine()
    worker = WebhookRetryWorker(engine, get_webhook_repository().get)
    await worker.start()
    logger.info(f"[startup] Webhook retry worker started ({worker.interval:.0f}s interval)")

    cleanup_task = asyncio.create_task(
        _rate_limit_cleanup_loop(settings.RATE_LIMIT_CLEANUP_INTERVAL)
    )

    logger.info(f"[startup] {settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield

    # Shutdown
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    await worker.stop()
    await engine.drain()
    logger.info("[shutdown] Application shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="TrackVerse developer API: API keys, rate limits and webhooks.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Per-IP limit for unauthenticated traffic
    app.add_middleware(IpRateLimitMiddleware)

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key", "X-User-ID", "X-Request-ID"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    )

    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()
