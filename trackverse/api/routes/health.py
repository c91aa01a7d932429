"""Health check endpoints."""

import time
from typing import Any

from fastapi import APIRouter

from trackverse.app.config import get_settings
from trackverse.webhooks.delivery import get_webhook_engine

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()


@router.get("", response_model=dict[str, Any])
async def health_check() -> dict[str, Any]:
    """
    Liveness probe with a summary of in-process state.
    """
    settings = get_settings()
    engine = get_webhook_engine()
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "webhooks_in_flight": engine.in_flight,
    }
