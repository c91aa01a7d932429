"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from trackverse.api.routes import api_keys, health, public, webhooks

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(health.router)

# Management (caller identified by X-User-ID)
api_v1_router.include_router(api_keys.router, prefix="/api-keys", tags=["API Keys"])
api_v1_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])

# Public API (X-API-Key, rate limited per key)
api_v1_router.include_router(public.router, prefix="/public", tags=["Public API"])
