"""Public API endpoints, authenticated by ``X-API-Key``.

Every call made through ``require_api_permission`` consumes one request
from the key's hourly quota and carries ``X-RateLimit-*`` headers.
Write endpoints publish the matching webhook events to the key owner's
subscribers.
"""

import secrets
from typing import Any, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from trackverse.api.schemas.common import ErrorResponse
from trackverse.app.config import get_settings
from trackverse.app.dependencies import (
    get_engine,
    get_webhooks,
    require_api_permission,
    resolve_api_key,
)
from trackverse.core.api_keys import ApiKey, is_test_key
from trackverse.core.constants import ApiPermission
from trackverse.core.rate_limit import get_rate_limit_headers, get_rate_limit_status
from trackverse.services.stores import WebhookRepository
from trackverse.webhooks.delivery import WebhookDeliveryEngine
from trackverse.webhooks.payloads import PRSet, ResultAdded, WorkoutCreated

router = APIRouter()

_ERRORS = {
    401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
    403: {"model": ErrorResponse, "description": "Missing permission"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
}


class WorkoutIn(BaseModel):
    name: str
    type: str
    date: str
    duration: float = Field(gt=0)
    distance: Optional[float] = Field(default=None, ge=0)


class ResultIn(BaseModel):
    event: str
    time: float = Field(gt=0)
    meet_name: str
    meet_date: str
    place: Optional[int] = Field(default=None, ge=1)
    is_pr: bool = False
    previous_time: Optional[float] = Field(default=None, gt=0)


class PublishedResponse(BaseModel):
    id: str
    deliveries: list[str]


@router.get("/me", responses=_ERRORS, summary="Describe the calling key")
async def whoami(
    api_key: ApiKey = Depends(require_api_permission(ApiPermission.READ_PROFILE)),
) -> dict[str, Any]:
    return {
        "id": api_key.id,
        "user_id": api_key.user_id,
        "name": api_key.name,
        "key_prefix": api_key.key_prefix,
        "test_mode": is_test_key(api_key.key_prefix),
        "permissions": [p.value for p in api_key.permissions],
        "usage_count": api_key.usage_count,
    }


@router.get("/rate-limit", responses=_ERRORS, summary="Current quota")
async def rate_limit_status(
    response: Response,
    api_key: ApiKey = Depends(resolve_api_key),
) -> dict[str, int]:
    """Report the key's quota without consuming a request."""
    info = get_rate_limit_status(
        api_key.id,
        tier=get_settings().DEFAULT_RATE_LIMIT_TIER,
        limit=api_key.rate_limit,
    )
    response.headers.update(get_rate_limit_headers(info))
    return {"limit": info.limit, "remaining": info.remaining, "reset": info.reset}


@router.post(
    "/workouts",
    response_model=PublishedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_ERRORS,
    summary="Log a workout",
)
async def create_workout(
    workout: WorkoutIn,
    api_key: ApiKey = Depends(require_api_permission(ApiPermission.WRITE_WORKOUTS)),
    repo: WebhookRepository = Depends(get_webhooks),
    engine: WebhookDeliveryEngine = Depends(get_engine),
):
    """Accept a workout and notify ``workout.created`` subscribers."""
    workout_id = f"wo_{secrets.token_hex(8)}"
    event = WorkoutCreated(
        id=workout_id,
        user_id=api_key.user_id,
        name=workout.name,
        type=workout.type,
        date=workout.date,
        duration=workout.duration,
        distance=workout.distance,
    )
    deliveries = await engine.trigger_event(repo.list_for_user(api_key.user_id), event)
    return PublishedResponse(id=workout_id, deliveries=[d.id for d in deliveries])


@router.post(
    "/results",
    response_model=PublishedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_ERRORS,
    summary="Submit a competition result",
)
async def create_result(
    result: ResultIn,
    api_key: ApiKey = Depends(require_api_permission(ApiPermission.WRITE_RESULTS)),
    repo: WebhookRepository = Depends(get_webhooks),
    engine: WebhookDeliveryEngine = Depends(get_engine),
):
    """Accept a result; notify ``result.added`` and, for a PR, ``pr.set``."""
    subscribers = repo.list_for_user(api_key.user_id)
    result_id = f"res_{secrets.token_hex(8)}"

    deliveries = await engine.trigger_event(
        subscribers,
        ResultAdded(
            user_id=api_key.user_id,
            event_name=result.event,
            time=result.time,
            meet_name=result.meet_name,
            meet_date=result.meet_date,
            is_pr=result.is_pr,
            place=result.place,
        ),
    )

    if result.is_pr:
        deliveries += await engine.trigger_event(
            subscribers,
            PRSet(
                user_id=api_key.user_id,
                event_name=result.event,
                time=result.time,
                date=result.meet_date,
                previous_time=result.previous_time,
                meet_name=result.meet_name,
            ),
        )

    return PublishedResponse(id=result_id, deliveries=[d.id for d in deliveries])
