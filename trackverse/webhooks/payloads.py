"""Typed webhook event payloads.

Each domain event is a small dataclass tagged with its ``WebhookEvent``.
``to_payload()`` renders the wire shape ``{"type": <event>, <section>: {...}}``;
unset optional fields are left out of the section.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union

from trackverse.core.constants import WebhookEvent


def _compact(section: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in section.items() if v is not None}


@dataclass
class WorkoutCreated:
    event: ClassVar[WebhookEvent] = WebhookEvent.WORKOUT_CREATED

    id: str
    user_id: str
    name: str
    type: str
    date: str
    duration: float
    distance: Optional[float] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.event.value,
            "workout": _compact({
                "id": self.id,
                "userId": self.user_id,
                "name": self.name,
                "type": self.type,
                "date": self.date,
                "duration": self.duration,
                "distance": self.distance,
            }),
        }


@dataclass
class PRSet:
    event: ClassVar[WebhookEvent] = WebhookEvent.PR_SET

    user_id: str
    event_name: str
    time: float
    date: str
    previous_time: Optional[float] = None
    meet_name: Optional[str] = None

    @property
    def improvement(self) -> Optional[float]:
        # No previous mark (or a zero one) means nothing to improve on
        if not self.previous_time:
            return None
        return self.previous_time - self.time

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.event.value,
            "pr": _compact({
                "userId": self.user_id,
                "event": self.event_name,
                "time": self.time,
                "previousTime": self.previous_time,
                "improvement": self.improvement,
                "date": self.date,
                "meetName": self.meet_name,
            }),
        }


@dataclass
class ResultAdded:
    event: ClassVar[WebhookEvent] = WebhookEvent.RESULT_ADDED

    user_id: str
    event_name: str
    time: float
    meet_name: str
    meet_date: str
    is_pr: bool
    place: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.event.value,
            "result": _compact({
                "userId": self.user_id,
                "event": self.event_name,
                "time": self.time,
                "place": self.place,
                "meetName": self.meet_name,
                "meetDate": self.meet_date,
                "isPR": self.is_pr,
            }),
        }


@dataclass
class RankingChanged:
    event: ClassVar[WebhookEvent] = WebhookEvent.RANKING_CHANGED

    user_id: str
    event_name: str
    new_rank: int
    scope: str  # "state" or "national"
    previous_rank: Optional[int] = None
    state: Optional[str] = None

    @property
    def change(self) -> Optional[int]:
        """Positive when the athlete moved up."""
        if not self.previous_rank:
            return None
        return self.previous_rank - self.new_rank

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.event.value,
            "ranking": _compact({
                "userId": self.user_id,
                "event": self.event_name,
                "previousRank": self.previous_rank,
                "newRank": self.new_rank,
                "change": self.change,
                "scope": self.scope,
                "state": self.state,
            }),
        }


EventPayload = Union[WorkoutCreated, PRSet, ResultAdded, RankingChanged]

_VARIANTS: dict[type, WebhookEvent] = {
    WorkoutCreated: WebhookEvent.WORKOUT_CREATED,
    PRSet: WebhookEvent.PR_SET,
    ResultAdded: WebhookEvent.RESULT_ADDED,
    RankingChanged: WebhookEvent.RANKING_CHANGED,
}


def serialize_event(event: EventPayload) -> tuple[WebhookEvent, dict[str, Any]]:
    """Return ``(event_name, wire_payload)`` for a typed event.

    Raises:
        TypeError: If ``event`` is not one of the known variants
    """
    name = _VARIANTS.get(type(event))
    if name is None:
        raise TypeError(f"Unsupported webhook event payload: {type(event).__name__}")
    return name, event.to_payload()


# ─── Builders ──────────────────────────────────────────────────────────────
# Accept the camelCase field names used by the app's domain objects.

def build_workout_created_payload(workout: dict[str, Any]) -> dict[str, Any]:
    return WorkoutCreated(
        id=workout["id"],
        user_id=workout["userId"],
        name=workout["name"],
        type=workout["type"],
        date=workout["date"],
        duration=workout["duration"],
        distance=workout.get("distance"),
    ).to_payload()


def build_pr_set_payload(pr: dict[str, Any]) -> dict[str, Any]:
    """Build a ``pr.set`` payload; ``improvement`` = previousTime - time."""
    return PRSet(
        user_id=pr["userId"],
        event_name=pr["event"],
        time=pr["time"],
        date=pr["date"],
        previous_time=pr.get("previousTime"),
        meet_name=pr.get("meetName"),
    ).to_payload()


def build_result_added_payload(result: dict[str, Any]) -> dict[str, Any]:
    return ResultAdded(
        user_id=result["userId"],
        event_name=result["event"],
        time=result["time"],
        meet_name=result["meetName"],
        meet_date=result["meetDate"],
        is_pr=result["isPR"],
        place=result.get("place"),
    ).to_payload()


def build_ranking_changed_payload(ranking: dict[str, Any]) -> dict[str, Any]:
    """Build a ``ranking.changed`` payload; ``change`` = previousRank - newRank."""
    return RankingChanged(
        user_id=ranking["userId"],
        event_name=ranking["event"],
        new_rank=ranking["newRank"],
        scope=ranking["scope"],
        previous_rank=ranking.get("previousRank"),
        state=ranking.get("state"),
    ).to_payload()
