"""Constants and enums for the TrackVerse developer API."""

from enum import Enum


class ApiPermission(str, Enum):
    """Scopes an API key can be granted."""

    READ_PROFILE = "read:profile"
    READ_PRS = "read:prs"
    READ_WORKOUTS = "read:workouts"
    READ_RANKINGS = "read:rankings"
    READ_MEETS = "read:meets"
    WRITE_WORKOUTS = "write:workouts"
    WRITE_RESULTS = "write:results"


class WebhookEvent(str, Enum):
    """Events a webhook can subscribe to."""

    WORKOUT_CREATED = "workout.created"
    WORKOUT_UPDATED = "workout.updated"
    PR_SET = "pr.set"
    RESULT_ADDED = "result.added"
    RANKING_CHANGED = "ranking.changed"


class WebhookStatus(str, Enum):
    """Webhook subscription status."""

    ACTIVE = "active"
    PAUSED = "paused"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    """Webhook delivery status."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RateLimitTier(str, Enum):
    """API rate limit tier."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# Outbound webhook headers
SIGNATURE_HEADER = "X-TrackVerse-Signature"
EVENT_HEADER = "X-TrackVerse-Event"
DELIVERY_HEADER = "X-TrackVerse-Delivery"

# Inbound API key header
API_KEY_HEADER = "X-API-Key"
