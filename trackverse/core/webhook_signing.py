"""Webhook HMAC signature generation and verification.

All outbound webhooks are signed with HMAC-SHA256 over the raw JSON body
so receivers can verify the payload authenticity.

Headers added to outbound webhooks:
  X-TrackVerse-Signature: <hex_digest>
  X-TrackVerse-Event: <event name>
  X-TrackVerse-Delivery: <delivery id>

Verification:
  1. Compute HMAC-SHA256 over the raw request body with the webhook secret
  2. Compare with X-TrackVerse-Signature using constant-time comparison

Usage:
    # Signing (outbound)
    headers = build_delivery_headers(body, secret, "pr.set", delivery_id)

    # Verification (inbound)
    is_valid = verify_webhook_signature(body, signature, secret)
"""

import hashlib
import hmac
import secrets
from typing import Union

from trackverse.core.constants import DELIVERY_HEADER, EVENT_HEADER, SIGNATURE_HEADER

Payload = Union[str, bytes]


def _to_bytes(value: Payload) -> bytes:
    return value.encode() if isinstance(value, str) else value


def generate_webhook_signature(payload: Payload, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``payload`` keyed by ``secret``."""
    return hmac.new(
        _to_bytes(secret),
        _to_bytes(payload),
        hashlib.sha256,
    ).hexdigest()


def verify_webhook_signature(payload: Payload, signature: str, secret: str) -> bool:
    """Verify a webhook signature.

    Args:
        payload: Raw request body
        signature: Value of the X-TrackVerse-Signature header
        secret: Webhook signing secret

    Returns:
        True if the signature matches. Malformed signatures return False.
    """
    if not isinstance(signature, str) or not signature:
        return False

    expected = generate_webhook_signature(payload, secret)

    # Constant-time comparison; bytes so non-ASCII input cannot raise
    return hmac.compare_digest(signature.encode(), expected.encode())


def generate_webhook_secret() -> str:
    """Generate a cryptographically secure webhook signing secret."""
    return f"whsec_{secrets.token_hex(24)}"


def build_delivery_headers(
    body: Payload,
    secret: str,
    event: str,
    delivery_id: str,
) -> dict[str, str]:
    """Sign a webhook body and return the headers to send with it."""
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: generate_webhook_signature(body, secret),
        EVENT_HEADER: event,
        DELIVERY_HEADER: delivery_id,
    }
