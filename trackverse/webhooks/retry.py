"""Webhook delivery retry strategies.

Computes *when* a failed delivery should be re-attempted. Executing the
retry is the job of ``WebhookRetryWorker``.

Default policy: 3 attempts in total, exponential backoff of ``2**n``
minutes after attempt ``n`` (2, 4, then no further retry).

Usage:
    strategy = RetryStrategy.exponential(max_attempts=3, base_delay=120.0)
    if strategy.should_retry(delivery.attempts):
        delivery.next_retry_at = strategy.next_retry_at(delivery.attempts)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    NONE = "none"


@dataclass
class RetryStrategy:
    """Bounded retry schedule for webhook deliveries.

    ``base_delay`` is the delay after the first attempt, in seconds.
    """
    policy: RetryPolicy
    max_attempts: int = 3
    base_delay: float = 120.0
    max_delay: float = 3600.0

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """Single attempt, never retried."""
        return cls(policy=RetryPolicy.NONE, max_attempts=1)

    @classmethod
    def fixed(cls, max_attempts: int = 3, delay: float = 60.0) -> 'RetryStrategy':
        return cls(policy=RetryPolicy.FIXED, max_attempts=max_attempts, base_delay=delay)

    @classmethod
    def exponential(
        cls,
        max_attempts: int = 3,
        base_delay: float = 120.0,
        max_delay: float = 3600.0,
    ) -> 'RetryStrategy':
        """Delay doubles after each attempt: base, 2*base, 4*base..."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
        )

    def compute_delay(self, attempts: int) -> float:
        """Seconds to wait after ``attempts`` attempts (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempts - 1))
        else:
            delay = self.base_delay

        return min(delay, self.max_delay)

    def should_retry(self, attempts: int) -> bool:
        if self.policy == RetryPolicy.NONE:
            return False
        return attempts < self.max_attempts

    def next_retry_at(self, attempts: int, now: Optional[datetime] = None) -> Optional[datetime]:
        """When to re-attempt after ``attempts`` failures, or None when exhausted."""
        if not self.should_retry(attempts):
            return None
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=self.compute_delay(attempts))
