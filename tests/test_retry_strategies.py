"""Tests for webhook delivery retry strategies."""

from datetime import datetime, timedelta, timezone

import pytest

from trackverse.webhooks.retry import RetryPolicy, RetryStrategy

NOW = datetime(2026, 1, 4, 12, 0, tzinfo=timezone.utc)


@pytest.mark.unit
class TestExponential:
    """Default webhook schedule: 3 attempts, 2 then 4 minutes."""

    def test_schedule(self):
        strategy = RetryStrategy.exponential()
        assert strategy.next_retry_at(1, NOW) == NOW + timedelta(minutes=2)
        assert strategy.next_retry_at(2, NOW) == NOW + timedelta(minutes=4)
        assert strategy.next_retry_at(3, NOW) is None

    def test_delay_doubles(self):
        strategy = RetryStrategy.exponential(max_attempts=10, base_delay=1.0)
        assert [strategy.compute_delay(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        strategy = RetryStrategy.exponential(max_attempts=20, base_delay=120.0, max_delay=600.0)
        assert strategy.compute_delay(10) == 600.0

    def test_should_retry(self):
        strategy = RetryStrategy.exponential(max_attempts=3)
        assert strategy.should_retry(1)
        assert strategy.should_retry(2)
        assert not strategy.should_retry(3)


@pytest.mark.unit
class TestOtherPolicies:

    def test_fixed(self):
        strategy = RetryStrategy.fixed(max_attempts=4, delay=30.0)
        assert strategy.policy == RetryPolicy.FIXED
        assert strategy.compute_delay(1) == strategy.compute_delay(3) == 30.0

    def test_none_never_retries(self):
        strategy = RetryStrategy.none()
        assert strategy.should_retry(1) is False
        assert strategy.next_retry_at(1, NOW) is None
