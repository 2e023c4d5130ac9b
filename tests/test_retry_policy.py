"""Tests for backoff curves and the attempt ceiling."""

import pytest

from services.operation_tracking.retry_policy import RetryPolicy


class TestRetryPolicy:
    def test_exponential_delays_double_until_capped(self) -> None:
        policy = RetryPolicy(max_attempts=10, strategy='exponential', max_delay=30.0)
        delays = [policy.delay(attempt, 2.0) for attempt in range(1, 7)]
        assert delays == [2.0, 4.0, 8.0, 16.0, 30.0, 30.0]

    def test_linear_delays_grow_by_interval(self) -> None:
        policy = RetryPolicy(max_attempts=10, strategy='linear', max_delay=5.0)
        assert [policy.delay(attempt, 2.0) for attempt in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]

    @pytest.mark.parametrize("strategy", RetryPolicy.STRATEGIES)
    def test_delays_are_non_decreasing_and_bounded(self, strategy) -> None:
        policy = RetryPolicy(max_attempts=3, strategy=strategy, max_delay=60.0)
        delays = [policy.delay(attempt, 2.0) for attempt in range(1, 200)]
        assert delays == sorted(delays)
        assert max(delays) <= 60.0

    def test_interval_larger_than_max_delay_is_never_shortened(self) -> None:
        policy = RetryPolicy(max_delay=1.0)
        assert policy.delay(1, 300.0) == 300.0
        assert policy.delay(8, 300.0) == 300.0

    def test_exhaustion_at_ceiling(self) -> None:
        policy = RetryPolicy(max_attempts=3)
        assert not policy.is_exhausted(2)
        assert policy.is_exhausted(3)
        assert policy.is_exhausted(4)

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"max_attempts": 2}, "at least 3"),
            ({"strategy": "fibonacci"}, "Unknown backoff strategy"),
            ({"max_delay": 0}, "positive"),
        ],
    )
    def test_invalid_settings_rejected(self, kwargs, message) -> None:
        with pytest.raises(ValueError, match=message):
            RetryPolicy(**kwargs)

    def test_from_settings_reads_tracking_keys(self) -> None:
        policy = RetryPolicy.from_settings(
            {'max_attempts': 4, 'backoff_strategy': 'linear', 'max_backoff': 12}
        )
        assert (policy.max_attempts, policy.strategy, policy.max_delay) == (4, 'linear', 12.0)
