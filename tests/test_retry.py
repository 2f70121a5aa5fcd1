"""Tests for backoff calculation and retry bookkeeping."""

import pytest

from governor.app.providers.retry import (
    BackoffStrategy,
    RetryPolicy,
    RetryState,
    calculate_backoff_delay,
)


class TestCalculateBackoffDelay:
    """Test the delay formulas."""

    def test_exponential(self):
        delays = [calculate_backoff_delay(500, attempt, "exponential") for attempt in range(3)]
        assert delays == [500, 1000, 2000]

    def test_linear(self):
        delays = [calculate_backoff_delay(500, attempt, BackoffStrategy.LINEAR) for attempt in range(3)]
        assert delays == [500, 1000, 1500]

    def test_default_is_exponential(self):
        assert calculate_backoff_delay(100, 3) == 800

    def test_zero_base(self):
        assert calculate_backoff_delay(0, 5) == 0

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            calculate_backoff_delay(100, 0, "fibonacci")


class TestRetryPolicy:
    """Test RetryPolicy configuration."""

    def test_default_values(self):
        policy = RetryPolicy()

        assert policy.max_retries == 3
        assert policy.strategy is BackoffStrategy.EXPONENTIAL

    def test_strategy_coerced_from_string(self):
        policy = RetryPolicy(max_retries=2, strategy="linear")
        assert policy.strategy is BackoffStrategy.LINEAR

    def test_calculate_delay(self):
        policy = RetryPolicy(strategy="linear")
        assert policy.calculate_delay(250, attempt=3) == 1000

    def test_exhausted(self):
        policy = RetryPolicy(max_retries=2)

        assert policy.exhausted(0) is False
        assert policy.exhausted(1) is False
        assert policy.exhausted(2) is True

    def test_zero_retries_exhausted_immediately(self):
        assert RetryPolicy(max_retries=0).exhausted(0) is True


class TestRetryState:
    """Test retry counter bookkeeping."""

    def test_starts_at_zero(self):
        state = RetryState(key="api")
        assert state.attempt == 0

    def test_advance(self):
        state = RetryState(key="api")

        assert state.advance() == 1
        assert state.advance() == 2
        assert state.attempt == 2
