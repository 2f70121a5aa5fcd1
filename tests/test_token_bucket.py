"""Tests for the token bucket state machine."""

import pytest

from governor.app.middleware.rate_limit import TokenBucket


class TestTokenBucket:
    """Tests for token bucket refill and consumption."""

    def test_starts_full(self, clock):
        bucket = TokenBucket(capacity=10, refill_rate=2, clock=clock)
        assert bucket.tokens == 10

    def test_consume_until_empty(self, clock):
        """Exactly capacity tokens can be taken without time passing."""
        bucket = TokenBucket(capacity=10, refill_rate=2, clock=clock)

        results = [bucket.try_consume() for _ in range(11)]

        assert results == [True] * 10 + [False]
        assert bucket.tokens == 0

    def test_failed_consume_does_not_change_tokens(self, clock):
        bucket = TokenBucket(capacity=1, refill_rate=1, clock=clock)
        bucket.try_consume()

        assert bucket.try_consume() is False
        assert bucket.tokens == 0

    def test_no_refill_before_full_interval(self, clock):
        bucket = TokenBucket(capacity=2, refill_rate=2, clock=clock)
        bucket.try_consume()
        bucket.try_consume()

        clock.advance(999)

        assert bucket.try_consume() is False

    def test_refill_after_interval(self, clock):
        bucket = TokenBucket(capacity=10, refill_rate=2, clock=clock)
        for _ in range(10):
            bucket.try_consume()

        clock.advance(1000)

        assert bucket.try_consume() is True
        assert bucket.try_consume() is True
        assert bucket.try_consume() is False

    def test_refill_is_floored(self, clock):
        """1.5 intervals at 1 token per interval adds a single token."""
        bucket = TokenBucket(capacity=5, refill_rate=1, clock=clock)
        for _ in range(5):
            bucket.try_consume()

        clock.advance(1500)

        assert bucket.try_consume() is True
        assert bucket.try_consume() is False

    def test_refill_never_exceeds_capacity(self, clock):
        bucket = TokenBucket(capacity=3, refill_rate=2, clock=clock)
        bucket.try_consume()

        clock.advance(60_000)
        bucket.try_consume()

        assert bucket.tokens == 2

    def test_tokens_stay_within_bounds(self, clock):
        bucket = TokenBucket(capacity=4, refill_rate=3, clock=clock)
        for step in range(50):
            if step % 3 == 0:
                clock.advance(700)
            bucket.try_consume()
            assert 0 <= bucket.tokens <= bucket.capacity

    def test_time_until_next_token_when_available(self, clock):
        bucket = TokenBucket(capacity=1, refill_rate=1, clock=clock)
        assert bucket.time_until_next_token() == 0

    def test_time_until_next_token_when_empty(self, clock):
        bucket = TokenBucket(capacity=10, refill_rate=2, clock=clock)
        for _ in range(10):
            bucket.try_consume()

        assert bucket.time_until_next_token() == 500

    def test_time_until_next_token_custom_interval(self, clock):
        bucket = TokenBucket(capacity=1, refill_rate=1, refill_interval_ms=60_000, clock=clock)
        bucket.try_consume()

        assert bucket.time_until_next_token() == 60_000

    def test_reconfigure_clamps_tokens(self, clock):
        bucket = TokenBucket(capacity=10, refill_rate=2, clock=clock)
        bucket.try_consume()

        bucket.reconfigure(capacity=3, refill_rate=1)

        assert bucket.capacity == 3
        assert bucket.refill_rate == 1
        assert bucket.tokens == 3

    def test_reconfigure_keeps_lower_tokens(self, clock):
        bucket = TokenBucket(capacity=10, refill_rate=2, clock=clock)
        for _ in range(9):
            bucket.try_consume()

        bucket.reconfigure(capacity=20, refill_rate=2)

        assert bucket.tokens == 1

    @pytest.mark.parametrize("capacity,rate", [(1, 0.5), (5, 1), (100, 10)])
    def test_exactly_capacity_admitted_in_burst(self, clock, capacity, rate):
        bucket = TokenBucket(capacity=capacity, refill_rate=rate, clock=clock)
        admitted = sum(1 for _ in range(capacity * 2) if bucket.try_consume())
        assert admitted == capacity
