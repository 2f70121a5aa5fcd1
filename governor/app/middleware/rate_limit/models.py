"""Rate limiting data models.

This module contains the token bucket state machine and the dataclasses
describing rate limit configuration, requests and admission decisions.
"""

import math
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Optional

from governor.app.core.config import settings
from governor.app.core.utils import Clock, now_ms
from governor.app.middleware.rate_limit.patterns import EndpointPattern, as_pattern
from governor.app.middleware.request_size import measure_payload_size
from governor.app.providers.retry import BackoffStrategy


class TokenBucket:
    """Token bucket for a single rate-limited key.

    Holds up to ``capacity`` tokens. Every ``refill_interval_ms`` of elapsed
    time adds ``refill_rate`` tokens; refill happens lazily on each call
    and is a no-op until a full interval has passed.

    Invariant: 0 <= tokens <= capacity. Tokens only decrease through a
    successful ``try_consume``, by exactly one.
    """

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        refill_interval_ms: int = 1000,
        clock: Clock = now_ms,
    ):
        """Initialize a full bucket.

        Args:
            capacity: Maximum tokens held
            refill_rate: Tokens added per refill interval (per second by default)
            refill_interval_ms: Refill granularity in milliseconds
            clock: Returns the current time in milliseconds
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.refill_interval_ms = refill_interval_ms
        self._clock = clock
        self.tokens: float = float(capacity)
        self.last_refill_at: float = clock()

    def try_consume(self) -> bool:
        """Take one token if available.

        Returns:
            True if a token was consumed, False if the bucket is empty
        """
        self._refill()
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    def time_until_next_token(self) -> int:
        """Milliseconds until a token is available (0 if one is now)."""
        self._refill()
        if self.tokens >= 1:
            return 0
        tokens_needed = 1 - self.tokens
        return math.ceil(tokens_needed / self.refill_rate * self.refill_interval_ms)

    def reconfigure(self, capacity: int, refill_rate: float) -> None:
        """Apply new limits, clamping held tokens to the new capacity."""
        self._refill()
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = min(self.tokens, float(capacity))

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill_at
        if elapsed >= self.refill_interval_ms:
            tokens_to_add = math.floor(elapsed / self.refill_interval_ms * self.refill_rate)
            self.tokens = min(float(self.capacity), self.tokens + tokens_to_add)
            self.last_refill_at = now

    def __repr__(self) -> str:
        return (
            f"TokenBucket(capacity={self.capacity}, refill_rate={self.refill_rate}, "
            f"tokens={self.tokens})"
        )


@dataclass(frozen=True)
class EndpointRateLimit:
    """Per-endpoint override; the first matching pattern wins."""
    pattern: EndpointPattern
    capacity: int
    refill_rate: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", as_pattern(self.pattern))


@dataclass(frozen=True)
class CategoryLimit:
    """Per-category settings; unset fields fall back to the global config."""
    capacity: Optional[int] = None
    refill_rate: Optional[float] = None
    max_retries: Optional[int] = None
    backoff: Optional[BackoffStrategy] = None


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiter configuration.

    Immutable: ``RateLimiter.configure`` swaps in a new instance so that an
    admission check always sees one consistent configuration.
    """
    capacity: int = 10
    refill_rate: float = 2.0
    refill_interval_ms: int = 1000
    enabled: bool = True
    max_retries: int = 3
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    retry_after_header: str = "Retry-After"
    default_retry_after_ms: int = 1000
    max_payload_bytes: int = 1024 * 1024
    endpoints: tuple[EndpointRateLimit, ...] = ()

    @classmethod
    def from_settings(cls) -> "RateLimitConfig":
        return cls(
            capacity=settings.rate_limit_capacity,
            refill_rate=settings.rate_limit_refill_rate,
            refill_interval_ms=settings.rate_limit_refill_interval_ms,
            enabled=settings.rate_limit_enabled,
            max_retries=settings.rate_limit_max_retries,
            backoff=BackoffStrategy(settings.rate_limit_backoff),
            retry_after_header=settings.rate_limit_retry_after_header,
            default_retry_after_ms=settings.rate_limit_default_retry_after_ms,
            max_payload_bytes=settings.max_payload_bytes,
        )


@dataclass
class RequestDescriptor:
    """What the rate limiter needs to know about one outbound operation.

    Attributes:
        category: Explicit rate limit category; used as the bucket key when
            no URL is given
        url: Request URL; its origin is the default bucket key
        body: Request body, measured for the payload guard
        method: HTTP method, informational
    """
    category: Optional[str] = None
    url: Optional[str] = None
    body: Any = None
    method: str = "GET"

    @property
    def target(self) -> str:
        """The string endpoint patterns are matched against."""
        return self.url or self.category or ""

    @cached_property
    def payload_size(self) -> int:
        return measure_payload_size(self.body)


@dataclass
class Decision:
    """Result of one admission check."""
    allowed: bool
    category: str
    wait_ms: int = 0
    delay_ms: float = 0
    attempt: int = 0
    exhausted: bool = False

    @property
    def rejected(self) -> bool:
        return not self.allowed and self.exhausted


@dataclass
class RateLimitStats:
    """Counters for monitoring."""
    admitted: int = 0
    throttled: int = 0
    rejected: int = 0
    server_throttled: int = 0
    payload_rejected: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
