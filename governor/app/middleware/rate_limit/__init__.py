"""Client-side rate limiting for outbound operations.

This module gates every outbound operation through a token bucket chosen
by endpoint override or request category, retries with backoff when the
bucket is empty or the server reports throttling, and enforces the
outbound payload size guard.
"""

import asyncio
import dataclasses
from typing import Any, Awaitable, Callable, Optional, TypeVar

from governor.app.core.logging import get_log_context, get_logger
from governor.app.core.utils import Clock, now_ms, url_origin
from governor.app.exceptions import (
    MaxRetriesExceededError,
    OperationCancelledError,
    PayloadTooLargeError,
    RateLimitExceededError,
    ServerRateLimitedError,
)
from governor.app.middleware.rate_limit.models import (
    CategoryLimit,
    Decision,
    EndpointRateLimit,
    RateLimitConfig,
    RateLimitStats,
    RequestDescriptor,
    TokenBucket,
)
from governor.app.middleware.rate_limit.patterns import (
    EndpointPattern,
    LiteralPattern,
    RegexPattern,
    as_pattern,
    match_pattern,
)
from governor.app.middleware.request_size import enforce_payload_limit
from governor.app.providers.retry import BackoffStrategy, RetryPolicy, RetryState

logger = get_logger(__name__)

T = TypeVar("T")

__all__ = [
    # Models
    "CategoryLimit",
    "Decision",
    "EndpointRateLimit",
    "RateLimitConfig",
    "RequestDescriptor",
    "TokenBucket",
    # Patterns
    "EndpointPattern",
    "LiteralPattern",
    "RegexPattern",
    "match_pattern",
    # Main class
    "RateLimiter",
]


class RateLimiter:
    """Token bucket rate limiter keyed by request category.

    Bucket selection:
    - The first endpoint override whose pattern matches the request target
      (URL, else category) selects an ``endpoint:<pattern>`` bucket
    - Otherwise an explicit category names the bucket
    - Otherwise the origin of the request URL does

    Buckets are created lazily and live for the lifetime of the limiter.

    Usage:
        limiter = RateLimiter()
        limiter.configure_category("api", capacity=10, refill_rate=2)

        result = await limiter.execute(
            RequestDescriptor(category="api"),
            lambda: transport.send(request),
        )
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Clock = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the rate limiter.

        Args:
            config: Initial configuration (defaults to settings)
            clock: Returns the current time in milliseconds
            sleep: Coroutine used for backoff waits, in seconds
        """
        self._config = config or RateLimitConfig.from_settings()
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}
        self._categories: dict[str, CategoryLimit] = {}
        self._stats = RateLimitStats()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def configure(self, **changes: Any) -> RateLimitConfig:
        """Merge ``changes`` over the current configuration.

        The new configuration applies to admission checks that start after
        this call; checks already in progress keep the old one.

        Returns:
            The new configuration
        """
        if "backoff" in changes:
            changes["backoff"] = BackoffStrategy(changes["backoff"])
        if "endpoints" in changes:
            changes["endpoints"] = tuple(
                e if isinstance(e, EndpointRateLimit) else EndpointRateLimit(**e)
                for e in changes["endpoints"]
            )
        self._config = dataclasses.replace(self._config, **changes)
        logger.info(
            "Rate limiting configured",
            extra={"changes": sorted(changes)},
        )
        return self._config

    def configure_category(
        self,
        category: str,
        capacity: Optional[int] = None,
        refill_rate: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[BackoffStrategy | str] = None,
    ) -> CategoryLimit:
        """Set limits for one category, merged over earlier settings for it.

        An existing bucket for the category is reconfigured in place.
        """
        current = self._categories.get(category, CategoryLimit())
        limit = CategoryLimit(
            capacity=capacity if capacity is not None else current.capacity,
            refill_rate=refill_rate if refill_rate is not None else current.refill_rate,
            max_retries=max_retries if max_retries is not None else current.max_retries,
            backoff=BackoffStrategy(backoff) if backoff is not None else current.backoff,
        )
        self._categories[category] = limit

        bucket = self._buckets.get(category)
        if bucket is not None:
            bucket.reconfigure(
                limit.capacity or self._config.capacity,
                limit.refill_rate or self._config.refill_rate,
            )
        logger.info(
            f"Rate limit configured for category {category}",
            extra=get_log_context(category=category),
        )
        return limit

    def add_endpoint_override(
        self,
        pattern: EndpointPattern | str,
        capacity: int,
        refill_rate: float,
    ) -> EndpointRateLimit:
        """Append an endpoint override; earlier overrides take precedence."""
        override = EndpointRateLimit(
            pattern=as_pattern(pattern), capacity=capacity, refill_rate=refill_rate
        )
        self.configure(endpoints=self._config.endpoints + (override,))
        return override

    def resolve_category(self, request: RequestDescriptor) -> str:
        """Return the bucket key a request is counted against."""
        return self._resolve(request, self._config)[0]

    def _resolve(
        self, request: RequestDescriptor, config: RateLimitConfig
    ) -> tuple[str, int, float]:
        target = request.target
        for endpoint in config.endpoints:
            if match_pattern(endpoint.pattern, target):
                return endpoint.pattern.bucket_key, endpoint.capacity, endpoint.refill_rate

        key = request.category or (url_origin(request.url) if request.url else "default")
        limit = self._categories.get(key)
        capacity = config.capacity
        refill_rate = config.refill_rate
        if limit is not None:
            capacity = limit.capacity or capacity
            refill_rate = limit.refill_rate or refill_rate
        return key, capacity, refill_rate

    def _get_bucket(self, request: RequestDescriptor, config: RateLimitConfig) -> tuple[str, TokenBucket]:
        key, capacity, refill_rate = self._resolve(request, config)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(
                capacity,
                refill_rate,
                refill_interval_ms=config.refill_interval_ms,
                clock=self._clock,
            )
            self._buckets[key] = bucket
            logger.debug(f"Created token bucket for {key}", extra=get_log_context(category=key))
        return key, bucket

    def retry_policy_for(self, category: str) -> RetryPolicy:
        """Retry policy for a bucket key: category overrides, else global."""
        config = self._config
        limit = self._categories.get(category, CategoryLimit())
        return RetryPolicy(
            max_retries=limit.max_retries if limit.max_retries is not None else config.max_retries,
            strategy=limit.backoff or config.backoff,
        )

    def check_payload(self, request: RequestDescriptor) -> None:
        """Enforce the outbound payload size guard.

        Raises:
            PayloadTooLargeError: Never retried; bypasses buckets and backoff
        """
        try:
            enforce_payload_limit(request.payload_size, self._config.max_payload_bytes, request.url)
        except PayloadTooLargeError:
            self._stats.payload_rejected += 1
            raise

    def admit(self, request: RequestDescriptor, attempt: int = 0) -> Decision:
        """Run one admission check against the request's bucket.

        Args:
            request: The operation being admitted
            attempt: Retries already spent on this operation

        Returns:
            Decision: allowed, throttled with a backoff delay, or exhausted
        """
        config = self._config
        if not config.enabled:
            return Decision(allowed=True, category=self._resolve(request, config)[0], attempt=attempt)

        key, bucket = self._get_bucket(request, config)
        if bucket.try_consume():
            self._stats.admitted += 1
            self._stats.by_category[key] = self._stats.by_category.get(key, 0) + 1
            return Decision(allowed=True, category=key, attempt=attempt)

        wait_ms = bucket.time_until_next_token()
        policy = self.retry_policy_for(key)
        if policy.exhausted(attempt):
            self._stats.rejected += 1
            logger.error(
                f"Rate limit exceeded for {key} after {attempt} retries",
                extra=get_log_context(category=key, attempt=attempt),
            )
            return Decision(
                allowed=False, category=key, wait_ms=wait_ms, attempt=attempt, exhausted=True
            )

        delay_ms = policy.calculate_delay(wait_ms, attempt)
        self._stats.throttled += 1
        logger.warning(
            f"Rate limit exceeded for {key}. "
            f"Retry {attempt + 1}/{policy.max_retries} after {delay_ms}ms",
            extra=get_log_context(category=key, attempt=attempt, delay_ms=delay_ms),
        )
        return Decision(
            allowed=False, category=key, wait_ms=wait_ms, delay_ms=delay_ms, attempt=attempt
        )

    async def acquire(
        self,
        request: RequestDescriptor,
        state: RetryState,
        cancel_token: Optional[asyncio.Event] = None,
    ) -> Decision:
        """Wait until the request is admitted, backing off between checks.

        Raises:
            RateLimitExceededError: If the bucket is still empty at the retry ceiling
            OperationCancelledError: If ``cancel_token`` fires during a wait
        """
        while True:
            decision = self.admit(request, state.attempt)
            if decision.allowed:
                return decision
            if decision.exhausted:
                raise RateLimitExceededError(
                    category=decision.category,
                    retry_count=state.attempt,
                    wait_ms=decision.wait_ms,
                )
            await self._backoff(decision.delay_ms, cancel_token, state.key)
            state.advance()

    async def execute(
        self,
        request: RequestDescriptor,
        call: Callable[[], Awaitable[T]],
        state: Optional[RetryState] = None,
        cancel_token: Optional[asyncio.Event] = None,
    ) -> T:
        """Admit and run ``call``, retrying on server throttling.

        Args:
            request: Descriptor used for bucket selection and the payload guard
            call: Zero-argument coroutine factory performing the transport call
            state: Retry bookkeeping, created here when not given
            cancel_token: Cancels the operation while it waits for admission

        Returns:
            Whatever ``call`` returns

        Raises:
            PayloadTooLargeError: Body above the size guard
            RateLimitExceededError: Local bucket exhausted past the retry ceiling
            MaxRetriesExceededError: Server kept throttling past the retry ceiling
            Exception: Any other transport failure, unchanged
        """
        self.check_payload(request)
        if state is None:
            category = self.resolve_category(request)
            state = RetryState(key=category, strategy=self.retry_policy_for(category).strategy)

        while True:
            decision = await self.acquire(request, state, cancel_token)
            try:
                return await call()
            except ServerRateLimitedError as exc:
                self._stats.server_throttled += 1
                policy = self.retry_policy_for(decision.category)
                if policy.exhausted(state.attempt):
                    logger.error(
                        f"Server rate limit exceeded. Maximum retries reached for {decision.category}",
                        extra=get_log_context(category=decision.category, attempt=state.attempt),
                    )
                    raise MaxRetriesExceededError(decision.category, state.attempt) from exc

                if exc.retry_after is not None:
                    hint_ms = exc.retry_after * 1000
                else:
                    hint_ms = self._config.default_retry_after_ms
                delay_ms = policy.calculate_delay(hint_ms, state.attempt)
                logger.warning(
                    f"Server rate limit exceeded. "
                    f"Retry {state.attempt + 1}/{policy.max_retries} after {delay_ms}ms",
                    extra=get_log_context(
                        category=decision.category, attempt=state.attempt, delay_ms=delay_ms
                    ),
                )
                # The transport call already ran, so this wait is not cancellable.
                await self._backoff(delay_ms, None, state.key)
                state.advance()

    async def _backoff(
        self, delay_ms: float, cancel_token: Optional[asyncio.Event], key: str
    ) -> None:
        if cancel_token is not None and cancel_token.is_set():
            raise OperationCancelledError(key)
        await self._sleep(delay_ms / 1000)
        if cancel_token is not None and cancel_token.is_set():
            raise OperationCancelledError(key)

    def bucket_count(self) -> int:
        return len(self._buckets)

    def get_stats(self) -> dict:
        """Get current limiter statistics."""
        return {
            "enabled": self._config.enabled,
            "buckets": len(self._buckets),
            "admitted": self._stats.admitted,
            "throttled": self._stats.throttled,
            "rejected": self._stats.rejected,
            "server_throttled": self._stats.server_throttled,
            "payload_rejected": self._stats.payload_rejected,
            "by_category": dict(self._stats.by_category),
        }
