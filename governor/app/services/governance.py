"""Outbound request governance.

``GovernanceLayer`` composes the tiered cache, the priority queue and the
rate limiter into the single operation data-loading code calls:

    cache lookup -> queue admission -> rate limit admission
        -> transport call -> cache write-through

One instance is created at startup and passed to every collaborator; it
holds all governance state.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from governor.app.core.config import settings
from governor.app.core.logging import get_log_context, get_logger
from governor.app.exceptions import OperationCancelledError
from governor.app.middleware.rate_limit import (
    EndpointPattern,
    EndpointRateLimit,
    RateLimiter,
    RequestDescriptor,
)
from governor.app.providers.base import BaseTransport
from governor.app.providers.httpx_transport import HttpxTransport
from governor.app.providers.retry import BackoffStrategy, RetryState
from governor.app.services.request_queue import PriorityRequestQueue
from governor.app.services.tiered_cache import TieredCache

logger = get_logger(__name__)

TransportCall = Callable[[], Awaitable[Any]]


def _consume_outcome(future: asyncio.Future) -> None:
    # Mark the exception retrieved; the caller that wanted it has left.
    if not future.cancelled():
        future.exception()


class _Flight:
    """One shared execution and the cancel tokens of every caller awaiting it.

    Passed to the rate limiter as the execution's cancel token: it reads
    as set only when every caller has supplied a token and all of them
    have fired.
    """

    def __init__(self):
        self.future: Optional[asyncio.Future] = None
        self._tokens: list[Optional[asyncio.Event]] = []

    def join(self, cancel_token: Optional[asyncio.Event]) -> None:
        self._tokens.append(cancel_token)

    def is_set(self) -> bool:
        return bool(self._tokens) and all(
            token is not None and token.is_set() for token in self._tokens
        )


class GovernanceLayer:
    """Rate-limited, concurrency-bounded, cached execution of outbound calls.

    Usage:
        layer = GovernanceLayer(transport=HttpxTransport(client))
        layer.configure_rate_limit("api", capacity=10, refill_rate_per_second=2)

        card = await layer.issue(
            "cards:42", "api", priority=5,
            transport_call=lambda: client_api.get_card(42),
        )
    """

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        queue: Optional[PriorityRequestQueue] = None,
        cache: Optional[TieredCache] = None,
        transport: Optional[BaseTransport] = None,
        cache_enabled: Optional[bool] = None,
    ):
        """Initialize the layer.

        Args:
            rate_limiter: Rate limiter (defaults to one built from settings)
            queue: Request queue (defaults to one built from settings)
            cache: Tiered cache (defaults to a fast-tier-only cache)
            transport: Transport used by ``fetch``
            cache_enabled: Serve and populate the cache (defaults to settings)
        """
        self._rate_limiter = rate_limiter or RateLimiter()
        self._queue = queue or PriorityRequestQueue()
        self._cache = cache or TieredCache()
        self._transport = transport
        if isinstance(transport, HttpxTransport) and transport.rate_limiter is None:
            # 429 handling follows the limiter's live Retry-After header name.
            transport.rate_limiter = self._rate_limiter
        self.cache_enabled = settings.cache_enabled if cache_enabled is None else cache_enabled
        self._inflight: Dict[str, _Flight] = {}

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def queue(self) -> PriorityRequestQueue:
        return self._queue

    @property
    def cache(self) -> TieredCache:
        return self._cache

    @property
    def transport(self) -> Optional[BaseTransport]:
        return self._transport

    async def issue(
        self,
        key: Optional[str],
        category: Optional[str],
        priority: int,
        transport_call: TransportCall,
        *,
        url: Optional[str] = None,
        body: Any = None,
        method: str = "GET",
        version: Optional[str] = None,
        cancel_token: Optional[asyncio.Event] = None,
    ) -> Any:
        """Run one governed operation.

        A valid cached value for ``key`` is returned without touching the
        queue or the rate limiter. Concurrent calls for the same key share
        one execution and its outcome. A ``key`` of None disables caching.

        Args:
            key: Cache key identifying the resource, or None for uncached work
            category: Rate limit category (else the URL origin is used)
            priority: Larger runs sooner when the queue is saturated
            transport_call: Zero-argument coroutine factory doing the network call
            url: Request URL for endpoint overrides and origin buckets
            body: Request body, checked against the payload size guard
            method: HTTP method, informational
            version: Version tag stored with the cached result
            cancel_token: Event that cancels this caller's wait; a shared
                execution is abandoned only once every caller sharing it cancelled

        Returns:
            The transport call's result (or the cached data)

        Raises:
            PayloadTooLargeError: Body above the size guard; never queued
            RateLimitExceededError: Local bucket exhausted past the retry ceiling
            MaxRetriesExceededError: Server throttling past the retry ceiling
            QueueClearedError: Evicted from the queue by ``clear_queue``
            OperationCancelledError: ``cancel_token`` fired before the outcome arrived
            Exception: Transport failures, unchanged
        """
        if cancel_token is not None and cancel_token.is_set():
            raise OperationCancelledError(key)

        if key is not None and self.cache_enabled:
            entry = self._cache.get_fast(key)
            if entry is None:
                entry = await self._cache.get_durable(key)
            if entry is not None:
                return entry.data

            flight = self._inflight.get(key)
            if flight is not None:
                logger.debug(
                    f"Joining in-flight request for {key}",
                    extra=get_log_context(cache_key=key),
                )
                flight.join(cancel_token)
                return await self._wait_for(flight.future, cancel_token, key)

        request = RequestDescriptor(category=category, url=url, body=body, method=method)
        self._rate_limiter.check_payload(request)

        if key is None or not self.cache_enabled:
            future = self._queue.enqueue(
                lambda: self._dispatch(request, transport_call, key, version, cancel_token),
                priority=priority,
                operation_id=key,
            )
            return await self._wait_for(future, cancel_token, key)

        # The shared execution is cancelled only once every caller has cancelled.
        flight = _Flight()
        flight.join(cancel_token)
        flight.future = self._queue.enqueue(
            lambda: self._dispatch(request, transport_call, key, version, flight),
            priority=priority,
            operation_id=key,
        )
        self._inflight[key] = flight
        flight.future.add_done_callback(lambda done: self._forget_inflight(key, flight))
        return await self._wait_for(flight.future, cancel_token, key)

    async def _wait_for(
        self,
        future: asyncio.Future,
        cancel_token: Optional[asyncio.Event],
        key: Optional[str],
    ) -> Any:
        """Await a queued outcome, giving up early when this caller cancels."""
        if cancel_token is None:
            return await asyncio.shield(future)

        shared = asyncio.shield(future)
        cancelled = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait({shared, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
        if shared.done():
            return shared.result()

        shared.cancel()
        future.add_done_callback(_consume_outcome)
        raise OperationCancelledError(key)

    def _forget_inflight(self, key: str, flight: _Flight) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]

    async def _dispatch(
        self,
        request: RequestDescriptor,
        transport_call: TransportCall,
        key: Optional[str],
        version: Optional[str],
        cancel_token: Optional[asyncio.Event | _Flight],
    ) -> Any:
        if cancel_token is not None and cancel_token.is_set():
            raise OperationCancelledError(key)

        category = self._rate_limiter.resolve_category(request)
        state = RetryState(
            key=key or category,
            strategy=self._rate_limiter.retry_policy_for(category).strategy,
        )
        result = await self._rate_limiter.execute(request, transport_call, state, cancel_token)

        if key is not None and self.cache_enabled:
            self._cache.set(key, result, version=version)
        return result

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        body: Any = None,
        priority: int = 0,
        key: Optional[str] = None,
        category: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        cancel_token: Optional[asyncio.Event] = None,
    ) -> Any:
        """Issue a request through the configured transport.

        GET requests are cached under ``GET:<url>`` unless ``key`` is given;
        other methods are only cached when ``key`` is given.
        """
        if self._transport is None:
            raise RuntimeError("No transport configured for this governance layer")

        method = method.upper()
        if key is None and method == "GET":
            key = f"GET:{url}"

        transport = self._transport
        return await self.issue(
            key,
            category,
            priority,
            lambda: transport.send(method, url, body=body, headers=headers),
            url=url,
            body=body,
            method=method,
            cancel_token=cancel_token,
        )

    def configure_rate_limit(
        self,
        category: str,
        capacity: Optional[int] = None,
        refill_rate_per_second: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_strategy: Optional[BackoffStrategy | str] = None,
    ) -> None:
        """Set the limits for one rate limit category."""
        self._rate_limiter.configure_category(
            category,
            capacity=capacity,
            refill_rate=refill_rate_per_second,
            max_retries=max_retries,
            backoff=backoff_strategy,
        )

    def configure_endpoint_override(
        self,
        pattern: EndpointPattern | str,
        capacity: int,
        refill_rate_per_second: float,
    ) -> EndpointRateLimit:
        """Append an endpoint override; the first matching override wins."""
        return self._rate_limiter.add_endpoint_override(pattern, capacity, refill_rate_per_second)

    async def clear_cache(self, key: str) -> bool:
        return await self._cache.delete(key)

    async def clear_all_cache(self) -> None:
        await self._cache.clear()

    def cache_size(self) -> int:
        return self._cache.size()

    def queue_size(self) -> int:
        return self._queue.queue_size()

    def active_count(self) -> int:
        return self._queue.active_count()

    def clear_queue(self) -> int:
        return self._queue.clear_queue()

    def get_stats(self) -> dict:
        """Statistics of every component, for monitoring."""
        return {
            "rate_limit": self._rate_limiter.get_stats(),
            "queue": self._queue.get_stats(),
            "cache": self._cache.get_stats(),
            "inflight": len(self._inflight),
        }

    async def aclose(self) -> None:
        """Let running work finish, then release cache and transport resources."""
        await self._queue.wait_idle()
        await self._cache.close()
        if self._transport is not None:
            await self._transport.aclose()
