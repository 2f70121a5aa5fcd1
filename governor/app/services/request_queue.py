"""Priority request queue with bounded concurrency.

This module bounds how many outbound operations execute at once and
drains waiting operations highest priority first. It is the backpressure
mechanism of the governance layer: when every slot is busy, new work
waits here until a running operation finishes.

Priority convention: a larger integer runs sooner. Ties run in arrival
order.
"""

import asyncio
import heapq
import itertools
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from governor.app.core.config import settings
from governor.app.core.logging import get_log_context, get_logger
from governor.app.exceptions import QueueClearedError

logger = get_logger(__name__)


@dataclass
class QueuedOperation:
    """A unit of work waiting for, or holding, a concurrency slot."""
    id: str
    priority: int
    factory: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)


class PriorityRequestQueue:
    """Concurrency-bounded queue ordered by caller priority.

    Design:
    - At most ``max_concurrency`` operations run simultaneously
    - Waiting operations are kept in a heap on (-priority, arrival)
    - Every completion frees a slot and drains the queue again
    - Only waiting operations can be cleared; running ones finish

    Usage:
        queue = PriorityRequestQueue(max_concurrency=4)

        result = await queue.enqueue(lambda: fetch_card("42"), priority=5)
    """

    DEFAULT_MAX_CONCURRENCY = 4

    def __init__(self, max_concurrency: Optional[int] = None):
        """Initialize the queue.

        Args:
            max_concurrency: Maximum concurrently executing operations
                (defaults to settings.queue_max_concurrency)
        """
        limit = max_concurrency if max_concurrency is not None else settings.queue_max_concurrency
        if limit < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = limit

        self._waiting: list[tuple[int, int, QueuedOperation]] = []
        self._sequence = itertools.count()
        self._active = 0
        self._tasks: set[asyncio.Task] = set()

        # Counters for monitoring
        self._total_processed = 0
        self._total_failed = 0
        self._total_cleared = 0

    def enqueue(
        self,
        factory: Callable[[], Awaitable[Any]],
        priority: int = 0,
        operation_id: Optional[str] = None,
    ) -> asyncio.Future:
        """Queue an operation and return a future for its outcome.

        The future resolves or fails exactly once, mirroring the operation.
        Must be called from within a running event loop.

        Args:
            factory: Zero-argument callable returning an awaitable
            priority: Larger runs sooner; ties keep arrival order
            operation_id: Identifier for logs (generated when omitted)

        Returns:
            Future holding the operation's result or exception
        """
        loop = asyncio.get_running_loop()
        operation = QueuedOperation(
            id=operation_id or uuid.uuid4().hex[:12],
            priority=priority,
            factory=factory,
            future=loop.create_future(),
        )
        heapq.heappush(self._waiting, (-priority, next(self._sequence), operation))
        logger.debug(
            f"Queued operation {operation.id}",
            extra=get_log_context(operation_id=operation.id, priority=priority),
        )
        self._drain()
        return operation.future

    def _drain(self) -> None:
        while self._active < self.max_concurrency and self._waiting:
            _, _, operation = heapq.heappop(self._waiting)
            if operation.future.done():
                # Caller stopped waiting before the operation started.
                continue
            self._active += 1
            task = asyncio.ensure_future(self._run(operation))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, operation: QueuedOperation) -> None:
        try:
            result = await operation.factory()
        except asyncio.CancelledError:
            operation.future.cancel()
            raise
        except Exception as exc:
            self._total_failed += 1
            if not operation.future.done():
                operation.future.set_exception(exc)
        else:
            if not operation.future.done():
                operation.future.set_result(result)
        finally:
            self._active -= 1
            self._total_processed += 1
            self._drain()

    def clear_queue(self) -> int:
        """Fail every waiting operation with QueueClearedError.

        Running operations are unaffected and complete normally.

        Returns:
            Number of operations cleared
        """
        cleared = 0
        waiting, self._waiting = self._waiting, []
        for _, _, operation in waiting:
            if not operation.future.done():
                operation.future.set_exception(QueueClearedError(operation.id))
                cleared += 1
        self._total_cleared += cleared
        if cleared:
            logger.info(f"Request queue cleared, failed {cleared} waiting operations")
        return cleared

    def set_max_concurrency(self, max_concurrency: int) -> None:
        """Change the concurrency limit; a raise takes effect immediately."""
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._drain()

    def queue_size(self) -> int:
        """Number of operations waiting for a slot."""
        return sum(1 for _, _, op in self._waiting if not op.future.done())

    def active_count(self) -> int:
        """Number of operations currently executing."""
        return self._active

    async def wait_idle(self) -> None:
        """Wait until no operation is running or waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_stats(self) -> dict:
        """Get current queue statistics."""
        return {
            "active": self._active,
            "waiting": self.queue_size(),
            "limit": self.max_concurrency,
            "available": max(0, self.max_concurrency - self._active),
            "utilization": round(self._active / self.max_concurrency, 4),
            "total_processed": self._total_processed,
            "total_failed": self._total_failed,
            "total_cleared": self._total_cleared,
        }
