"""Services package for the governance layer.

This package provides:
- Priority request queue with bounded concurrency
- Two-tier read cache with write-through to a durable backend
- The governance layer composing cache, queue and rate limiter
"""

from governor.app.services.governance import GovernanceLayer
from governor.app.services.request_queue import PriorityRequestQueue, QueuedOperation
from governor.app.services.tiered_cache import CacheEntry, TieredCache

__all__ = [
    "CacheEntry",
    "GovernanceLayer",
    "PriorityRequestQueue",
    "QueuedOperation",
    "TieredCache",
]
