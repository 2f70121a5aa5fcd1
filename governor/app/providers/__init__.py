"""Transport providers for the governance layer.

This package provides:
- Base transport interface (BaseTransport)
- Transport implementations (HttpxTransport, MockTransport)
- Retry and backoff policy (RetryPolicy, RetryState, BackoffStrategy)
"""

from governor.app.providers.base import BaseTransport
from governor.app.providers.httpx_transport import HttpxTransport, parse_retry_after
from governor.app.providers.mock import MockTransport
from governor.app.providers.retry import (
    BackoffStrategy,
    RetryPolicy,
    RetryState,
    calculate_backoff_delay,
)

__all__ = [
    # Base
    "BaseTransport",
    # Transports
    "HttpxTransport",
    "MockTransport",
    "parse_retry_after",
    # Retry
    "BackoffStrategy",
    "RetryPolicy",
    "RetryState",
    "calculate_backoff_delay",
]
