"""Custom exceptions for the governance layer."""

from typing import Optional


class GovernorError(Exception):
    """Base class for governance exceptions with an HTTP status analogue.

    All custom exceptions should inherit from this class and define
    their specific status_code so callers can map failures consistently
    onto their own error surfaces.
    """
    status_code: int = 500

    def __init__(self, message: str = "Governance error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(GovernorError):
    """Raised when the local bucket stays empty after the retry ceiling.

    Retryable in principle: the caller may issue the request again later.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        category: str,
        retry_count: int,
        wait_ms: int = 0,
        detail: str | None = None,
    ):
        self.category = category
        self.retry_count = retry_count
        self.wait_ms = wait_ms
        message = detail or (
            f"Rate limit exceeded for {category}. "
            f"Maximum retries reached ({retry_count})."
        )
        super().__init__(message)


class ServerRateLimitedError(GovernorError):
    """Raised by a transport when the server answered with a throttling response.

    Attributes:
        retry_after: Server hint in seconds, or None when absent
    """
    status_code = 429

    def __init__(self, retry_after: Optional[float] = None, url: str | None = None):
        self.retry_after = retry_after
        self.url = url
        message = "Server rate limit exceeded"
        if retry_after is not None:
            message += f", retry after {retry_after}s"
        super().__init__(message)


class MaxRetriesExceededError(GovernorError):
    """Raised when server throttling persists past the retry ceiling.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, category: str, attempts: int):
        self.category = category
        self.attempts = attempts
        super().__init__(
            f"Server rate limit exceeded for {category}. "
            f"Maximum retries reached ({attempts})."
        )


class PayloadTooLargeError(GovernorError):
    """Raised when a request body exceeds the configured size guard.

    Never retried. Maps to HTTP 413 Payload Too Large.
    """
    status_code = 413

    def __init__(self, size: int, limit: int, url: str | None = None):
        self.size = size
        self.limit = limit
        self.url = url
        super().__init__(
            f"Request body size ({size / 1024:.2f} KB) exceeds maximum "
            f"allowed size ({limit / 1024:.2f} KB)"
        )


class QueueClearedError(GovernorError):
    """Raised on a waiting operation evicted by ``clear_queue()``.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, operation_id: str | None = None):
        self.operation_id = operation_id
        super().__init__("Request queue cleared before the operation started")


class OperationCancelledError(GovernorError):
    """Raised when the caller's cancellation token fires before dispatch."""
    status_code = 499

    def __init__(self, key: str | None = None):
        self.key = key
        super().__init__("Operation cancelled by caller")


class DurableCacheError(GovernorError):
    """Durable cache tier failure.

    Never raised to callers: the durable write path returns it so the
    failure is logged and dropped at a single place.
    """

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Durable cache operation failed for {key}: {reason}")
