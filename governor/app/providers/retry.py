"""Retry policy with linear or exponential backoff.

This module provides the backoff calculation shared by local throttling
(empty token bucket) and server-reported throttling (HTTP 429).
"""

from dataclasses import dataclass
from enum import Enum


class BackoffStrategy(str, Enum):
    """How the delay grows between retry attempts."""
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


def calculate_backoff_delay(
    base_delay_ms: float,
    attempt: int,
    strategy: BackoffStrategy | str = BackoffStrategy.EXPONENTIAL,
) -> float:
    """Calculate the delay before retry ``attempt`` (0-indexed).

    exponential: base_delay * 2^attempt
    linear:      base_delay * (attempt + 1)

    Examples:
        >>> calculate_backoff_delay(500, 2, "exponential")
        2000
        >>> calculate_backoff_delay(500, 2, "linear")
        1500
    """
    if BackoffStrategy(strategy) is BackoffStrategy.EXPONENTIAL:
        return base_delay_ms * (2 ** attempt)
    return base_delay_ms * (attempt + 1)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 3)
        strategy: Backoff strategy (default: exponential)

    Example:
        >>> policy = RetryPolicy(max_retries=3)
        >>> policy.calculate_delay(500, attempt=1)
        1000
    """

    max_retries: int = 3
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    def __post_init__(self) -> None:
        self.strategy = BackoffStrategy(self.strategy)

    def calculate_delay(self, base_delay_ms: float, attempt: int) -> float:
        """Delay in milliseconds before retry ``attempt``."""
        return calculate_backoff_delay(base_delay_ms, attempt, self.strategy)

    def exhausted(self, attempt: int) -> bool:
        """True once ``attempt`` retries have already been spent."""
        return attempt >= self.max_retries


@dataclass
class RetryState:
    """Retry bookkeeping for one in-flight operation.

    Local and server throttling share the same counter. The state is
    discarded when the operation succeeds or fails for good.
    """

    key: str
    attempt: int = 0
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    def advance(self) -> int:
        self.attempt += 1
        return self.attempt
