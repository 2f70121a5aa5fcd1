"""Mock transport for development and testing.

Returns canned payloads without making network calls and can simulate
latency, server throttling and failures.
"""

import asyncio
import random
from typing import Any, Dict, List, Optional, Tuple

from governor.app.exceptions import ServerRateLimitedError
from governor.app.providers.base import BaseTransport


class MockTransport(BaseTransport):
    """Transport that answers from a URL -> payload map.

    Features:
    - Simulated response delay (uniform between min and max)
    - A number of leading 429 responses with a retry hint
    - Configurable failure rate for testing error handling
    - Records every call for assertions
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Any]] = None,
        min_delay: float = 0.0,
        max_delay: float = 0.0,
        rate_limited_responses: int = 0,
        retry_after: Optional[float] = None,
        failure_rate: float = 0.0,
    ):
        """Initialize the mock transport.

        Args:
            responses: Payload to return per URL; unknown URLs echo the request
            min_delay: Minimum response delay in seconds
            max_delay: Maximum response delay in seconds
            rate_limited_responses: How many calls answer with throttling first
            retry_after: Retry hint in seconds sent with throttling responses
            failure_rate: Probability of raising a simulated failure (0-1)
        """
        super().__init__()
        self.responses = dict(responses or {})
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.rate_limited_responses = rate_limited_responses
        self.retry_after = retry_after
        self.failure_rate = failure_rate
        self.calls: List[Tuple[str, str, Any]] = []

    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        self.calls.append((method, url, body))

        delay = random.uniform(self.min_delay, self.max_delay)
        if delay > 0:
            await asyncio.sleep(delay)

        if self.rate_limited_responses > 0:
            self.rate_limited_responses -= 1
            raise ServerRateLimitedError(retry_after=self.retry_after, url=url)

        if self.failure_rate and random.random() < self.failure_rate:
            raise ConnectionError("Simulated transport failure")

        if url in self.responses:
            return self.responses[url]
        return {"method": method, "url": url, "body": body}
