"""httpx-backed transport.

Maps HTTP 429 responses onto ``ServerRateLimitedError`` carrying the
``Retry-After`` hint so the rate limiter can back off and retry.
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from governor.app.core.config import settings
from governor.app.core.logging import get_logger
from governor.app.exceptions import ServerRateLimitedError
from governor.app.providers.base import BaseTransport

if TYPE_CHECKING:
    from governor.app.middleware.rate_limit import RateLimiter

logger = get_logger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header into seconds.

    Accepts delta-seconds or an HTTP date. Returns None when the header
    is missing or unparsable.

    Examples:
        >>> parse_retry_after("3")
        3.0
        >>> parse_retry_after(None) is None
        True
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Unparsable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class HttpxTransport(BaseTransport):
    """Transport performing requests with httpx.

    JSON responses are decoded; other responses are returned as text.
    Non-429 error statuses raise ``httpx.HTTPStatusError``.

    The retry hint header is, in order: ``retry_after_header`` when given,
    the bound rate limiter's current configuration, then settings.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        retry_after_header: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
        rate_limiter: Optional["RateLimiter"] = None,
    ):
        super().__init__(http_client, timeout or settings.httpx_timeout)
        self._retry_after_header = retry_after_header
        self.rate_limiter = rate_limiter
        self.default_headers = dict(default_headers or {})

    @property
    def retry_after_header(self) -> str:
        if self._retry_after_header:
            return self._retry_after_header
        if self.rate_limiter is not None:
            return self.rate_limiter.config.retry_after_header
        return settings.rate_limit_retry_after_header

    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        request_headers = {**self.default_headers, **(headers or {})}
        kwargs: Dict[str, Any] = {"headers": request_headers}
        if isinstance(body, (bytes, str)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body

        async with self._client_context() as client:
            response = await client.request(method, url, **kwargs)

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get(self.retry_after_header))
            logger.debug(f"Server throttled {method} {url}, retry after {retry_after}s")
            raise ServerRateLimitedError(retry_after=retry_after, url=url)

        response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            return response.json()
        return response.text
