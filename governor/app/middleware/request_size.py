"""Outbound request body size guard.

Rejects request bodies above a configured size before they reach the
queue or a token bucket. Oversized bodies signal a caller bug, so the
rejection is never retried.
"""

import json
from typing import Any, Optional

from governor.app.core.logging import get_logger
from governor.app.exceptions import PayloadTooLargeError

logger = get_logger(__name__)


def measure_payload_size(body: Any) -> int:
    """Return the serialized size of a request body in bytes.

    bytes are measured as-is, str as UTF-8, anything else as its JSON
    serialization. A missing body has size 0.
    """
    if body is None:
        return 0
    if isinstance(body, (bytes, bytearray, memoryview)):
        return len(body)
    if isinstance(body, str):
        return len(body.encode("utf-8"))
    return len(json.dumps(body, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8"))


def enforce_payload_limit(size: int, max_size: int, url: Optional[str] = None) -> None:
    """Raise PayloadTooLargeError when ``size`` exceeds ``max_size``.

    Args:
        size: Serialized body size in bytes
        max_size: Maximum number of bytes allowed
        url: Request URL, for the log line and the error

    Raises:
        PayloadTooLargeError: If the body is above the limit
    """
    if size <= max_size:
        return
    logger.error(
        f"Request size limit exceeded for {url or 'request'}: {size} bytes",
        extra={"size": size, "limit": max_size},
    )
    raise PayloadTooLargeError(size=size, limit=max_size, url=url)
