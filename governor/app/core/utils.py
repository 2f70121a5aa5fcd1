"""Utility functions for the governance layer."""

import time
from typing import Callable
from urllib.parse import urlsplit

# Clock returning epoch milliseconds; injected so tests can drive time.
Clock = Callable[[], float]


def now_ms() -> float:
    """Return the current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


def url_origin(url: str) -> str:
    """Return the ``scheme://host[:port]`` origin of a URL.

    Falls back to the full string when the URL has no scheme or host.

    Examples:
        >>> url_origin("https://api.example.com:8443/v1/cards?id=1")
        'https://api.example.com:8443'
        >>> url_origin("/relative/path")
        '/relative/path'
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}"
