"""HTTP client management for the default transport.

The governance layer never speaks HTTP itself; the httpx client built
here backs ``HttpxTransport`` and is shared for connection pooling.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from governor.app.core.config import settings


def create_http_client(**kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        **kwargs: Override default settings. Can include:
            - timeout: Overall timeout in seconds
            - connect_timeout: Connection timeout
            - max_connections: Maximum connections
            - max_keepalive_connections: Maximum keepalive connections
            - transport: Custom httpx transport (tests)

    Returns:
        A new httpx.AsyncClient instance.
    """
    timeout = httpx.Timeout(
        kwargs.get("timeout", settings.httpx_timeout),
        connect=kwargs.get("connect_timeout", settings.httpx_connect_timeout),
    )
    limits = httpx.Limits(
        max_connections=kwargs.get("max_connections", settings.httpx_max_connections),
        max_keepalive_connections=kwargs.get(
            "max_keepalive_connections", settings.httpx_max_keepalive_connections
        ),
    )

    config = {"timeout": timeout, "limits": limits}
    if "transport" in kwargs:
        config["transport"] = kwargs["transport"]
    return httpx.AsyncClient(**config)


@asynccontextmanager
async def init_http_client(**kwargs) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create an HTTP client and close it when the context exits."""
    client = create_http_client(**kwargs)
    try:
        yield client
    finally:
        await client.aclose()
