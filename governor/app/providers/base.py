from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx


class BaseTransport(ABC):
    """Base class for the transports the governance layer wraps.

    A transport performs one network call and returns its decoded result.
    To signal server throttling it raises ``ServerRateLimitedError`` with
    the server's retry hint; any other exception is a transport failure
    and propagates to the caller unchanged.

    Subclasses can accept an external httpx.AsyncClient for connection
    pooling, or create their own per call if not provided.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """Initialize the transport.

        Args:
            http_client: Optional shared HTTP client for connection pooling
            timeout: Request timeout in seconds for per-call clients
        """
        self._http_client = http_client
        self.timeout = timeout

    @property
    def http_client(self) -> Optional[httpx.AsyncClient]:
        """Get the HTTP client, if one was provided."""
        return self._http_client

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared client, or a per-call client that is closed after use."""
        if self._http_client is not None:
            yield self._http_client
            return
        client = httpx.AsyncClient(timeout=self.timeout)
        try:
            yield client
        finally:
            await client.aclose()

    @abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Perform one request and return the decoded response body.

        Raises:
            ServerRateLimitedError: The server throttled the request
        """
        pass

    async def aclose(self) -> None:
        """Release resources owned by the transport."""
        return None
