from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx

from governor.app.core.cache import create_cache_backend
from governor.app.core.config import settings
from governor.app.core.http_client import init_http_client
from governor.app.core.logging import get_logger, setup_logging
from governor.app.middleware.rate_limit import RateLimiter
from governor.app.providers.base import BaseTransport
from governor.app.providers.httpx_transport import HttpxTransport
from governor.app.services.governance import GovernanceLayer
from governor.app.services.request_queue import PriorityRequestQueue
from governor.app.services.tiered_cache import TieredCache


def create_governance_layer(
    transport: Optional[BaseTransport] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    durable_backend: Optional[str] = None,
) -> GovernanceLayer:
    """Create a governance layer configured from settings.

    Args:
        transport: Transport for ``fetch``; defaults to an ``HttpxTransport``
            over ``http_client`` when one is given
        http_client: Shared httpx client backing the default transport
        durable_backend: Overrides settings.durable_cache_backend

    Returns:
        A new GovernanceLayer instance
    """
    if transport is None and http_client is not None:
        transport = HttpxTransport(http_client)

    cache = TieredCache(durable=create_cache_backend(durable_backend))
    return GovernanceLayer(
        rate_limiter=RateLimiter(),
        queue=PriorityRequestQueue(),
        cache=cache,
        transport=transport,
    )


@asynccontextmanager
async def governance_lifespan(
    transport: Optional[BaseTransport] = None,
    configure_logging: bool = True,
) -> AsyncGenerator[GovernanceLayer, None]:
    """Governance layer lifespan context manager.

    Opens the shared HTTP client on startup. On shutdown, waits for running
    operations, flushes pending durable writes, closes the durable backend
    and then the HTTP client.

        async with governance_lifespan() as layer:
            card = await layer.fetch("https://api.example.com/cards/42")
    """
    if configure_logging:
        setup_logging()
    logger = get_logger(__name__)

    async with init_http_client() as http_client:
        layer = create_governance_layer(transport=transport, http_client=http_client)
        logger.info(
            "Governance layer started",
            extra={
                "rate_limit_enabled": settings.rate_limit_enabled,
                "queue_max_concurrency": settings.queue_max_concurrency,
                "durable_cache_backend": settings.durable_cache_backend,
            },
        )
        try:
            yield layer
        finally:
            await layer.aclose()
            logger.info("Governance layer shut down", extra={"stats": layer.get_stats()})
