"""Core utilities for the governance layer."""

from governor.app.core.cache import (
    CacheBackend,
    InMemoryCache,
    RedisCache,
    create_cache_backend,
)
from governor.app.core.config import Settings, settings
from governor.app.core.logging import get_logger, setup_logging
from governor.app.core.utils import now_ms, url_origin

__all__ = [
    "CacheBackend",
    "InMemoryCache",
    "RedisCache",
    "create_cache_backend",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
    "now_ms",
    "url_origin",
]
