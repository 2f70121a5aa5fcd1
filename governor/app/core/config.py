from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Governance layer settings loaded from environment variables.

    All settings can be configured via ``GOVERNOR_*`` environment variables
    or a .env file.
    """

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_capacity: int = 10  # Maximum tokens in a bucket
    rate_limit_refill_rate: float = 2.0  # Tokens per second
    rate_limit_refill_interval_ms: int = 1000
    rate_limit_max_retries: int = 3
    rate_limit_backoff: Literal["linear", "exponential"] = "exponential"
    rate_limit_retry_after_header: str = "Retry-After"
    rate_limit_default_retry_after_ms: int = 1000  # Used when a 429 carries no hint

    # Outbound payload guard
    max_payload_bytes: int = 1024 * 1024  # 1 MiB

    # Request queue settings
    queue_max_concurrency: int = 4

    # Cache settings
    cache_enabled: bool = True
    cache_ttl_ms: int = 5 * 60 * 1000  # 5 minutes
    cache_max_entries: int = 100  # Fast tier LRU bound

    # Durable tier: memory | redis | none
    durable_cache_backend: Literal["memory", "redis", "none"] = "memory"
    durable_cache_namespace: str = "governor:cache"

    # Redis settings (optional)
    redis_url: str = "redis://localhost:6379/0"

    # HTTP client settings
    httpx_timeout: float = 30.0
    httpx_connect_timeout: float = 10.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator(
        "rate_limit_capacity",
        "rate_limit_refill_interval_ms",
        "max_payload_bytes",
        "queue_max_concurrency",
        "cache_max_entries",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate size and capacity limits are positive."""
        if v < 1:
            raise ValueError("Limit values must be at least 1")
        return v

    @field_validator("rate_limit_refill_rate")
    @classmethod
    def validate_refill_rate(cls, v: float) -> float:
        """Validate refill rate is positive."""
        if v <= 0:
            raise ValueError("rate_limit_refill_rate must be positive")
        return v

    @field_validator("rate_limit_max_retries", "cache_ttl_ms")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate retry ceiling and TTL are not negative."""
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @field_validator("httpx_timeout", "httpx_connect_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(
        env_prefix="GOVERNOR_", env_file=".env", extra="ignore"
    )


# Global settings instance
settings = Settings()
