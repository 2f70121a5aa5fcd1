"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from governor.app.core.config import Settings
from governor.app.middleware.rate_limit import RateLimitConfig
from governor.app.providers.retry import BackoffStrategy


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("GOVERNOR_RATE_LIMIT_CAPACITY", raising=False)
        settings = Settings(_env_file=None)

        assert settings.rate_limit_enabled is True
        assert settings.rate_limit_capacity == 10
        assert settings.rate_limit_refill_rate == 2.0
        assert settings.rate_limit_max_retries == 3
        assert settings.rate_limit_backoff == "exponential"
        assert settings.max_payload_bytes == 1024 * 1024
        assert settings.queue_max_concurrency == 4
        assert settings.cache_ttl_ms == 300_000
        assert settings.durable_cache_backend == "memory"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("GOVERNOR_RATE_LIMIT_CAPACITY", "5")
        monkeypatch.setenv("GOVERNOR_RATE_LIMIT_BACKOFF", "linear")

        settings = Settings(_env_file=None)

        assert settings.rate_limit_capacity == 5
        assert settings.rate_limit_backoff == "linear"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("rate_limit_capacity", 0),
            ("rate_limit_refill_rate", 0),
            ("queue_max_concurrency", 0),
            ("rate_limit_max_retries", -1),
            ("httpx_timeout", 0),
        ],
    )
    def test_rejects_invalid_limits(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})

    def test_rejects_unknown_backend(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, durable_cache_backend="memcached")


class TestRateLimitConfig:

    def test_from_settings(self, monkeypatch):
        from governor.app.core import config

        monkeypatch.setattr(
            config.settings, "rate_limit_backoff", "linear"
        )
        monkeypatch.setattr(config.settings, "rate_limit_capacity", 7)

        rate_config = RateLimitConfig.from_settings()

        assert rate_config.capacity == 7
        assert rate_config.backoff is BackoffStrategy.LINEAR
        assert rate_config.endpoints == ()
