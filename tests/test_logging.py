"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from governor.app.core.config import settings
from governor.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
)


def make_record(msg="Test message", **attrs):
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_context_fields(self):
        record = make_record(category="https://api.example.com", attempt=2, delay_ms=2000)

        data = json.loads(JSONFormatter().format(record))

        assert data["category"] == "https://api.example.com"
        assert data["attempt"] == 2
        assert data["delay_ms"] == 2000
        assert "cache_key" not in data

    def test_custom_extra_fields(self):
        data = json.loads(JSONFormatter().format(make_record(size=2048)))
        assert data["extra"]["size"] == 2048

    def test_exception_info(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record()
            record.exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(record))

        assert any("ValueError: boom" in line for line in data["exception"])


class TestContextFilter:

    def test_adds_defaults(self):
        record = make_record()

        assert ContextFilter().filter(record) is True
        assert record.category is None
        assert record.operation_id is None

    def test_keeps_existing_values(self):
        record = make_record(cache_key="cards:1")
        ContextFilter().filter(record)
        assert record.cache_key == "cards:1"


class TestLogContext:

    def test_drops_none_values(self):
        assert get_log_context(category="api", attempt=None) == {"category": "api"}

    def test_extra_fields(self):
        context = get_log_context(cache_key="k", operation_id="op", priority=5)
        assert context == {"cache_key": "k", "operation_id": "op", "priority": 5}


class TestLoggingConfig:

    def test_text_format(self):
        with patch.object(settings, "log_format", "text"):
            config = get_logging_config()
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_json_format(self):
        with patch.object(settings, "log_format", "json"):
            config = get_logging_config()
        assert config["handlers"]["console"]["formatter"] == "json"
        assert "json" in config["formatters"]

    def test_structured_format(self):
        with patch.object(settings, "log_format", "structured"):
            config = get_logging_config()
        assert config["handlers"]["console"]["formatter"] == "structured"

    def test_unknown_format_falls_back_to_text(self):
        with patch.object(settings, "log_format", "xml"):
            config = get_logging_config()
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_third_party_loggers_quieted(self):
        config = get_logging_config()
        assert config["loggers"]["httpx"]["level"] == "WARNING"
        assert config["loggers"]["redis"]["level"] == "WARNING"

    def test_governor_logger_configured(self):
        with patch.object(settings, "log_level", "debug"):
            config = get_logging_config()
        assert config["loggers"]["governor"]["level"] == "DEBUG"

    def test_get_logger(self):
        assert get_logger("governor.app.test").name == "governor.app.test"
        assert get_logger().name == "governor"
