"""Tests for the outbound payload size guard."""

import pytest

from governor.app.exceptions import PayloadTooLargeError
from governor.app.middleware.request_size import enforce_payload_limit, measure_payload_size


class TestMeasurePayloadSize:

    def test_none_is_zero(self):
        assert measure_payload_size(None) == 0

    def test_bytes(self):
        assert measure_payload_size(b"abcd") == 4

    def test_str_counts_utf8_bytes(self):
        assert measure_payload_size("é") == 2

    def test_json_is_compact(self):
        assert measure_payload_size({"a": 1, "b": [1, 2]}) == len('{"a":1,"b":[1,2]}')

    def test_non_ascii_json(self):
        assert measure_payload_size({"name": "ü"}) == len('{"name":"ü"}'.encode("utf-8"))


class TestEnforcePayloadLimit:

    def test_at_limit_is_allowed(self):
        enforce_payload_limit(1024, 1024)

    def test_above_limit_raises(self):
        with pytest.raises(PayloadTooLargeError) as exc_info:
            enforce_payload_limit(2048, 1024, url="https://api.example.com/upload")

        error = exc_info.value
        assert error.size == 2048
        assert error.limit == 1024
        assert error.url == "https://api.example.com/upload"
        assert error.status_code == 413
        assert str(error) == (
            "Request body size (2.00 KB) exceeds maximum allowed size (1.00 KB)"
        )
