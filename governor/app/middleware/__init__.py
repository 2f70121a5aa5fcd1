"""Admission middleware applied around every outbound operation."""

from governor.app.middleware.rate_limit import RateLimiter
from governor.app.middleware.request_size import enforce_payload_limit, measure_payload_size

__all__ = [
    "RateLimiter",
    "enforce_payload_limit",
    "measure_payload_size",
]
