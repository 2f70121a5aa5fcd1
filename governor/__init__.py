"""Outbound request governance: rate limiting, prioritised queuing and tiered caching."""
