"""Resilience infrastructure for Gmail API calls with transient-error retry."""

from mailbridge.resilience.retry import is_transient, resilient_api_call

__all__ = [
    "is_transient",
    "resilient_api_call",
]
