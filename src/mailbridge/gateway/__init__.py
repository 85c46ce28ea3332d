"""Remote mail gateway: the Gmail v1 API behind a typed, thread-safe wrapper."""

from mailbridge.gateway.client import GmailGateway, build_gateway

__all__ = [
    "GmailGateway",
    "build_gateway",
]
