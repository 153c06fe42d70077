"""HTTP client utilities."""

from .client import HTTPClientConfig, close_sync_client, configure_http_client, get_sync_client

__all__ = [
    "HTTPClientConfig",
    "close_sync_client",
    "configure_http_client",
    "get_sync_client",
]
