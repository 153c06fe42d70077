"""Pooled HTTP client for outbound webhook deliveries.

Retries are owned by the delivery service's backoff schedule, so the
transport adapter never retries on its own.
"""

import logging
import threading
from dataclasses import dataclass, field

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

_sync_client: requests.Session | None = None
_client_lock = threading.Lock()


@dataclass
class HTTPClientConfig:
    """Configuration for the shared HTTP client.

    Attributes:
        pool_connections: Number of connection pools to cache
        pool_maxsize: Maximum connections per pool
        headers: Default headers sent with every request
    """

    pool_connections: int = 10
    pool_maxsize: int = 20
    headers: dict[str, str] = field(
        default_factory=lambda: {"User-Agent": "automation-engine-webhooks/1.0"}
    )


_default_config = HTTPClientConfig()


def configure_http_client(config: HTTPClientConfig) -> None:
    """Configure the default HTTP client settings.

    Must be called before first client access.
    """
    global _default_config
    _default_config = config


def get_sync_client(config: HTTPClientConfig | None = None) -> requests.Session:
    """Get or create the shared requests Session."""
    global _sync_client

    with _client_lock:
        if _sync_client is None:
            cfg = config or _default_config
            _sync_client = _create_sync_client(cfg)
            logger.info(
                f"Created sync HTTP client (pool_connections={cfg.pool_connections}, "
                f"pool_maxsize={cfg.pool_maxsize})"
            )
        return _sync_client


def _create_sync_client(config: HTTPClientConfig) -> requests.Session:
    session = requests.Session()

    adapter = HTTPAdapter(
        pool_connections=config.pool_connections,
        pool_maxsize=config.pool_maxsize,
        max_retries=Retry(total=0, redirect=0, raise_on_status=False),
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    if config.headers:
        session.headers.update(config.headers)

    return session


def close_sync_client() -> None:
    """Close the shared client and release pooled connections."""
    global _sync_client

    with _client_lock:
        if _sync_client is not None:
            _sync_client.close()
            _sync_client = None
            logger.info("Closed sync HTTP client")
