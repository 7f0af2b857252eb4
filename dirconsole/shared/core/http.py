"""
Async HTTP Client Shared Infrastructure

Keeps a single httpx.AsyncClient per process so every widget's query
traffic shares one connection pool.
"""

import inspect
from typing import Optional
import httpx
import structlog

from dirconsole.shared.core.config import get_settings

logger = structlog.get_logger()

# Singleton instance
_client: Optional[httpx.AsyncClient] = None


def _build_timeout(timeout: Optional[float] = None) -> httpx.Timeout:
    settings = get_settings()
    return httpx.Timeout(
        timeout or settings.HTTP_TIMEOUT_SECONDS,
        connect=settings.HTTP_CONNECT_TIMEOUT_SECONDS,
    )


def get_http_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    """
    Returns the global shared httpx.AsyncClient, creating it lazily.
    """
    global _client

    if _client is None:
        logger.warning(
            "http_client_lazy_initialized",
            msg="Client was not pre-initialized",
        )
        _client = httpx.AsyncClient(
            timeout=_build_timeout(timeout),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )
    return _client


async def init_http_client() -> None:
    """
    Initializes the global httpx.AsyncClient from settings.
    """
    global _client
    if _client is not None:
        logger.warning("http_client_already_initialized")
        return

    settings = get_settings()
    _client = httpx.AsyncClient(
        timeout=_build_timeout(),
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=5,
            keepalive_expiry=30.0,
        ),
        headers={"User-Agent": f"{settings.APP_NAME}/{settings.VERSION}"},
    )
    logger.info("http_client_initialized", timeout=settings.HTTP_TIMEOUT_SECONDS)


async def close_http_client() -> None:
    """
    Gracefully shuts down the global client, flushing the connection pool.
    """
    global _client

    client = _client
    _client = None
    if client is None:
        return

    close_result = client.aclose()
    if inspect.isawaitable(close_result):
        await close_result
    logger.info("http_client_closed")
