# async_infra.py
from __future__ import annotations
"""HTTP plumbing for the blockchain feed.

One pooled `httpx.AsyncClient` lives for the lifetime of the service
(`get_http` / `close_http`); adapters accept any client so tests can pass
fakes. Feed calls are wrapped in `@retry_httpx()`, which only retries
failures that a second attempt can plausibly fix.
"""

import logging
from typing import Dict, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

__all__ = ["make_async_client", "retry_httpx", "get_http", "close_http", "is_transient"]

logger = logging.getLogger(__name__)

USER_AGENT = "flowwatch/1.0"

# connect/read/write/pool timeouts and dropped connections
_TRANSPORT_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


def is_transient(exc: BaseException) -> bool:
    """True for transport failures and for 429 / 5xx responses."""
    if isinstance(exc, _TRANSPORT_ERRORS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


def retry_httpx(max_attempts: int = 3, max_wait: float = 10.0):
    """Jittered exponential backoff for transient HTTP errors; the last error is re-raised."""
    return retry(
        retry=retry_if_exception(is_transient),
        wait=wait_random_exponential(multiplier=0.5, max=max_wait),
        stop=stop_after_attempt(max_attempts),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def make_async_client(
    timeout_sec: float = 10.0,
    *,
    base_url: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    max_connections: int = 100,
) -> httpx.AsyncClient:
    """Pooled client with JSON accept headers; `timeout_sec` bounds every phase."""
    default_headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
    default_headers.update(headers or {})
    return httpx.AsyncClient(
        base_url=base_url or "",
        headers=default_headers,
        timeout=httpx.Timeout(timeout_sec),
        limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections // 5),
    )


_CLIENT: Optional[httpx.AsyncClient] = None


def get_http(timeout_sec: float = 10.0) -> httpx.AsyncClient:
    """Shared client, created on first use and recreated after `close_http`."""
    global _CLIENT
    if _CLIENT is None or _CLIENT.is_closed:
        _CLIENT = make_async_client(timeout_sec)
    return _CLIENT


async def close_http() -> None:
    global _CLIENT
    client, _CLIENT = _CLIENT, None
    if client is not None:
        await client.aclose()
