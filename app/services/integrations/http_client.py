"""
Outbound HTTP client factory.

Every outbound call gets explicit timeouts so a slow messaging API can't hold a
webhook handler or a job worker indefinitely.
"""

import httpx

DEFAULT_TIMEOUT_SECONDS = 10.0
CONNECT_TIMEOUT_SECONDS = 5.0


def get_httpx_timeout(total: float = DEFAULT_TIMEOUT_SECONDS) -> httpx.Timeout:
    """Timeouts for one outbound request (read bounded by total, connect/write/pool tighter)."""
    short = min(CONNECT_TIMEOUT_SECONDS, total)
    return httpx.Timeout(total, connect=short, read=total, write=short, pool=short)


def create_httpx_client(
    total: float = DEFAULT_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """AsyncClient with standard timeouts. transport is for tests (httpx.MockTransport)."""
    return httpx.AsyncClient(timeout=get_httpx_timeout(total), transport=transport)
