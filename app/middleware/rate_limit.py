"""
Sliding-window rate limiter for the webhook and admin surfaces.

Buckets are keyed by (client, path prefix) so a chatty webhook sender doesn't
lock an operator out of /admin. In-memory only: each worker keeps its own window.
"""

import logging
import time
from collections import defaultdict, deque
from collections.abc import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)

_windows: dict[tuple[str, str], deque[float]] = defaultdict(deque)


def reset_rate_limits() -> None:
    _windows.clear()


def get_client_ip(request: Request) -> str:
    """Client IP, honouring X-Forwarded-For / X-Real-IP from a proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


def hit(key: tuple[str, str], now: float | None = None) -> bool:
    """
    Record one request for key.

    Returns:
        True if the request is within the limit, False if it should be rejected
    """
    if not settings.rate_limit_enabled:
        return True
    now = time.monotonic() if now is None else now
    window = _windows[key]
    cutoff = now - settings.rate_limit_window_seconds
    while window and window[0] <= cutoff:
        window.popleft()
    if len(window) >= settings.rate_limit_requests:
        return False
    window.append(now)
    return True


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, rate_limited_paths: list[str]):
        super().__init__(app)
        self.rate_limited_paths = rate_limited_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        prefix = next((p for p in self.rate_limited_paths if path.startswith(p)), None)
        if prefix is not None:
            client_ip = get_client_ip(request)
            if not hit((client_ip, prefix)):
                logger.warning(
                    f"Rate limit exceeded for {client_ip} on {path} "
                    f"({settings.rate_limit_requests}/{settings.rate_limit_window_seconds}s)"
                )
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={
                        "error": "Rate limit exceeded",
                        "retry_after": settings.rate_limit_window_seconds,
                    },
                    headers={"Retry-After": str(settings.rate_limit_window_seconds)},
                )
        return await call_next(request)
