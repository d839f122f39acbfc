import logging
from typing import Iterable, Optional

from starlette.requests import HTTPConnection, Request
from starlette.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

log = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "::1", "localhost"})


def is_local_client(conn: HTTPConnection, allowed_hosts: Iterable[str] = LOOPBACK_HOSTS) -> bool:
    host = conn.client.host if conn.client else None
    return host in allowed_hosts


class LocalOnlyMiddleware(BaseHTTPMiddleware):
    """Rejects every HTTP request that does not come from a loopback address."""

    def __init__(self, app, allowed_hosts: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.allowed_hosts = frozenset(allowed_hosts) if allowed_hosts is not None else LOOPBACK_HOSTS

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not is_local_client(request, self.allowed_hosts):
            host = request.client.host if request.client else "unknown"
            log.warning(f"Rejected control API request from non-local client {host}")
            return JSONResponse({"error": "forbidden", "detail": "The control API only accepts local clients."},
                                status_code=403)
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security-related HTTP headers to every response."""
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        return response
