"""
Noterverse Backend — Request Logging Middleware
=================================================

What:  One access log line per HTTP request with status and duration.
Why:   Monitoring, debugging, and spotting bursts of 401s.
How:   Times the downstream call and logs with a level chosen by status.

What we log vs what we DON'T log:
    ✅ method, path, status, duration, client IP, request id, internal user id
    ❌ Authorization header, token claims, request/response bodies (note
       content), derived keys
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.middleware.request_id import request_id_var

logger = logging.getLogger("noterverse.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Level by status: 5xx → ERROR, 4xx → WARNING, otherwise INFO.
    /health is skipped (probes would drown everything else).
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        client_ip = request.client.host if request.client else "unknown"
        # Set by require_auth on success; absent for anonymous/rejected requests
        user_id = getattr(request.state, "user_id", "-")
        rid = request_id_var.get("")
        status = response.status_code

        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] user=%s from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "user_id": user_id,
                "client_ip": client_ip,
            },
        )
        return response
