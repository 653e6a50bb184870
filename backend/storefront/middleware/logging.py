"""
Storefront Backend — Request Logging Middleware
=================================================

What:  One structured access-log entry per HTTP request.
Why:   Method, path, status and duration are what monitoring and alerting
       key on; the request ID ties the line to any error logged for it.
How:   Times the downstream call with a monotonic clock and hands the result
       to `log_request()`, which picks the level from the status code.

What we log vs what we DON'T log (privacy):
    Log:        method, path, status, duration, client IP, request ID
    Don't log:  request bodies (contact and mural-request forms carry PII),
                cookies, authorization headers
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from storefront.logger import log_request
from storefront.middleware.rate_limit import client_identifier
from storefront.middleware.request_id import request_id_var

# Polled every few seconds by load balancers; logging them drowns real traffic
UNLOGGED_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        log_request(
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            requestId=request_id_var.get(),
            clientIp=client_identifier(request),
        )

        return response
