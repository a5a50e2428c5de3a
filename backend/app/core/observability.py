"""
Observability middleware.

Adds correlation IDs and request timing to every response and log line.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("carpool.http")


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id

        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = (time.perf_counter() - start_time) * 1000  # ms

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(round(process_time, 2))

        log_line = "%s %s -> %s (%.2f ms) cid=%s"
        args = (request.method, request.url.path, response.status_code, process_time, correlation_id)

        if response.status_code >= 500:
            logger.error(log_line, *args)
        elif response.status_code >= 400:
            logger.warning(log_line, *args)
        else:
            logger.info(log_line, *args)

        return response
