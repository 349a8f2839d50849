"""Request logging middleware."""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Logs method, path, client address, status and duration of each request"""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            client = request.client.host if request.client else "-"
            logger.debug(
                f"Request finished: {request.method} {request.url.path} "
                f"from={client} status={status_code} duration={duration_ms:.1f}ms"
            )
