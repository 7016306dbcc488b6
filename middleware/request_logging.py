"""
Request logging for the widget-facing API: method, path, status, duration.
Query strings are left out; search terms are user input.
"""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.scope.get("path", "")
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.log(
            _level_for(response.status_code),
            "request_finished method=%s path=%s status=%s duration_ms=%.1f",
            request.method, path, response.status_code, duration_ms,
        )
        return response
