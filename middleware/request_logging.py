"""
Request logging middleware. Logs method, path, status, duration and a
request id. Never logs headers, bodies or query strings (uploads and chat
text travel in bodies).
"""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_QUIET_PATHS = {"/healthz"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log its outcome."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        path = request.scope.get("path", "")
        start = time.perf_counter()
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        if path in _QUIET_PATHS:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        # Streaming responses are logged when headers go out, not when the body ends.
        logger.log(
            level,
            "request_finished method=%s path=%s status=%s duration_ms=%.1f",
            request.method, path, status, duration_ms,
            extra={"request_id": request_id},
        )
        return response
