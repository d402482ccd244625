"""
Request logging middleware with request ID tracking and context propagation.
"""
import time
import uuid
from contextvars import ContextVar

from app.core.logging_config import log_api_request, log_warning

# Context variable for request ID propagation
request_id_ctx: ContextVar[str] = ContextVar('request_id', default='unknown')

# Default status code when response is not captured
DEFAULT_STATUS_CODE = 500


class RequestLoggingMiddleware:
    """
    ASGI middleware that tags every HTTP request with an ID.

    - Propagates the request ID via a context variable
    - Adds an ``x-request-id`` response header
    - Logs method, path, status and duration on completion
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        request_id_ctx.set(request_id)
        start_time = time.time()
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")
        status_code = DEFAULT_STATUS_CODE

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", DEFAULT_STATUS_CODE)
                headers = list(message.get("headers", []))
                headers.append([b"x-request-id", request_id.encode()])
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            log_api_request(method, path, status_code, duration_ms, request_id)
            if duration_ms >= 10000:
                log_warning("Slow request", request_id=request_id, path=path, duration_ms=duration_ms)
