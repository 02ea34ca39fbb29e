"""Request Tracing Middleware.

Binds a RequestContext around every HTTP request, echoes the tracing ids
on the response and logs one line when the request starts and one when it
completes. The query string is never logged: filter values may carry user
data.
"""

import logging
import re
import time
from typing import Optional

from pmsy.logging_config.config import DEFAULT_LOGGING_CONFIG, LoggingConfig
from pmsy.logging_config.context import RequestContext, generate_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"

# Inbound ids are echoed into headers and logs, so only short opaque tokens are accepted.
_TRACE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def inbound_trace_id(headers: list, name: str) -> Optional[str]:
    """Return a well-formed tracing id from raw ASGI headers, else None."""
    wanted = name.lower().encode()
    for key, value in headers:
        if key.lower() == wanted:
            text = value.decode("latin-1")
            return text if _TRACE_ID.match(text) else None
    return None


class RequestTracingMiddleware:
    """ASGI middleware; ``app.add_middleware(RequestTracingMiddleware)``."""

    def __init__(self, app, config: Optional[LoggingConfig] = None):
        self.app = app
        self.config = config or DEFAULT_LOGGING_CONFIG

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        raw_headers = scope.get("headers", [])
        request_id = inbound_trace_id(raw_headers, REQUEST_ID_HEADER) or generate_request_id()
        correlation_id = inbound_trace_id(raw_headers, CORRELATION_ID_HEADER) or request_id
        trace_headers = [
            (REQUEST_ID_HEADER.lower().encode(), request_id.encode()),
            (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode()),
        ]

        request_line = {"method": scope.get("method", ""), "path": scope.get("path", "")}
        traced = request_line["path"] not in self.config.exclude_paths
        status_code = 500

        async def send_with_trace(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
                message = {**message, "headers": list(message.get("headers", [])) + trace_headers}
            await send(message)

        started = time.perf_counter()
        with RequestContext(request_id=request_id, correlation_id=correlation_id):
            if traced:
                logger.info("Request started", extra=request_line)
            try:
                await self.app(scope, receive, send_with_trace)
            except Exception:
                status_code = 500
                raise
            finally:
                if traced:
                    logger.log(
                        logging.WARNING if status_code >= 500 else logging.INFO,
                        "Request completed",
                        extra={
                            **request_line,
                            "status_code": status_code,
                            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        },
                    )
