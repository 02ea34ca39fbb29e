"""Error Handling Middleware.

Outermost safety net: an exception that escapes the application becomes
a JSON error envelope instead of a raw traceback.
"""

from typing import Any, Dict, Optional

from pmsy.api_errors.config import DEFAULT_ERROR_CONFIG, ErrorConfig
from pmsy.api_errors.exceptions import PmsyAPIError
from pmsy.api_errors.handlers import handle_pmsy_error, handle_unhandled_error


class ErrorHandlingMiddleware:
    """ASGI middleware rendering escaped exceptions.

    Once the response has started a second start would corrupt the
    stream, so the exception is re-raised to the server instead.
    """

    def __init__(self, app: Any, config: Optional[ErrorConfig] = None):
        self.app = app
        self.config = config or DEFAULT_ERROR_CONFIG

    async def __call__(self, scope: Dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = False

        async def tracking_send(message: Dict[str, Any]) -> None:
            nonlocal started
            started = started or message["type"] == "http.response.start"
            await send(message)

        try:
            await self.app(scope, receive, tracking_send)
        except Exception as exc:
            if started:
                raise
            if isinstance(exc, PmsyAPIError):
                response = handle_pmsy_error(exc, self.config).to_json_response(exc.headers)
            else:
                response = handle_unhandled_error(exc, self.config).to_json_response()
            await response(scope, receive, send)
