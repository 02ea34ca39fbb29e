"""Error envelopes and FastAPI exception handlers.

Every error leaves the API as::

    {"error": {"code", "message", "timestamp", "details"?, "request_id"?}}
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi.responses import JSONResponse

from pmsy.api_errors.config import (
    DEFAULT_ERROR_CONFIG,
    ERROR_SEVERITY_MAP,
    ERROR_STATUS_MAP,
    ErrorCode,
    ErrorConfig,
    ErrorSeverity,
)
from pmsy.api_errors.exceptions import PmsyAPIError
from pmsy.logging_config.context import get_request_id

logger = logging.getLogger(__name__)


@dataclass
class ErrorResponse:
    code: str
    message: str
    status_code: int = 500
    details: List[Dict[str, Any]] = field(default_factory=list)
    request_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message, "timestamp": self.timestamp}
        if self.details:
            error["details"] = self.details
        if self.request_id:
            error["request_id"] = self.request_id
        return {"error": error}

    def to_json_response(self, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict(), headers=headers or None)


def create_error_response(
    error_code: ErrorCode,
    message: str,
    details: Optional[List[Dict[str, Any]]] = None,
    request_id: Optional[str] = None,
    status_code: Optional[int] = None,
) -> ErrorResponse:
    return ErrorResponse(
        code=error_code.value,
        message=message,
        status_code=status_code or ERROR_STATUS_MAP.get(error_code, 500),
        details=details or [],
        request_id=request_id,
    )


def _current_request_id(config: ErrorConfig) -> Optional[str]:
    return (get_request_id() or None) if config.include_request_id else None


def handle_pmsy_error(exc: PmsyAPIError, config: Optional[ErrorConfig] = None) -> ErrorResponse:
    """Log ``exc`` at its code's severity and build its envelope."""
    config = config or DEFAULT_ERROR_CONFIG
    if config.log_all_errors:
        severity = ERROR_SEVERITY_MAP.get(exc.error_code, ErrorSeverity.MEDIUM)
        logger.log(
            severity.log_level,
            "API error %s (%d): %s",
            exc.error_code.value,
            exc.status_code,
            exc.message,
            extra={"error_code": exc.error_code.value, "status_code": exc.status_code},
        )
    return create_error_response(
        exc.error_code,
        exc.message,
        details=exc.details,
        request_id=_current_request_id(config),
        status_code=exc.status_code,
    )


def handle_unhandled_error(exc: Exception, config: Optional[ErrorConfig] = None) -> ErrorResponse:
    """Safe 500 for anything outside the hierarchy; details only when allowed."""
    config = config or DEFAULT_ERROR_CONFIG
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    message = "An internal error occurred"
    if not config.suppress_internal_details:
        message = f"{type(exc).__name__}: {exc}"
    return create_error_response(ErrorCode.INTERNAL_ERROR, message, request_id=_current_request_id(config))


def register_exception_handlers(app: Any, config: Optional[ErrorConfig] = None) -> None:
    """Render PmsyAPIError raised by routes and dependencies.

    ``ErrorHandlingMiddleware`` covers anything raised outside routing.
    """
    config = config or DEFAULT_ERROR_CONFIG

    async def pmsy_error_handler(request: Any, exc: PmsyAPIError) -> JSONResponse:
        return handle_pmsy_error(exc, config).to_json_response(exc.headers)

    app.add_exception_handler(PmsyAPIError, pmsy_error_handler)
    app.state.error_config = config
