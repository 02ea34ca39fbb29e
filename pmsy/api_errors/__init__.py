"""API Error Handling.

Provides the typed exception hierarchy, structured error responses and
global exception handling for the PMSY API layer.
"""

from pmsy.api_errors.config import (
    ErrorCode,
    ErrorConfig,
    ErrorSeverity,
)
from pmsy.api_errors.exceptions import (
    AuthenticationError,
    AuthorizationError,
    IdentifierRejected,
    MalformedFilter,
    NotFoundError,
    PmsyAPIError,
    PolicyMisconfigured,
    RateLimitError,
    StoreError,
    UnknownOperator,
    ValidationError,
)
from pmsy.api_errors.handlers import (
    ErrorResponse,
    create_error_response,
    register_exception_handlers,
)
from pmsy.api_errors.middleware import ErrorHandlingMiddleware

__all__ = [
    # Config
    "ErrorCode",
    "ErrorConfig",
    "ErrorSeverity",
    # Exceptions
    "AuthenticationError",
    "AuthorizationError",
    "IdentifierRejected",
    "MalformedFilter",
    "NotFoundError",
    "PmsyAPIError",
    "PolicyMisconfigured",
    "RateLimitError",
    "StoreError",
    "UnknownOperator",
    "ValidationError",
    # Handlers
    "ErrorResponse",
    "create_error_response",
    "register_exception_handlers",
    # Middleware
    "ErrorHandlingMiddleware",
]
