"""Exception hierarchy for the PMSY API.

Each class fixes an ``ErrorCode`` and a client-safe default message; the
HTTP status follows from the code. Messages never contain SQL, bound
values or the names a caller tried to use.
"""

from typing import Any, Dict, List, Optional

from pmsy.api_errors.config import ERROR_STATUS_MAP, ErrorCode


class PmsyAPIError(Exception):
    """Root of the hierarchy; one exception handler renders all of it."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An internal error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.error_code = error_code or self.code
        self.status_code = ERROR_STATUS_MAP.get(self.error_code, 500)
        self.details = details or []
        self.headers = headers or {}


class ValidationError(PmsyAPIError):
    code = ErrorCode.VALIDATION_ERROR
    default_message = "Validation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[List[Dict[str, Any]]] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message, error_code, details)
        if field and not self.details:
            self.details = [{"field": field, "issue": self.message}]


class MalformedFilter(ValidationError):
    """Bad filter value, pagination number or order direction."""

    code = ErrorCode.MALFORMED_FILTER
    default_message = "Malformed filter"

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message, field=field)


class IdentifierRejected(ValidationError):
    """A table or column name failed validation.

    The client message is the same for every rejection, so a response
    never tells whether a name exists. The value is kept for server logs.
    """

    code = ErrorCode.IDENTIFIER_REJECTED
    default_message = "Invalid identifier"

    def __init__(self, identifier: Any = None):
        super().__init__()
        self.identifier = identifier


class UnknownOperator(ValidationError):
    code = ErrorCode.UNKNOWN_OPERATOR
    default_message = "Unsupported filter operator"

    def __init__(self, operator: Any = None):
        super().__init__()
        self.operator = operator


class PolicyMisconfigured(PmsyAPIError):
    """A restricted filter has neither an owner nor a membership branch.

    Never reaches a client: the query compiler turns it into a predicate
    that matches nothing.
    """

    code = ErrorCode.POLICY_MISCONFIGURED

    def __init__(self, table: str = ""):
        super().__init__(f"Policy for table '{table}' has no visibility branch")
        self.table = table


class StoreError(PmsyAPIError):
    """Failure reported by the data store; ``sqlstate`` is kept for logs."""

    code = ErrorCode.DATABASE_ERROR
    default_message = "Database operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        sqlstate: Optional[str] = None,
    ):
        super().__init__(message, error_code)
        self.sqlstate = sqlstate


class AuthenticationError(PmsyAPIError):
    code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"


class AuthorizationError(PmsyAPIError):
    code = ErrorCode.INSUFFICIENT_PERMISSIONS
    default_message = "Insufficient permissions"


class NotFoundError(PmsyAPIError):
    """Missing and not visible are indistinguishable to the caller."""

    code = ErrorCode.RESOURCE_NOT_FOUND
    default_message = "Resource not found"


class RateLimitError(PmsyAPIError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Rate limit exceeded"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None):
        headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
        super().__init__(message, headers=headers)
        self.retry_after = retry_after
