"""API Error Configuration.

Every error code the API can emit, with the HTTP status it maps to and
the level it is logged at.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class ErrorCode(str, Enum):
    # 400
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MALFORMED_FILTER = "MALFORMED_FILTER"
    IDENTIFIER_REJECTED = "IDENTIFIER_REJECTED"
    UNKNOWN_OPERATOR = "UNKNOWN_OPERATOR"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    NOT_NULL_VIOLATION = "NOT_NULL_VIOLATION"
    # 401 / 403 / 404 / 409 / 429
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    # 5xx
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    POLICY_MISCONFIGURED = "POLICY_MISCONFIGURED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorSeverity(Enum):
    """How loudly an error is logged."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def log_level(self) -> int:
        return _SEVERITY_LEVELS[self]


_SEVERITY_LEVELS = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}

_LOW, _MEDIUM, _HIGH, _CRITICAL = (
    ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH, ErrorSeverity.CRITICAL,
)

# code -> (HTTP status, severity). Rejected identifiers and denied callers
# are MEDIUM because repeated occurrences usually mean probing.
_ERROR_TABLE: Dict[ErrorCode, Tuple[int, ErrorSeverity]] = {
    ErrorCode.VALIDATION_ERROR: (400, _LOW),
    ErrorCode.MALFORMED_FILTER: (400, _LOW),
    ErrorCode.IDENTIFIER_REJECTED: (400, _MEDIUM),
    ErrorCode.UNKNOWN_OPERATOR: (400, _LOW),
    ErrorCode.FOREIGN_KEY_VIOLATION: (400, _LOW),
    ErrorCode.NOT_NULL_VIOLATION: (400, _LOW),
    ErrorCode.AUTHENTICATION_REQUIRED: (401, _MEDIUM),
    ErrorCode.INSUFFICIENT_PERMISSIONS: (403, _MEDIUM),
    ErrorCode.RESOURCE_NOT_FOUND: (404, _LOW),
    ErrorCode.DUPLICATE_ENTRY: (409, _LOW),
    ErrorCode.RATE_LIMIT_EXCEEDED: (429, _MEDIUM),
    ErrorCode.INTERNAL_ERROR: (500, _CRITICAL),
    ErrorCode.DATABASE_ERROR: (500, _HIGH),
    ErrorCode.POLICY_MISCONFIGURED: (500, _CRITICAL),
    ErrorCode.SERVICE_UNAVAILABLE: (503, _HIGH),
}

ERROR_STATUS_MAP: Dict[ErrorCode, int] = {code: status for code, (status, _) in _ERROR_TABLE.items()}
ERROR_SEVERITY_MAP: Dict[ErrorCode, ErrorSeverity] = {
    code: severity for code, (_, severity) in _ERROR_TABLE.items()
}


@dataclass
class ErrorConfig:
    include_request_id: bool = True
    log_all_errors: bool = True
    suppress_internal_details: bool = True


DEFAULT_ERROR_CONFIG = ErrorConfig()
