"""Structured Logging & Request Tracing.

Provides structured JSON logging, request ID propagation,
and query timing for the PMSY backend.
"""

from pmsy.logging_config.config import LogFormat, LoggingConfig, LogLevel
from pmsy.logging_config.context import RequestContext, bind_user, generate_request_id
from pmsy.logging_config.performance import QueryTimer
from pmsy.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "QueryTimer",
    "RequestContext",
    "bind_user",
    "configure_logging",
    "generate_request_id",
    "get_logger",
]
