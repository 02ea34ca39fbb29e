"""Logging Setup.

``configure_logging`` installs one stdout handler on the root logger. Every
record carries the request context (request id, correlation id, caller id
and role) so that permission decisions can be traced per request without
logging any filter values.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from pmsy.logging_config.config import DEFAULT_LOGGING_CONFIG, LogFormat, LoggingConfig
from pmsy.logging_config.context import get_context_dict

# Only these ``extra`` attributes reach the JSON payload; anything else
# (SQL text, bound parameters, row data) is dropped.
EXTRA_FIELDS = (
    "duration_ms",
    "status_code",
    "method",
    "path",
    "table",
    "operation",
    "decision",
    "error_code",
)


def _exception_info(formatter: logging.Formatter, record: logging.LogRecord) -> Optional[dict]:
    if not record.exc_info or record.exc_info[0] is None:
        return None
    exc_type, exc, _ = record.exc_info
    return {
        "type": exc_type.__name__,
        "message": str(exc),
        "traceback": formatter.formatException(record.exc_info),
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, service_name: str = "pmsy-api", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def payload(self, record: logging.LogRecord) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        if self.include_caller:
            entry.update(module=record.module, function=record.funcName, line=record.lineno)
        entry.update(get_context_dict())
        entry.update({key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)})

        exception = _exception_info(self, record)
        if exception:
            entry["exception"] = exception
        return entry

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self.payload(record), default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        line = f"{color}{stamp} {record.levelname:8s}{self.RESET} {record.name}: {record.getMessage()}"

        context = get_context_dict()
        if context:
            line += " [" + ", ".join(f"{k}={v}" for k, v in context.items()) + "]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def build_formatter(config: LoggingConfig) -> logging.Formatter:
    if config.format == LogFormat.CONSOLE:
        return ConsoleFormatter()
    return StructuredFormatter(service_name=config.service_name, include_caller=config.include_caller)


def configure_logging(config: Optional[LoggingConfig] = None) -> LoggingConfig:
    """Configure the root logger once at startup.

    Returns:
        The effective configuration after environment overrides.
    """
    config = (config or DEFAULT_LOGGING_CONFIG).with_env_overrides()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(config))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(config.level.numeric)

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
    return config


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
