"""Logging configuration for the PMSY backend."""

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum

ENV_LEVEL = "PMSY_LOG_LEVEL"
ENV_FORMAT = "PMSY_LOG_FORMAT"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def numeric(self) -> int:
        return logging.getLevelName(self.value)


class LogFormat(str, Enum):
    """JSON for deployed services, console for a developer terminal."""
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LoggingConfig:
    """Structured logging configuration.

    ``quiet_loggers`` are pinned to WARNING: SQL echo at INFO would write
    statements and bound values into the log.
    """

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    slow_query_ms: float = 500.0
    exclude_paths: list[str] = field(default_factory=lambda: ["/health"])
    service_name: str = "pmsy-api"
    quiet_loggers: tuple[str, ...] = ("sqlalchemy.engine", "asyncpg", "aiosqlite", "httpx")

    def with_env_overrides(self) -> "LoggingConfig":
        """Apply PMSY_LOG_LEVEL / PMSY_LOG_FORMAT when they hold a known value."""
        config = self
        level = os.environ.get(ENV_LEVEL, "").upper()
        if level in LogLevel.__members__:
            config = replace(config, level=LogLevel(level))
        fmt = os.environ.get(ENV_FORMAT, "").lower()
        if fmt in {f.value for f in LogFormat}:
            config = replace(config, format=LogFormat(fmt))
        return config


DEFAULT_LOGGING_CONFIG = LoggingConfig()
