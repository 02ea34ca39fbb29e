"""Query timing.

Context manager used by the store to report slow statements. Only the
operation name and duration are logged, never SQL text or parameters.
"""

import logging
import time
from typing import Optional

from pmsy.logging_config.config import DEFAULT_LOGGING_CONFIG

logger = logging.getLogger(__name__)


class QueryTimer:
    """Times a block and logs it as slow above a threshold.

    Example:
        with QueryTimer("select", table="projects") as timer:
            rows = await conn.execute(stmt)
        timer.duration_ms
    """

    def __init__(self, operation: str, table: str = "", threshold_ms: Optional[float] = None):
        self.operation = operation
        self.table = table
        self.threshold_ms = threshold_ms or DEFAULT_LOGGING_CONFIG.slow_query_ms
        self.start_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self) -> "QueryTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        extra = {
            "operation": self.operation,
            "table": self.table,
            "duration_ms": round(self.duration_ms, 2),
        }

        if exc_type is not None:
            logger.debug(
                f"{self.operation} on {self.table} failed after {self.duration_ms:.1f}ms",
                extra=extra,
            )
        elif self.duration_ms >= self.threshold_ms:
            logger.warning(
                f"Slow query: {self.operation} on {self.table} took {self.duration_ms:.1f}ms",
                extra=extra,
            )
        else:
            logger.debug(
                f"{self.operation} on {self.table} completed in {self.duration_ms:.1f}ms",
                extra=extra,
            )
