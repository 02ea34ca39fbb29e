"""Per-caller request rate limiting.

A fixed-window counter keyed by caller. It is an injectable component:
the API obtains it through a dependency, so a shared backend can replace
the in-process one without touching callers.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pmsy.api_errors.exceptions import RateLimitError

from .config import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass
class RateLimitWindow:
    """Request count of one key within the current window."""

    key: str
    started_at: float
    count: int = 0
    total_blocked: int = 0

    def expired(self, now: float, window_seconds: float) -> bool:
        return now - self.started_at >= window_seconds

    def retry_after(self, now: float, window_seconds: float) -> int:
        return max(1, math.ceil(self.started_at + window_seconds - now))


class RateLimiter:
    """Fixed-window rate limiter.

    When more than ``max_keys`` keys are tracked, expired windows are
    evicted first, then the oldest ones. All state changes happen under
    a lock.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> int:
        """Count one request for ``key``.

        Returns the number of requests left in the window; raises
        ``RateLimitError`` when the limit is already reached.
        """
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or window.expired(now, self.config.window_seconds):
                window = RateLimitWindow(key=key, started_at=now)
                self._windows[key] = window
                self._evict(now)

            if window.count >= self.config.max_requests:
                window.total_blocked += 1
                retry_after = window.retry_after(now, self.config.window_seconds)
                logger.info(
                    f"Rate limit exceeded for {key}",
                    extra={"status_code": 429},
                )
                raise RateLimitError(retry_after=retry_after)

            window.count += 1
            return self.config.max_requests - window.count

    def check_user(self, user_id: str) -> int:
        return self.hit(self.config.key_for(user_id))

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    @property
    def tracked_keys(self) -> int:
        return len(self._windows)

    def get_window(self, key: str) -> Optional[RateLimitWindow]:
        return self._windows.get(key)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "tracked_keys": len(self._windows),
                "total_blocked": sum(w.total_blocked for w in self._windows.values()),
                "max_requests": self.config.max_requests,
                "window_seconds": self.config.window_seconds,
            }

    def _evict(self, now: float) -> None:
        """Bring the number of tracked keys back under ``max_keys``. Caller holds the lock."""
        if len(self._windows) <= self.config.max_keys:
            return
        for key in [k for k, w in self._windows.items() if w.expired(now, self.config.window_seconds)]:
            del self._windows[key]
        overflow = len(self._windows) - self.config.max_keys
        if overflow > 0:
            oldest = sorted(self._windows.values(), key=lambda w: w.started_at)[:overflow]
            for window in oldest:
                del self._windows[window.key]
