"""Request Context Management.

The ids of the request being served live in a single ContextVar, so every
log line emitted while serving it (including from concurrently gathered
store calls, which copy the context) carries the request id and the
identity of the caller.
"""

import time
import uuid
from contextvars import ContextVar, Token
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Optional


@dataclass(frozen=True)
class TraceIds:
    request_id: str
    correlation_id: str
    user_id: str = ""
    role: str = ""


_current: ContextVar[Optional[TraceIds]] = ContextVar("pmsy_trace", default=None)


def generate_request_id() -> str:
    return str(uuid.uuid4())


def get_request_id() -> str:
    ids = _current.get()
    return ids.request_id if ids else ""


def get_user_id() -> str:
    ids = _current.get()
    return ids.user_id if ids else ""


def bind_user(user_id: str, role: str) -> None:
    """Attach the authenticated caller to the current request context.

    Outside a request context there is nothing to attach to and the call
    is a no-op.
    """
    ids = _current.get()
    if ids is not None:
        _current.set(replace(ids, user_id=user_id, role=role))


def get_context_dict() -> dict[str, Any]:
    """Non-empty context values, ready to merge into a log record."""
    ids = _current.get()
    if ids is None:
        return {}
    return {key: value for key, value in asdict(ids).items() if value}


@dataclass
class RequestContext:
    """Context manager scoping trace ids to one request.

    Example:
        with RequestContext(request_id="abc-123"):
            logger.info("listing rows")  # includes request_id

    A nested context starts without a bound user.
    """

    request_id: str = ""
    correlation_id: str = ""
    _started: float = field(default_factory=time.monotonic, repr=False)
    _token: Optional[Token] = field(default=None, repr=False)

    def __post_init__(self):
        self.request_id = self.request_id or generate_request_id()
        self.correlation_id = self.correlation_id or self.request_id

    def __enter__(self) -> "RequestContext":
        self._token = _current.set(TraceIds(self.request_id, self.correlation_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _current.reset(self._token)
            self._token = None

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000
