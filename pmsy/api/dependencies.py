"""FastAPI Dependencies for caller identity and rate limiting.

Services are created once per application by ``create_app`` and kept on
``app.state``; handlers obtain them through the ``get_*`` dependencies
so tests can override any of them with ``app.dependency_overrides``.

The caller identity is established upstream and forwarded as
``X-User-ID`` / ``X-User-Role`` / ``X-User-Email`` headers. Auth is
enforced unless ``PMSY_REQUIRE_AUTH=false``.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, Request, Response

from pmsy.access.config import ADMIN_ROLE
from pmsy.access.context import UserContext
from pmsy.access.rate_limit import RateLimiter
from pmsy.access.registry import PolicyRegistry
from pmsy.api_errors.exceptions import AuthenticationError
from pmsy.db.store import Store
from pmsy.logging_config.context import bind_user
from pmsy.rest.service import RestService
from pmsy.settings import Settings
from pmsy.tasks.dependencies import TaskDependencyService

logger = logging.getLogger(__name__)


# ── Service accessors ─────────────────────────────────────────────────


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_registry(request: Request) -> PolicyRegistry:
    return request.app.state.registry


def get_rate_limiter(request: Request) -> RateLimiter:
    """The per-application rate limiter; override to plug in a shared backend."""
    return request.app.state.rate_limiter


def get_rest_service(request: Request) -> RestService:
    return request.app.state.rest_service


def get_task_dependency_service(request: Request) -> TaskDependencyService:
    return request.app.state.task_dependency_service


# ── Auth Dependencies ─────────────────────────────────────────────────

_DEV_USER = UserContext(user_id="dev", role=ADMIN_ROLE)


async def require_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings_dep),
) -> UserContext:
    """Caller identity forwarded by the authentication layer.

    When auth is not required and no identity is sent, returns a dev
    context with the admin role so local development works without a
    gateway.

    Usage::

        @router.get("/{table}")
        async def list_rows(user: UserContext = Depends(require_user)):
            ...
    """
    if not x_user_id and not settings.require_auth:
        user = _DEV_USER
    else:
        user = UserContext(
            user_id=(x_user_id or "").strip(),
            role=(x_user_role or "").strip(),
            email=(x_user_email or "").strip(),
        )
        if not user.validate():
            raise AuthenticationError("Missing caller identity")

    bind_user(user.user_id, user.role)
    return user


# ── Rate Limit Dependency ─────────────────────────────────────────────


async def check_rate_limit(
    response: Response,
    user: UserContext = Depends(require_user),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> UserContext:
    """Count the request against the caller's window and add X-RateLimit-* headers.

    Usage::

        @router.get("/{table}")
        async def list_rows(user: UserContext = Depends(check_rate_limit)):
            ...
    """
    remaining = limiter.check_user(user.user_id)
    response.headers["X-RateLimit-Limit"] = str(limiter.config.max_requests)
    response.headers["X-RateLimit-Remaining"] = str(remaining)
    return user
