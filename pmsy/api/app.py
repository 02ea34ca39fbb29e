"""FastAPI Application Factory.

``create_app`` wires the services (store, frozen policy registry, rate
limiter, REST and task-dependency services) onto ``app.state`` and mounts
the routers behind the middleware stack.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from pmsy.access.config import AccessConfig, RateLimitConfig
from pmsy.access.guard import RecordGuard
from pmsy.access.policies import PermissionFilterCompiler
from pmsy.access.rate_limit import RateLimiter
from pmsy.access.registry import PolicyRegistry, load_policy_file
from pmsy.api.config import APIConfig
from pmsy.api.models import HealthResponse
from pmsy.api.routes import rest_router, task_dependencies_router
from pmsy.api_errors.handlers import register_exception_handlers
from pmsy.api_errors.middleware import ErrorHandlingMiddleware
from pmsy.db.engine import dispose_engines, get_async_engine
from pmsy.db.store import Store
from pmsy.logging_config.middleware import RequestTracingMiddleware
from pmsy.logging_config.setup import configure_logging
from pmsy.query.compiler import QueryCompiler
from pmsy.query.config import QueryConfig
from pmsy.rest.service import RestService
from pmsy.settings import Settings, get_settings
from pmsy.tasks.dependencies import TaskDependencyService

logger = logging.getLogger(__name__)


# ── Security Headers ─────────────────────────────────────────────────

SECURITY_HEADERS = (
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"referrer-policy", b"no-referrer"),
    (b"cache-control", b"no-store"),
)
HSTS_HEADER = (b"strict-transport-security", b"max-age=31536000; includeSubDomains")


class SecurityHeadersMiddleware:
    """Appends the fixed security headers to every HTTP response.

    Responses carry row data, so they are never cacheable.
    """

    def __init__(self, app: Any, enable_hsts: bool = False):
        self.app = app
        self.extra_headers = list(SECURITY_HEADERS) + ([HSTS_HEADER] if enable_hsts else [])

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message = {**message, "headers": list(message.get("headers", [])) + self.extra_headers}
            await send(message)

        await self.app(scope, receive, send_with_headers)


# ── Lifespan (startup / shutdown) ────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize logging at startup, release the pool at shutdown."""
    configure_logging()
    logger.info(f"PMSY API starting up (policies: {app.state.registry_source})")
    yield
    logger.info("PMSY API shutting down")
    if app.state.owns_engine:
        await dispose_engines()


# ── Services ─────────────────────────────────────────────────────────


def load_registry(settings: Settings) -> PolicyRegistry:
    """The frozen policy registry: the policy file when configured, else the built-in table."""
    if settings.policy_file:
        return load_policy_file(settings.policy_file)
    return PolicyRegistry.default()


def configure_services(app: FastAPI, engine: AsyncEngine, settings: Settings) -> None:
    """Create the per-application services and keep them on ``app.state``."""
    store = Store(engine)
    registry = load_registry(settings)
    query_compiler = QueryCompiler(
        QueryConfig(max_limit=settings.rest_max_limit, default_limit=settings.rest_default_limit)
    )
    access_config = AccessConfig(membership_inline_threshold=settings.membership_inline_threshold)
    guard = RecordGuard(registry, store, query_compiler, access_config)

    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.registry_source = settings.policy_file or "builtin"
    app.state.rate_limiter = RateLimiter(
        RateLimitConfig(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            max_keys=settings.rate_limit_max_keys,
        )
    )
    app.state.rest_service = RestService(
        store,
        registry,
        query_compiler=query_compiler,
        permissions=PermissionFilterCompiler(registry, store, query_compiler, access_config),
        guard=guard,
    )
    app.state.task_dependency_service = TaskDependencyService(store, guard, query_compiler)


# ── App Factory ──────────────────────────────────────────────────────


def create_app(
    config: Optional[APIConfig] = None,
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Middleware stack (outermost → innermost):
        SecurityHeaders → RequestTracing → ErrorHandling → CORS → App

    Args:
        config: API configuration. Derived from settings if not provided.
        settings: Environment settings. Uses ``get_settings()`` if not provided.
        engine: Async engine to run queries on. The application creates
            (and disposes) the configured one if not provided.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    config = config or APIConfig.from_settings(settings)

    app = FastAPI(
        title=config.title,
        version=config.version,
        description=config.description,
        docs_url=config.docs_url,
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.owns_engine = engine is None
    configure_services(app, engine or get_async_engine(), settings)

    # add_middleware prepends: innermost first. Outermost is
    # SecurityHeaders -> RequestTracing -> ErrorHandling -> CORS -> routes.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=False,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
        expose_headers=["X-Total-Count", "X-Request-ID"],
    )
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestTracingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.enable_hsts)

    register_exception_handlers(app)

    # ── Health check ─────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        try:
            await app.state.store.ping()
            database = "ok"
        except Exception as exc:
            logger.warning(f"Health check database ping failed: {type(exc).__name__}")
            database = "error"
        return HealthResponse(
            status="ok" if database == "ok" else "degraded",
            version=config.version,
            database=database,
        )

    # ── Route modules ────────────────────────────────────────────

    app.include_router(rest_router, prefix=config.prefix)
    app.include_router(task_dependencies_router, prefix=config.task_dependencies_prefix)

    logger.info("PMSY API application created")
    return app
