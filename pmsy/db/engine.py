"""Process-wide database engines.

The API only uses the async engine; the sync engine exists for schema
creation from the command line.
"""

from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pmsy.settings import Settings, get_settings

_async_engine: Optional[AsyncEngine] = None
_sync_engine: Optional[Engine] = None


def engine_options(url: str, settings: Settings) -> dict:
    """Pool sizing applies to server databases only; SQLite keeps its defaults."""
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


def get_async_engine() -> AsyncEngine:
    global _async_engine
    if _async_engine is None:
        settings = get_settings()
        _async_engine = create_async_engine(
            settings.database_url, **engine_options(settings.database_url, settings)
        )
    return _async_engine


def get_sync_engine() -> Engine:
    global _sync_engine
    if _sync_engine is None:
        settings = get_settings()
        _sync_engine = create_engine(
            settings.database_sync_url, **engine_options(settings.database_sync_url, settings)
        )
    return _sync_engine


async def dispose_engines() -> None:
    """Close pooled connections on shutdown."""
    global _async_engine, _sync_engine
    if _async_engine is not None:
        await _async_engine.dispose()
        _async_engine = None
    if _sync_engine is not None:
        _sync_engine.dispose()
        _sync_engine = None
