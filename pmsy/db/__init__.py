"""Database package for the PMSY backend."""

from pmsy.db.base import Base
from pmsy.db.engine import (
    dispose_engines,
    get_async_engine,
    get_sync_engine,
)
from pmsy.db.models import (
    Profile,
    Project,
    ProjectMember,
    SystemConfig,
    Task,
    TaskDependency,
)
from pmsy.db.store import Store, StoreError, classify_store_error

__all__ = [
    "Base",
    "get_async_engine",
    "get_sync_engine",
    "dispose_engines",
    "Profile",
    "Project",
    "ProjectMember",
    "SystemConfig",
    "Task",
    "TaskDependency",
    "Store",
    "StoreError",
    "classify_store_error",
]
