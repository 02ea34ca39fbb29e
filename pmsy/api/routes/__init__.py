"""API route modules."""

from pmsy.api.routes.rest import router as rest_router
from pmsy.api.routes.task_dependencies import router as task_dependencies_router

__all__ = [
    "rest_router",
    "task_dependencies_router",
]
