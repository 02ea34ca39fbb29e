"""Task scheduling helpers: dependency edges and cycle detection."""

from pmsy.tasks.dependencies import DependencyType, TaskDependencyService, would_create_cycle

__all__ = [
    "DependencyType",
    "TaskDependencyService",
    "would_create_cycle",
]
