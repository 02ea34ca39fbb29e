"""Task Dependency API Routes.

Predecessors and successors of a task, and the tasks still available
as predecessors.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Response

from pmsy.access.context import UserContext
from pmsy.api.dependencies import check_rate_limit, get_task_dependency_service
from pmsy.api.models import DependencyCreate
from pmsy.tasks.dependencies import TaskDependencyService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Task Dependencies"])


@router.get("/{task_id}")
async def list_dependencies(
    task_id: str,
    user: UserContext = Depends(check_rate_limit),
    service: TaskDependencyService = Depends(get_task_dependency_service),
) -> Dict[str, List[Dict[str, Any]]]:
    return await service.list(user, task_id)


@router.post("/{task_id}", status_code=201)
async def add_dependency(
    task_id: str,
    request: DependencyCreate,
    user: UserContext = Depends(check_rate_limit),
    service: TaskDependencyService = Depends(get_task_dependency_service),
) -> Dict[str, Any]:
    """Make the task depend on ``depends_on_task_id``."""
    return await service.add(user, task_id, request.depends_on_task_id, request.dependency_type)


@router.get("/{task_id}/options")
async def dependency_options(
    task_id: str,
    user: UserContext = Depends(check_rate_limit),
    service: TaskDependencyService = Depends(get_task_dependency_service),
) -> List[Dict[str, Any]]:
    """Same-project tasks that can still become predecessors."""
    return await service.options(user, task_id)


@router.delete("/{task_id}/{dependency_id}", status_code=204)
async def remove_dependency(
    task_id: str,
    dependency_id: str,
    user: UserContext = Depends(check_rate_limit),
    service: TaskDependencyService = Depends(get_task_dependency_service),
) -> Response:
    await service.remove(user, task_id, dependency_id)
    return Response(status_code=204)
