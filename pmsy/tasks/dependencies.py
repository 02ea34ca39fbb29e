"""Task dependencies.

Edges of the project schedule graph: ``task_id`` depends on
``depends_on_task_id``. A new edge is refused when it would close a
cycle anywhere in the graph.
"""

import logging
from enum import Enum
from typing import Any, Dict, Hashable, Iterable, List, Optional, Set, Tuple

from pmsy.access.config import Action
from pmsy.access.context import UserContext
from pmsy.access.guard import RecordGuard
from pmsy.access.policies import UNRESTRICTED
from pmsy.api_errors.exceptions import NotFoundError, ValidationError
from pmsy.db.models import Task, TaskDependency, new_id
from pmsy.db.store import Store
from pmsy.query.compiler import QueryCompiler
from pmsy.query.config import Operator, SortDirection
from pmsy.query.filters import Condition, FilterSpec, OrderBy

logger = logging.getLogger(__name__)

TASKS = "tasks"
TASK_DEPENDENCIES = "task_dependencies"
MAX_OPTIONS = 50

TASK_SUMMARY_COLUMNS = ("id", "title", "status", "due_date", "priority")


class DependencyType(str, Enum):
    """Scheduling relation between two tasks."""
    FINISH_TO_START = "FS"
    START_TO_START = "SS"
    FINISH_TO_FINISH = "FF"
    START_TO_FINISH = "SF"


Edge = Tuple[Hashable, Hashable]


def would_create_cycle(edges: Iterable[Edge], task_id: Hashable, depends_on_id: Hashable) -> bool:
    """True when adding ``task_id -> depends_on_id`` to ``edges`` yields a cycle.

    Depth-first search with a recursion-stack set over the whole graph.
    Ids are compared by their string form.
    """
    graph: Dict[str, List[str]] = {}
    for source, target in list(edges) + [(task_id, depends_on_id)]:
        graph.setdefault(str(source), []).append(str(target))

    visited: Set[str] = set()
    for root in graph:
        if root in visited:
            continue
        on_stack = {root}
        visited.add(root)
        stack = [(root, iter(graph.get(root, ())))]
        while stack:
            node, neighbours = stack[-1]
            advanced = False
            for neighbour in neighbours:
                if neighbour in on_stack:
                    return True
                if neighbour not in visited:
                    visited.add(neighbour)
                    on_stack.add(neighbour)
                    stack.append((neighbour, iter(graph.get(neighbour, ()))))
                    advanced = True
                    break
            if not advanced:
                on_stack.discard(node)
                stack.pop()
    return False


def _columns(model) -> Dict[str, Any]:
    return {column.name: column.type for column in model.__table__.columns}


class TaskDependencyService:
    """Adds, lists and removes dependency edges of visible tasks."""

    def __init__(
        self,
        store: Store,
        guard: RecordGuard,
        query_compiler: Optional[QueryCompiler] = None,
    ):
        self.store = store
        self.guard = guard
        self.query_compiler = query_compiler or QueryCompiler()
        self._task_columns = _columns(Task)
        self._dependency_columns = _columns(TaskDependency)

    async def _task(self, store: Store, task_id: Any, projection=("id", "project_id")) -> Optional[Dict[str, Any]]:
        query = self.query_compiler.select_by_id(
            TASKS, task_id, UNRESTRICTED, projection=projection, columns=self._task_columns
        )
        return await store.fetch_one(query)

    async def _visible_task(self, user: UserContext, task_id: Any, action: Action) -> Dict[str, Any]:
        if not await self.guard.can_access(user, TASKS, task_id, action, columns=self._task_columns):
            raise NotFoundError("Task not found")
        task = await self._task(self.store, task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def _edges(self, store: Store, **match: Any) -> List[Dict[str, Any]]:
        spec = FilterSpec(conditions=tuple(Condition(k, Operator.EQ, v) for k, v in match.items()))
        query = self.query_compiler.select(
            TASK_DEPENDENCIES, spec, UNRESTRICTED, self._dependency_columns, paginate=False
        )
        return await store.fetch_all(query)

    async def _summaries(self, task_ids: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
        ids = tuple(dict.fromkeys(str(t) for t in task_ids))
        if not ids:
            return {}
        spec = FilterSpec(
            projection=TASK_SUMMARY_COLUMNS,
            conditions=(Condition("id", Operator.IN, ids),),
        )
        query = self.query_compiler.select(TASKS, spec, UNRESTRICTED, self._task_columns, paginate=False)
        return {str(row["id"]): row for row in await self.store.fetch_all(query)}

    async def add(
        self,
        user: UserContext,
        task_id: Any,
        depends_on_id: Any,
        dependency_type: str = DependencyType.FINISH_TO_START.value,
    ) -> Dict[str, Any]:
        """Make ``task_id`` depend on ``depends_on_id``.

        Raises ``ValidationError`` for an unknown type, a self-dependency,
        a missing or cross-project target, a duplicate edge or a cycle.
        """
        try:
            kind = DependencyType(str(dependency_type).upper())
        except ValueError:
            raise ValidationError("Unknown dependency type", field="dependency_type") from None
        if not depends_on_id:
            raise ValidationError("depends_on_task_id is required", field="depends_on_task_id")
        if str(task_id) == str(depends_on_id):
            raise ValidationError("A task cannot depend on itself", field="depends_on_task_id")

        task = await self._visible_task(user, task_id, Action.UPDATE)
        target = await self._task(self.store, depends_on_id)
        if target is None:
            raise ValidationError("Dependency target task does not exist", field="depends_on_task_id")
        if target["project_id"] is not None and task["project_id"] != target["project_id"]:
            raise ValidationError(
                "A task can only depend on tasks of the same project", field="depends_on_task_id"
            )

        async with self.store.transaction() as tx:
            if await self._edges(tx, task_id=task_id, depends_on_task_id=depends_on_id):
                raise ValidationError("This dependency already exists", field="depends_on_task_id")

            edges = await self._edges(tx)
            pairs = [(e["task_id"], e["depends_on_task_id"]) for e in edges]
            if would_create_cycle(pairs, task_id, depends_on_id):
                raise ValidationError("This dependency would create a cycle", field="depends_on_task_id")

            row = {
                "id": new_id(),
                "task_id": task_id,
                "depends_on_task_id": depends_on_id,
                "project_id": task["project_id"],
                "dependency_type": kind.value,
                "created_by": user.user_id,
            }
            created = await tx.fetch_one(
                self.query_compiler.insert(TASK_DEPENDENCIES, row, self._dependency_columns)
            )

        logger.info(
            f"Task dependency added: {task_id} -> {depends_on_id} ({kind.value})",
            extra={"table": TASK_DEPENDENCIES, "operation": "insert"},
        )
        return created

    async def list(self, user: UserContext, task_id: Any) -> Dict[str, List[Dict[str, Any]]]:
        """Predecessors (``dependencies``) and successors (``dependents``) of a task."""
        await self._visible_task(user, task_id, Action.SELECT)
        dependencies = await self._edges(self.store, task_id=task_id)
        dependents = await self._edges(self.store, depends_on_task_id=task_id)
        summaries = await self._summaries(
            [e["depends_on_task_id"] for e in dependencies] + [e["task_id"] for e in dependents]
        )

        def enrich(edge, other_column, prefix):
            other = summaries.get(str(edge[other_column]), {})
            enriched = dict(edge)
            for column in ("title", "status", "due_date", "priority"):
                enriched[f"{prefix}_{column}"] = other.get(column)
            return enriched

        return {
            "dependencies": [enrich(e, "depends_on_task_id", "depends_on") for e in dependencies],
            "dependents": [enrich(e, "task_id", "dependent") for e in dependents],
        }

    async def remove(self, user: UserContext, task_id: Any, dependency_id: Any) -> None:
        await self._visible_task(user, task_id, Action.UPDATE)
        edges = await self._edges(self.store, id=dependency_id, task_id=task_id)
        if not edges:
            raise NotFoundError("Dependency not found")
        await self.store.execute(
            self.query_compiler.delete_by_id(TASK_DEPENDENCIES, dependency_id, self._dependency_columns)
        )
        logger.info(
            f"Task dependency removed: {dependency_id}",
            extra={"table": TASK_DEPENDENCIES, "operation": "delete"},
        )

    async def options(self, user: UserContext, task_id: Any) -> List[Dict[str, Any]]:
        """Same-project tasks that are not yet predecessors of ``task_id``, newest first."""
        task = await self._visible_task(user, task_id, Action.SELECT)
        existing = {str(e["depends_on_task_id"]) for e in await self._edges(self.store, task_id=task_id)}
        spec = FilterSpec(
            projection=TASK_SUMMARY_COLUMNS,
            conditions=(
                Condition("project_id", Operator.EQ, task["project_id"]),
                Condition("id", Operator.NEQ, task_id),
            ),
            order=(OrderBy("created_at", SortDirection.DESC),),
            limit=MAX_OPTIONS,
        )
        rows = await self.store.fetch_all(
            self.query_compiler.select(TASKS, spec, UNRESTRICTED, self._task_columns, paginate=False)
        )
        return [row for row in rows if str(row["id"]) not in existing]
