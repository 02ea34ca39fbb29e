"""Tests for task dependency edges and cycle detection."""

from datetime import date

import pytest

from pmsy.access.context import UserContext
from pmsy.access.guard import RecordGuard
from pmsy.access.registry import PolicyRegistry
from pmsy.api_errors.exceptions import NotFoundError, ValidationError
from pmsy.db.store import Store
from pmsy.tasks.dependencies import DependencyType, TaskDependencyService, would_create_cycle
from conftest import (
    ALICE_ID,
    APOLLO_ID,
    BOB_ID,
    CAROL_ID,
    DEP_BUILD_DESIGN_ID,
    TASK_BUILD_ID,
    TASK_DESIGN_ID,
    TASK_SHIP_ID,
    TASK_TEST_ID,
    TASK_ZEUS_ID,
)

ALICE = UserContext(user_id=ALICE_ID, role="user")
BOB = UserContext(user_id=BOB_ID, role="user")
CAROL = UserContext(user_id=CAROL_ID, role="user")


@pytest.fixture
def service(database):
    store = Store(database.async_engine())
    return TaskDependencyService(store, RecordGuard(PolicyRegistry.default(), store))


# =============================================================================
# Cycle detection
# =============================================================================


class TestWouldCreateCycle:
    def test_empty_graph(self):
        assert not would_create_cycle([], "a", "b")

    def test_direct_back_edge(self):
        assert would_create_cycle([("b", "a")], "a", "b")

    def test_transitive_cycle(self):
        edges = [("b", "c"), ("c", "d")]
        assert would_create_cycle(edges, "d", "b")

    def test_diamond_is_not_a_cycle(self):
        edges = [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]
        assert not would_create_cycle(edges, "a", "d")

    def test_chain_extension(self):
        assert not would_create_cycle([("a", "b"), ("b", "c")], "c", "d")

    def test_self_edge(self):
        assert would_create_cycle([], "a", "a")

    def test_existing_cycle_elsewhere_detected(self):
        assert would_create_cycle([("x", "y"), ("y", "x")], "a", "b")

    def test_ids_compared_as_strings(self):
        assert would_create_cycle([(2, 1)], "1", "2")

    def test_long_chain(self):
        edges = [(str(i), str(i + 1)) for i in range(5000)]
        assert would_create_cycle(edges, "5000", "0")
        assert not would_create_cycle(edges, "0", "5000")


class TestDependencyType:
    def test_values(self):
        assert [t.value for t in DependencyType] == ["FS", "SS", "FF", "SF"]


# =============================================================================
# Service
# =============================================================================


class TestAdd:
    @pytest.mark.asyncio
    async def test_add(self, service):
        created = await service.add(ALICE, TASK_TEST_ID, TASK_BUILD_ID, "ss")
        assert created["task_id"] == TASK_TEST_ID
        assert created["depends_on_task_id"] == TASK_BUILD_ID
        assert created["project_id"] == APOLLO_ID
        assert created["dependency_type"] == "SS"
        assert created["created_by"] == ALICE_ID

    @pytest.mark.asyncio
    async def test_member_may_add(self, service):
        created = await service.add(BOB, TASK_SHIP_ID, TASK_TEST_ID)
        assert created["dependency_type"] == "FS"

    @pytest.mark.asyncio
    async def test_cycle_refused(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.add(ALICE, TASK_DESIGN_ID, TASK_BUILD_ID)
        assert "cycle" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transitive_cycle_refused(self, service):
        await service.add(ALICE, TASK_TEST_ID, TASK_BUILD_ID)
        with pytest.raises(ValidationError):
            await service.add(ALICE, TASK_DESIGN_ID, TASK_TEST_ID)

    @pytest.mark.asyncio
    async def test_duplicate_refused(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.add(ALICE, TASK_BUILD_ID, TASK_DESIGN_ID)
        assert "already exists" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_self_dependency_refused(self, service):
        with pytest.raises(ValidationError):
            await service.add(ALICE, TASK_BUILD_ID, TASK_BUILD_ID)

    @pytest.mark.asyncio
    async def test_unknown_type_refused(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.add(ALICE, TASK_TEST_ID, TASK_BUILD_ID, "XX")
        assert exc_info.value.details == [{"field": "dependency_type", "issue": "Unknown dependency type"}]

    @pytest.mark.asyncio
    async def test_missing_target_refused(self, service):
        with pytest.raises(ValidationError):
            await service.add(ALICE, TASK_TEST_ID, "no-such-task")

    @pytest.mark.asyncio
    async def test_missing_depends_on_refused(self, service):
        with pytest.raises(ValidationError):
            await service.add(ALICE, TASK_TEST_ID, None)

    @pytest.mark.asyncio
    async def test_cross_project_refused(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.add(ALICE, TASK_TEST_ID, TASK_ZEUS_ID)
        assert "same project" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invisible_task_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.add(CAROL, TASK_TEST_ID, TASK_BUILD_ID)


class TestList:
    @pytest.mark.asyncio
    async def test_dependencies_enriched(self, service):
        result = await service.list(BOB, TASK_BUILD_ID)
        assert result["dependents"] == []
        (edge,) = result["dependencies"]
        assert edge["id"] == DEP_BUILD_DESIGN_ID
        assert edge["depends_on_title"] == "Design"
        assert edge["depends_on_status"] == "done"
        assert edge["depends_on_priority"] == 1
        assert edge["depends_on_due_date"] == date(2026, 3, 1)

    @pytest.mark.asyncio
    async def test_dependents_enriched(self, service):
        result = await service.list(ALICE, TASK_DESIGN_ID)
        assert result["dependencies"] == []
        (edge,) = result["dependents"]
        assert edge["task_id"] == TASK_BUILD_ID
        assert edge["dependent_title"] == "Build"
        assert edge["dependent_status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_invisible_task(self, service):
        with pytest.raises(NotFoundError):
            await service.list(CAROL, TASK_BUILD_ID)


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove(self, service):
        await service.remove(ALICE, TASK_BUILD_ID, DEP_BUILD_DESIGN_ID)
        result = await service.list(ALICE, TASK_BUILD_ID)
        assert result["dependencies"] == []

    @pytest.mark.asyncio
    async def test_edge_of_another_task(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.remove(ALICE, TASK_DESIGN_ID, DEP_BUILD_DESIGN_ID)
        assert exc_info.value.message == "Dependency not found"

    @pytest.mark.asyncio
    async def test_invisible_task(self, service):
        with pytest.raises(NotFoundError):
            await service.remove(CAROL, TASK_BUILD_ID, DEP_BUILD_DESIGN_ID)


class TestOptions:
    @pytest.mark.asyncio
    async def test_same_project_only(self, service):
        options = await service.options(ALICE, TASK_TEST_ID)
        assert sorted(o["title"] for o in options) == ["Build", "Design", "Ship"]

    @pytest.mark.asyncio
    async def test_existing_predecessors_excluded(self, service):
        options = await service.options(ALICE, TASK_BUILD_ID)
        assert sorted(o["title"] for o in options) == ["Ship", "Test"]

    @pytest.mark.asyncio
    async def test_summary_columns_only(self, service):
        options = await service.options(ALICE, TASK_TEST_ID)
        assert set(options[0]) == {"id", "title", "status", "due_date", "priority"}
