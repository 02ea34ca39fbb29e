"""Tests for single-record access checks."""

import pytest

from pmsy.access.config import Action, MembershipRelation, PolicyEntry
from pmsy.access.context import UserContext
from pmsy.access.guard import RecordGuard
from pmsy.access.registry import PolicyRegistry
from pmsy.db.store import Store
from conftest import (
    ADMIN_ID,
    ALICE_ID,
    APOLLO_ID,
    BOB_ID,
    CAROL_ID,
    TASK_BUILD_ID,
    TASK_SHIP_ID,
    ZEUS_ID,
)

ADMIN = UserContext(user_id=ADMIN_ID, role="admin")
ALICE = UserContext(user_id=ALICE_ID, role="user")
BOB = UserContext(user_id=BOB_ID, role="user")
CAROL = UserContext(user_id=CAROL_ID, role="user")


@pytest.fixture
def guard(database):
    return RecordGuard(PolicyRegistry.default(), Store(database.async_engine()))


class TestCanAccess:
    @pytest.mark.asyncio
    async def test_member_of_record_project(self, guard):
        assert await guard.can_access(BOB, "tasks", TASK_BUILD_ID)

    @pytest.mark.asyncio
    async def test_outsider_refused(self, guard):
        assert not await guard.can_access(CAROL, "tasks", TASK_BUILD_ID)

    @pytest.mark.asyncio
    async def test_owner(self, guard):
        assert await guard.can_access(BOB, "tasks", TASK_SHIP_ID, Action.UPDATE)

    @pytest.mark.asyncio
    async def test_admin(self, guard):
        assert await guard.can_access(ADMIN, "tasks", TASK_BUILD_ID, Action.DELETE)

    @pytest.mark.asyncio
    async def test_missing_record_is_no_access(self, guard):
        assert not await guard.can_access(ALICE, "tasks", "does-not-exist")

    @pytest.mark.asyncio
    async def test_admin_only_table(self, guard):
        assert not await guard.can_access(ALICE, "system_configs", "maintenance")

    @pytest.mark.asyncio
    async def test_project_visible_to_members(self, guard):
        assert await guard.can_access(BOB, "projects", APOLLO_ID)
        assert not await guard.can_access(BOB, "projects", ZEUS_ID)

    @pytest.mark.asyncio
    async def test_failed_membership_check_refuses(self, database):
        registry = PolicyRegistry({
            "tasks": PolicyEntry(
                membership=MembershipRelation("missing_members", "user_id", "project_id"),
            ),
        }).freeze()
        guard = RecordGuard(registry, Store(database.async_engine()))
        assert not await guard.can_access(BOB, "tasks", TASK_BUILD_ID)


class TestCanCreate:
    @pytest.mark.asyncio
    async def test_member_creates_in_own_project(self, guard):
        row = {"project_id": APOLLO_ID, "title": "New", "created_by": BOB_ID}
        assert await guard.can_create(BOB, "tasks", row)

    @pytest.mark.asyncio
    async def test_cannot_create_for_someone_else(self, guard):
        row = {"project_id": APOLLO_ID, "title": "New", "created_by": ALICE_ID}
        assert not await guard.can_create(BOB, "tasks", row)

    @pytest.mark.asyncio
    async def test_cannot_create_in_foreign_project(self, guard):
        row = {"project_id": ZEUS_ID, "title": "New", "created_by": BOB_ID}
        assert not await guard.can_create(BOB, "tasks", row)

    @pytest.mark.asyncio
    async def test_admin_only_table(self, guard):
        assert not await guard.can_create(ALICE, "system_configs", {"key": "k", "value": "v"})
        assert await guard.can_create(ADMIN, "system_configs", {"key": "k", "value": "v"})

    @pytest.mark.asyncio
    async def test_new_project_skips_membership(self, guard):
        assert await guard.can_create(CAROL, "projects", {"name": "Hermes", "manager_id": CAROL_ID})
        assert not await guard.can_create(CAROL, "projects", {"name": "Hermes", "manager_id": BOB_ID})


class TestCanWrite:
    @pytest.mark.asyncio
    async def test_plain_change(self, guard):
        assert await guard.can_write(BOB, "tasks", {"status": "done", "updated_by": BOB_ID})

    @pytest.mark.asyncio
    async def test_move_to_foreign_project_refused(self, guard):
        assert not await guard.can_write(BOB, "tasks", {"project_id": ZEUS_ID})
        assert await guard.can_write(BOB, "tasks", {"project_id": APOLLO_ID})

    @pytest.mark.asyncio
    async def test_owner_reassignment_refused(self, guard):
        assert not await guard.can_write(BOB, "tasks", {"created_by": ALICE_ID})

    @pytest.mark.asyncio
    async def test_protected_column(self, guard):
        assert not await guard.can_write(BOB, "profiles", {"role": "admin"})
        assert await guard.can_write(BOB, "profiles", {"full_name": "Robert"})
        assert await guard.can_write(ADMIN, "profiles", {"role": "admin"})

    @pytest.mark.asyncio
    async def test_protected_column_on_create(self, guard):
        row = {"id": BOB_ID, "email": "bob2@example.com", "role": "admin"}
        assert not await guard.can_create(BOB, "profiles", row)
