"""Tests for query compilation into parameterized statements."""

import pytest
import sqlalchemy as sa
from sqlalchemy import DateTime, Integer, String
from sqlalchemy.dialects import postgresql, sqlite

from pmsy.access.config import MembershipRelation, PolicyEntry
from pmsy.access.policies import (
    DENY_ALL,
    UNRESTRICTED,
    PermissionFilterCompiler,
    Restricted,
)
from pmsy.access.context import UserContext
from pmsy.access.registry import PolicyRegistry
from pmsy.api_errors.exceptions import IdentifierRejected, UnknownOperator
from pmsy.query.compiler import ParameterizedQuery, QueryCompiler
from pmsy.query.config import Operator, QueryConfig
from pmsy.query.expressions import Comparison
from pmsy.query.filters import FilterSpec, parse_filter
from pmsy.query.identifiers import Identifier

PG = postgresql.dialect()

TASK_COLUMNS = {
    "id": String(36),
    "title": String(300),
    "status": String(20),
    "priority": Integer(),
    "created_by": String(36),
    "created_at": DateTime(),
}


def _pg(query: ParameterizedQuery):
    compiled = query.compiled(PG)
    return str(compiled), dict(compiled.params)


@pytest.fixture
def compiler():
    return QueryCompiler()


# =============================================================================
# Select
# =============================================================================


class TestSelect:
    """SELECT with caller filter, policy, ordering and pagination."""

    def test_unrestricted_no_filter(self, compiler):
        sql, params = _pg(compiler.select("tasks", FilterSpec(), UNRESTRICTED))
        assert "FROM tasks" in sql
        assert "WHERE" not in sql
        assert "LIMIT" in sql
        assert 100 in params.values()

    def test_values_are_bound(self, compiler):
        spec = parse_filter({"eq.status": "x' OR '1'='1"})
        sql, params = _pg(compiler.select("tasks", spec, UNRESTRICTED))
        assert "x' OR" not in sql
        assert "x' OR '1'='1" in params.values()

    def test_projection(self, compiler):
        spec = parse_filter({"select": "id,title"})
        sql, _ = _pg(compiler.select("tasks", spec, UNRESTRICTED, TASK_COLUMNS))
        assert sql.startswith("SELECT tasks.id, tasks.title")

    def test_known_columns_listed_explicitly(self, compiler):
        sql, _ = _pg(compiler.select("tasks", FilterSpec(), UNRESTRICTED, TASK_COLUMNS))
        assert "*" not in sql
        assert "tasks.created_at" in sql

    def test_order_limit_offset_last(self, compiler):
        spec = parse_filter({"order": "created_at.desc,title", "limit": "10", "offset": "20"})
        sql, params = _pg(compiler.select("tasks", spec, UNRESTRICTED))
        assert "ORDER BY tasks.created_at DESC, tasks.title ASC" in sql
        assert sql.index("ORDER BY") < sql.index("LIMIT") < sql.index("OFFSET")
        assert 10 in params.values() and 20 in params.values()

    def test_limit_clamped(self):
        compiler = QueryCompiler(QueryConfig(max_limit=100))
        spec = FilterSpec(limit=100000)
        _, params = _pg(compiler.select("tasks", spec, UNRESTRICTED))
        assert 100 in params.values()
        assert 100000 not in params.values()

    def test_unpaginated_select_has_no_limit(self, compiler):
        sql, _ = _pg(compiler.select("tasks", FilterSpec(), UNRESTRICTED, paginate=False))
        assert "LIMIT" not in sql

    @pytest.mark.parametrize("params,fragment", [
        ({"neq.status": "x"}, "tasks.status != "),
        ({"gt.priority": "1"}, "tasks.priority > "),
        ({"gte.priority": "1"}, "tasks.priority >= "),
        ({"lt.priority": "1"}, "tasks.priority < "),
        ({"lte.priority": "1"}, "tasks.priority <= "),
        ({"like.title": "a%"}, "tasks.title LIKE "),
        ({"ilike.title": "a%"}, "tasks.title ILIKE "),
        ({"in.status": "a,b"}, "tasks.status IN ("),
        ({"is.title": "null"}, "tasks.title IS NULL"),
        ({"is.done": "true"}, "tasks.done IS true"),
        ({"is.done": "false"}, "tasks.done IS false"),
    ])
    def test_operator_forms(self, compiler, params, fragment):
        sql, _ = _pg(compiler.select("tasks", parse_filter(params), UNRESTRICTED))
        assert fragment in sql

    def test_ilike_on_sqlite_is_case_insensitive_form(self, compiler):
        spec = parse_filter({"ilike.title": "a%"})
        sql = str(compiler.select("tasks", spec, UNRESTRICTED).compiled(sqlite.dialect()))
        assert "lower(tasks.title) LIKE lower(" in sql

    def test_bad_table_rejected(self, compiler):
        with pytest.raises(IdentifierRejected):
            compiler.select("tasks; drop table tasks", FilterSpec(), UNRESTRICTED)

    def test_operator_outside_set_rejected(self, compiler):
        with pytest.raises(UnknownOperator):
            compiler.to_clause(Comparison(Identifier("x"), "regex", "y"), sa.table("t", sa.column("x")))


# =============================================================================
# Policies in the WHERE clause
# =============================================================================


class TestPolicyPredicates:
    """The effective filter is ANDed with the caller's conditions."""

    @pytest.mark.asyncio
    async def test_scenario_owner_and_caller_condition(self, compiler):
        registry = PolicyRegistry({"projects": PolicyEntry(owner_column="created_by")}).freeze()
        permissions = PermissionFilterCompiler(registry)
        user = UserContext(user_id="u1", role="user")
        spec = parse_filter({"eq.status": "active"})

        effective = await permissions.compile(user, "projects", spec)
        assert isinstance(effective, Restricted)

        sql, params = _pg(compiler.select("projects", spec, effective))
        assert "WHERE projects.status = " in sql
        assert " AND projects.created_by = " in sql
        assert "active" in params.values()
        assert "u1" in params.values()
        assert "u1" not in sql

    def test_deny_all_compiles_to_constant_false(self, compiler):
        spec = parse_filter({"eq.status": "active"})
        sql, _ = _pg(compiler.select("system_configs", spec, DENY_ALL))
        assert "WHERE false" in sql
        assert "status" not in sql

    def test_deny_all_never_empty_where(self, compiler):
        sql, _ = _pg(compiler.select("system_configs", FilterSpec(), DENY_ALL))
        assert "WHERE" in sql

    def test_unrestricted_omits_policy(self, compiler):
        spec = parse_filter({"eq.status": "active"})
        sql, params = _pg(compiler.select("tasks", spec, UNRESTRICTED))
        assert "created_by" not in sql
        assert list(params.values()).count("active") == 1

    def test_restricted_without_branches_fails_closed(self, compiler):
        sql, _ = _pg(compiler.select("tasks", FilterSpec(), Restricted(Identifier("tasks"), ())))
        assert "WHERE false" in sql

    @pytest.mark.asyncio
    async def test_membership_subquery(self, compiler):
        entry = PolicyEntry(
            owner_column="created_by",
            membership=MembershipRelation("project_members", "user_id", "project_id"),
        )
        registry = PolicyRegistry({"tasks": entry}).freeze()
        permissions = PermissionFilterCompiler(registry)
        user = UserContext(user_id="u1", role="user")

        effective = await permissions.compile(user, "tasks")
        sql, params = _pg(compiler.select("tasks", FilterSpec(), effective))
        assert "tasks.created_by = " in sql
        assert " OR tasks.project_id IN (SELECT project_members.project_id" in sql
        assert "FROM project_members" in sql
        assert "WHERE project_members.user_id = " in sql
        assert list(params.values()).count("u1") == 2


# =============================================================================
# Count, by-id and writes
# =============================================================================


class TestOtherStatements:
    def test_count_is_unpaginated(self, compiler):
        spec = parse_filter({"eq.status": "todo", "limit": "5", "order": "title"})
        sql, _ = _pg(compiler.count("tasks", spec, UNRESTRICTED))
        assert sql.startswith("SELECT count(*)")
        assert "LIMIT" not in sql
        assert "ORDER BY" not in sql
        assert "tasks.status = " in sql

    def test_select_by_id(self, compiler):
        sql, params = _pg(compiler.select_by_id("tasks", "t1", UNRESTRICTED, projection=("title",)))
        assert sql.startswith("SELECT tasks.title")
        assert "WHERE tasks.id = " in sql
        assert "t1" in params.values()

    def test_select_by_id_respects_policy(self, compiler):
        sql, _ = _pg(compiler.select_by_id("tasks", "t1", DENY_ALL))
        assert "false" in sql

    def test_insert_returning(self, compiler):
        sql, params = _pg(compiler.insert("tasks", {"title": "New", "status": "todo"}, TASK_COLUMNS))
        assert sql.startswith("INSERT INTO tasks (title, status) VALUES")
        assert "RETURNING tasks.id" in sql
        assert "New" in params.values()

    def test_insert_bad_column(self, compiler):
        with pytest.raises(IdentifierRejected):
            compiler.insert("tasks", {"title; drop": "x"})

    def test_update_with_filter_and_policy(self, compiler):
        spec = parse_filter({"eq.status": "todo"})
        effective = Restricted(Identifier("tasks"), (Comparison(Identifier("created_by"), Operator.EQ, "u1"),))
        sql, params = _pg(compiler.update("tasks", {"status": "done"}, spec, effective, TASK_COLUMNS))
        assert sql.startswith("UPDATE tasks SET status=")
        assert "WHERE tasks.status = " in sql and "tasks.created_by = " in sql
        assert "RETURNING" in sql
        assert "done" in params.values()

    def test_update_by_id(self, compiler):
        sql, _ = _pg(compiler.update_by_id("tasks", "t1", {"title": "x"}, TASK_COLUMNS))
        assert "WHERE tasks.id = " in sql

    def test_delete_deny_all(self, compiler):
        query = compiler.delete("tasks", parse_filter({"eq.status": "todo"}), DENY_ALL)
        sql, _ = _pg(query)
        assert sql.startswith("DELETE FROM tasks WHERE false")
        assert query.returns_rows is False

    def test_delete_by_id(self, compiler):
        sql, _ = _pg(compiler.delete_by_id("tasks", "t1"))
        assert sql.startswith("DELETE FROM tasks WHERE tasks.id = ")

    def test_distinct_values_not_capped(self, compiler):
        query = compiler.distinct_values("project_members", "project_id", "user_id", "u1", limit=501)
        sql, params = _pg(query)
        assert sql.startswith("SELECT DISTINCT project_members.project_id")
        assert "ORDER BY project_members.project_id" in sql
        assert 501 in params.values()

    def test_query_metadata(self, compiler):
        query = compiler.select("tasks", FilterSpec(), UNRESTRICTED)
        assert query.operation == "select"
        assert query.table == "tasks"
        assert isinstance(query.table, Identifier)
        assert "tasks" in query.sql
