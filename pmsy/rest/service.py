"""Generic REST service.

Runs one request against an arbitrary table: parse the filter, decide
the effective visibility filter, reflect the table's columns, coerce
values, compile and execute. Authorization failures on read paths look
exactly like empty results or missing records.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.types import TypeEngine

from pmsy.access.config import AccessConfig, Action
from pmsy.access.context import UserContext
from pmsy.access.guard import RecordGuard
from pmsy.access.policies import UNRESTRICTED, DenyAll, EffectiveFilter, PermissionFilterCompiler
from pmsy.access.registry import PolicyRegistry
from pmsy.api_errors.exceptions import (
    AuthorizationError,
    IdentifierRejected,
    MalformedFilter,
    NotFoundError,
    ValidationError,
)
from pmsy.db.store import Store
from pmsy.query.coercion import coerce_row, coerce_spec, coerce_value, python_types, require_columns
from pmsy.query.compiler import QueryCompiler
from pmsy.query.filters import FilterSpec, QueryParams, parse_filter
from pmsy.query.identifiers import Identifier

logger = logging.getLogger(__name__)

ID_COLUMN = "id"
CREATED_BY_COLUMN = "created_by"
UPDATED_BY_COLUMN = "updated_by"
UPDATED_AT_COLUMN = "updated_at"

Columns = Dict[str, TypeEngine]


@dataclass
class ListResult:
    """Rows of a list query, plus the unpaginated total when requested."""

    rows: List[Dict[str, Any]]
    total: Optional[int] = None


def _now_for(column_type: TypeEngine) -> datetime:
    now = datetime.now(timezone.utc)
    if getattr(column_type, "timezone", False):
        return now
    return now.replace(tzinfo=None)


class RestService:
    """Generic select/insert/update/delete over any table."""

    def __init__(
        self,
        store: Store,
        registry: PolicyRegistry,
        query_compiler: Optional[QueryCompiler] = None,
        permissions: Optional[PermissionFilterCompiler] = None,
        guard: Optional[RecordGuard] = None,
        access_config: Optional[AccessConfig] = None,
    ):
        self.store = store
        self.registry = registry
        self.query_compiler = query_compiler or QueryCompiler()
        self.permissions = permissions or PermissionFilterCompiler(
            registry, store, self.query_compiler, access_config
        )
        self.guard = guard or RecordGuard(registry, store, self.query_compiler, access_config)

    # ── Helpers ────────────────────────────────────────────────────────

    def parse(self, params: QueryParams) -> FilterSpec:
        return parse_filter(params, self.query_compiler.config)

    async def _authorize(
        self,
        user: UserContext,
        table: Identifier,
        spec: FilterSpec,
    ) -> Tuple[EffectiveFilter, Columns]:
        """Permission decision and column reflection, issued concurrently."""
        effective, columns = await asyncio.gather(
            self.permissions.compile(user, table, spec),
            self.store.table_columns(table),
        )
        return effective, columns

    @staticmethod
    def _table_exists(table: Identifier, effective: EffectiveFilter, columns: Columns) -> bool:
        """False when a denied caller hits a missing table; unknown tables are rejected otherwise."""
        if columns:
            return True
        if isinstance(effective, DenyAll):
            return False
        raise IdentifierRejected(table)

    @staticmethod
    def _record_id(record_id: Any, columns: Columns) -> Any:
        if ID_COLUMN not in columns:
            raise NotFoundError()
        try:
            return coerce_value(record_id, python_types(columns)[ID_COLUMN], ID_COLUMN)
        except MalformedFilter:
            raise NotFoundError() from None

    @staticmethod
    def _require_conditions(spec: FilterSpec) -> None:
        if not spec.conditions:
            raise ValidationError("At least one filter condition is required", field="filter")

    @staticmethod
    def _require_values(values: Any) -> Mapping[str, Any]:
        if not isinstance(values, Mapping) or not values:
            raise ValidationError("Request body must be a non-empty object", field="body")
        return values

    def _prepare_insert(
        self, user: UserContext, table: Identifier, row: Mapping[str, Any], columns: Columns
    ) -> Dict[str, Any]:
        prepared = coerce_row(row, python_types(columns))
        if CREATED_BY_COLUMN in columns:
            # Only admins may record someone else as the creator
            admin = self.guard.policy_for(table).is_admin(user.role)
            if not admin or prepared.get(CREATED_BY_COLUMN) is None:
                prepared[CREATED_BY_COLUMN] = user.user_id
        if ID_COLUMN in columns and prepared.get(ID_COLUMN) is None:
            id_type = python_types(columns)[ID_COLUMN]
            if id_type is str:
                prepared[ID_COLUMN] = str(uuid.uuid4())
            elif id_type is uuid.UUID:
                prepared[ID_COLUMN] = uuid.uuid4()
        return prepared

    def _prepare_update(self, user: UserContext, values: Mapping[str, Any], columns: Columns) -> Dict[str, Any]:
        prepared = coerce_row(values, python_types(columns))
        prepared.pop(ID_COLUMN, None)
        if not prepared:
            raise ValidationError("Request body must change at least one column", field="body")
        if UPDATED_BY_COLUMN in columns:
            prepared[UPDATED_BY_COLUMN] = user.user_id
        if UPDATED_AT_COLUMN in columns:
            prepared[UPDATED_AT_COLUMN] = _now_for(columns[UPDATED_AT_COLUMN])
        return prepared

    # ── Reads ──────────────────────────────────────────────────────────

    async def select(
        self,
        user: UserContext,
        table: str,
        params: QueryParams,
        count: bool = False,
    ) -> ListResult:
        """Rows of ``table`` visible to ``user`` and matching ``params``.

        With ``count`` the unpaginated total is computed concurrently with
        the row query.
        """
        table = Identifier(table)
        spec = self.parse(params)
        effective, columns = await self._authorize(user, table, spec)
        if not self._table_exists(table, effective, columns):
            return ListResult(rows=[], total=0 if count else None)

        spec = coerce_spec(spec, python_types(columns))
        query = self.query_compiler.select(table, spec, effective, columns)
        if not count:
            return ListResult(rows=await self.store.fetch_all(query))

        rows, total = await asyncio.gather(
            self.store.fetch_all(query),
            self.store.fetch_scalar(self.query_compiler.count(table, spec, effective, columns)),
        )
        return ListResult(rows=rows, total=int(total or 0))

    async def count(self, user: UserContext, table: str, params: QueryParams) -> int:
        table = Identifier(table)
        spec = self.parse(params)
        effective, columns = await self._authorize(user, table, spec)
        if not self._table_exists(table, effective, columns):
            return 0
        spec = coerce_spec(spec, python_types(columns))
        total = await self.store.fetch_scalar(self.query_compiler.count(table, spec, effective, columns))
        return int(total or 0)

    async def get(
        self,
        user: UserContext,
        table: str,
        record_id: Any,
        params: Optional[QueryParams] = None,
    ) -> Dict[str, Any]:
        """One record by id. Missing and forbidden records both raise ``NotFoundError``."""
        table = Identifier(table)
        spec = self.parse(params or {})
        columns = await self.store.table_columns(table)
        record_id = self._record_id(record_id, columns)
        if not await self.guard.can_access(user, table, record_id, Action.SELECT, columns=columns):
            raise NotFoundError()

        require_columns(spec.projection, columns)
        query = self.query_compiler.select_by_id(
            table, record_id, UNRESTRICTED, projection=spec.projection, columns=columns
        )
        row = await self.store.fetch_one(query)
        if row is None:
            raise NotFoundError()
        return row

    # ── Writes ─────────────────────────────────────────────────────────

    async def insert(self, user: UserContext, table: str, body: Any) -> List[Dict[str, Any]]:
        """Insert one object or a batch, atomically.

        Raises ``AuthorizationError`` when any row fails the create check.
        """
        table = Identifier(table)
        rows = body if isinstance(body, list) else [body]
        if not rows or not all(isinstance(row, Mapping) and row for row in rows):
            raise ValidationError(
                "Request body must be an object or a non-empty array of objects",
                field="body",
            )

        columns = await self.store.table_columns(table)
        if not columns:
            raise IdentifierRejected(table)
        prepared = [self._prepare_insert(user, table, row, columns) for row in rows]

        for row in prepared:
            if not await self.guard.can_create(user, table, row):
                raise AuthorizationError("Not allowed to create records in this table")

        async with self.store.transaction() as tx:
            inserted = []
            for row in prepared:
                inserted.append(await tx.fetch_one(self.query_compiler.insert(table, row, columns)))

        logger.info(
            f"Inserted {len(inserted)} row(s) into {table}",
            extra={"table": str(table), "operation": "insert"},
        )
        return inserted

    async def update(
        self,
        user: UserContext,
        table: str,
        params: QueryParams,
        values: Any,
    ) -> List[Dict[str, Any]]:
        """Update every visible row matching ``params``; at least one condition is required."""
        table = Identifier(table)
        spec = self.parse(params)
        self._require_conditions(spec)
        values = self._require_values(values)

        effective, columns = await self._authorize(user, table, spec)
        if not self._table_exists(table, effective, columns):
            return []

        spec = coerce_spec(spec, python_types(columns))
        if isinstance(effective, DenyAll):
            return []
        changes = self._prepare_update(user, values, columns)
        if not await self.guard.can_write(user, table, changes):
            raise AuthorizationError("Not allowed to write these values")
        rows = await self.store.fetch_all(
            self.query_compiler.update(table, changes, spec, effective, columns)
        )
        logger.info(
            f"Updated {len(rows)} row(s) in {table}",
            extra={"table": str(table), "operation": "update", "decision": effective.decision.value},
        )
        return rows

    async def update_by_id(
        self,
        user: UserContext,
        table: str,
        record_id: Any,
        values: Any,
    ) -> Dict[str, Any]:
        table = Identifier(table)
        values = self._require_values(values)
        columns = await self.store.table_columns(table)
        record_id = self._record_id(record_id, columns)
        if not await self.guard.can_access(user, table, record_id, Action.UPDATE, columns=columns):
            raise NotFoundError()

        changes = self._prepare_update(user, values, columns)
        if not await self.guard.can_write(user, table, changes):
            raise NotFoundError()
        row = await self.store.fetch_one(
            self.query_compiler.update_by_id(table, record_id, changes, columns)
        )
        if row is None:
            raise NotFoundError()
        return row

    async def delete(self, user: UserContext, table: str, params: QueryParams) -> int:
        """Delete every visible row matching ``params``; returns the number deleted."""
        table = Identifier(table)
        spec = self.parse(params)
        self._require_conditions(spec)

        effective, columns = await self._authorize(user, table, spec)
        if not self._table_exists(table, effective, columns):
            return 0

        spec = coerce_spec(spec, python_types(columns))
        deleted = await self.store.execute(self.query_compiler.delete(table, spec, effective, columns))
        logger.info(
            f"Deleted {deleted} row(s) from {table}",
            extra={"table": str(table), "operation": "delete", "decision": effective.decision.value},
        )
        return deleted

    async def delete_by_id(self, user: UserContext, table: str, record_id: Any) -> int:
        table = Identifier(table)
        columns = await self.store.table_columns(table)
        record_id = self._record_id(record_id, columns)
        if not await self.guard.can_access(user, table, record_id, Action.DELETE, columns=columns):
            raise NotFoundError()

        deleted = await self.store.execute(self.query_compiler.delete_by_id(table, record_id, columns))
        if not deleted:
            raise NotFoundError()
        return deleted
