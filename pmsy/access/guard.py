"""Record guard.

Point checks for single-record endpoints, where building a full list
predicate would be wasteful. A missing record is reported as "no
access", never as an error.
"""

import logging
from typing import Any, Mapping, Optional

from pmsy.query.compiler import QueryCompiler
from pmsy.query.config import Operator
from pmsy.query.filters import Condition, FilterSpec
from pmsy.query.identifiers import Identifier

from .config import AccessConfig, Action, MembershipRelation, PolicyEntry
from .context import UserContext
from .policies import UNRESTRICTED
from .registry import PolicyRegistry

logger = logging.getLogger(__name__)


def _same_id(left: Any, right: Any) -> bool:
    return left is not None and right is not None and str(left) == str(right)


class RecordGuard:
    """Decides whether a caller may act on one specific record."""

    def __init__(
        self,
        registry: PolicyRegistry,
        store: Any,
        query_compiler: Optional[QueryCompiler] = None,
        config: Optional[AccessConfig] = None,
    ):
        self.registry = registry
        self.store = store
        self.query_compiler = query_compiler or QueryCompiler()
        self.config = config or AccessConfig()

    def policy_for(self, table: str) -> PolicyEntry:
        entry = self.registry.lookup(table)
        if entry is None:
            return PolicyEntry(admin_roles=self.config.default_admin_roles)
        return entry

    async def can_access(
        self,
        user: UserContext,
        table: str,
        record_id: Any,
        action: Action = Action.SELECT,
        columns: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """True when ``user`` owns the record or is linked to it by membership.

        ``columns`` are the reflected column types of ``table``, used to bind
        ``record_id`` with the id column's type.
        """
        table = Identifier(table)
        entry = self.policy_for(table)
        if entry.is_admin(user.role):
            return True
        if entry.admin_only:
            return False

        selected = [c for c in (entry.owner_column,) if c is not None]
        if entry.membership is not None and entry.membership.record_column not in selected:
            selected.append(entry.membership.record_column)

        query = self.query_compiler.select_by_id(
            table, record_id, UNRESTRICTED, projection=selected, columns=columns
        )
        record = await self.store.fetch_one(query)
        if record is None:
            return False

        if entry.owner_column is not None and _same_id(record.get(entry.owner_column), user.user_id):
            return True

        if entry.membership is not None:
            resource_id = record.get(entry.membership.record_column)
            if resource_id is not None:
                allowed = await self._is_member(entry.membership, user, resource_id)
                logger.debug(
                    f"Record guard for {table} ({action.value}): membership {'granted' if allowed else 'refused'}",
                    extra={"table": str(table), "operation": action.value},
                )
                return allowed

        return False

    async def can_create(self, user: UserContext, table: str, row: Mapping[str, Any]) -> bool:
        """Whether ``user`` may insert ``row`` into ``table``."""
        return await self.can_write(user, table, row)

    async def can_write(self, user: UserContext, table: str, values: Mapping[str, Any]) -> bool:
        """Whether ``user`` may store ``values`` in a row of ``table``.

        Applies to inserted rows and to the changes of an update. Admins
        always may; admin-only tables refuse everyone else, as do protected
        columns. A value for the owner column must be the caller's id, and
        a value pointing at a membership resource must point at one the
        caller belongs to.
        """
        table = Identifier(table)
        entry = self.policy_for(table)
        if entry.is_admin(user.role):
            return True
        if entry.admin_only:
            return False

        if entry.protected_columns.intersection(values):
            logger.info(
                f"Write to protected column of {table} refused",
                extra={"table": str(table), "operation": "write"},
            )
            return False

        if entry.owner_column is not None and entry.owner_column in values:
            if not _same_id(values[entry.owner_column], user.user_id):
                return False

        relation = entry.membership
        if relation is not None and relation.record_column == relation.resource_column:
            resource_id = values.get(relation.record_column)
            if resource_id is not None:
                return await self._is_member(relation, user, resource_id)

        return True

    async def _is_member(self, relation: MembershipRelation, user: UserContext, resource_id: Any) -> bool:
        spec = FilterSpec(
            projection=(relation.resource_column,),
            conditions=(
                Condition(relation.user_column, Operator.EQ, user.user_id),
                Condition(relation.resource_column, Operator.EQ, resource_id),
            ),
            limit=1,
        )
        query = self.query_compiler.select(relation.join_table, spec, UNRESTRICTED)
        try:
            link = await self.store.fetch_one(query)
        except Exception as exc:
            logger.warning(
                f"Membership check failed on {relation.join_table}; refusing ({type(exc).__name__})",
                extra={"table": str(relation.join_table)},
            )
            return False
        return link is not None
