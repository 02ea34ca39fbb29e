"""Permission filter compilation.

Combines a caller's identity with the policy of a table into an
``EffectiveFilter``:

- ``Unrestricted``: the caller holds an admin role for the table.
- ``Restricted``: rows owned by the caller OR linked to the caller
  through the table's membership relation.
- ``DenyAll``: no branch can apply, the table is admin-only, or the
  membership lookup failed.
"""

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Tuple

from pmsy.api_errors.exceptions import PolicyMisconfigured
from pmsy.query.compiler import QueryCompiler
from pmsy.query.config import Operator
from pmsy.query.expressions import FALSE, Comparison, Expression, InSubquery, and_, or_
from pmsy.query.filters import FilterSpec
from pmsy.query.identifiers import Identifier

from .config import AccessConfig, Decision, MembershipRelation, PolicyEntry
from .context import UserContext
from .registry import PolicyRegistry

logger = logging.getLogger(__name__)


class EffectiveFilter:
    """Visibility restriction applied on top of a caller's own filter."""

    decision: ClassVar[Decision]

    def where(self, base: Optional[Expression]) -> Optional[Expression]:
        """Combine the caller's predicate ``base`` with this filter.

        ``None`` means no restriction at all.
        """
        raise NotImplementedError


@dataclass(frozen=True)
class Unrestricted(EffectiveFilter):
    decision: ClassVar[Decision] = Decision.UNRESTRICTED

    def where(self, base: Optional[Expression]) -> Optional[Expression]:
        return base


@dataclass(frozen=True)
class Restricted(EffectiveFilter):
    """OR of the configured visibility branches, ANDed with the caller's filter."""

    decision: ClassVar[Decision] = Decision.RESTRICTED

    table: Identifier
    branches: Tuple[Expression, ...] = ()

    def predicate(self) -> Expression:
        if not self.branches:
            raise PolicyMisconfigured(self.table)
        return or_(*self.branches)

    def where(self, base: Optional[Expression]) -> Optional[Expression]:
        return and_(base, self.predicate())


@dataclass(frozen=True)
class DenyAll(EffectiveFilter):
    decision: ClassVar[Decision] = Decision.DENY_ALL

    def where(self, base: Optional[Expression]) -> Optional[Expression]:
        return FALSE


UNRESTRICTED = Unrestricted()
DENY_ALL = DenyAll()


def owner_branch(entry: PolicyEntry, user: UserContext) -> Optional[Comparison]:
    if entry.owner_column is None:
        return None
    return Comparison(entry.owner_column, Operator.EQ, user.user_id)


def membership_subquery(relation: MembershipRelation, user: UserContext) -> InSubquery:
    return InSubquery(
        column=relation.record_column,
        table=relation.join_table,
        select_column=relation.resource_column,
        match_column=relation.user_column,
        value=user.user_id,
    )


class PermissionFilterCompiler:
    """Decides the effective filter of a (user, table) pair.

    With a ``store`` the membership branch is resolved by looking up the
    caller's resource ids: none drops the branch, up to
    ``membership_inline_threshold`` become ``IN (...)``, more fall back to
    the sub-query form. Without a store the sub-query form is always used.
    A failed lookup denies everything.
    """

    def __init__(
        self,
        registry: PolicyRegistry,
        store: Any = None,
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

    async def compile(
        self,
        user: UserContext,
        table: str,
        spec: Optional[FilterSpec] = None,
    ) -> EffectiveFilter:
        table = Identifier(table)
        entry = self.policy_for(table)

        if entry.is_admin(user.role):
            return self._decided(table, user, UNRESTRICTED)
        if entry.admin_only:
            return self._decided(table, user, DENY_ALL)

        branches = []
        owner = owner_branch(entry, user)
        if owner is not None:
            branches.append(owner)

        if entry.membership is not None:
            try:
                member = await self._membership_branch(entry.membership, user)
            except Exception as exc:
                logger.warning(
                    f"Membership lookup failed for table {table}; denying access "
                    f"({type(exc).__name__})",
                    extra={"table": str(table), "decision": Decision.DENY_ALL.value},
                )
                return self._decided(table, user, DENY_ALL)
            if member is not None:
                branches.append(member)

        if not branches:
            return self._decided(table, user, DENY_ALL)
        return self._decided(table, user, Restricted(table, tuple(branches)))

    async def _membership_branch(
        self,
        relation: MembershipRelation,
        user: UserContext,
    ) -> Optional[Expression]:
        if self.store is None:
            return membership_subquery(relation, user)

        threshold = self.config.membership_inline_threshold
        query = self.query_compiler.distinct_values(
            relation.join_table,
            relation.resource_column,
            match_column=relation.user_column,
            value=user.user_id,
            limit=threshold + 1,
        )
        resource_ids = await self.store.fetch_column(query)
        if not resource_ids:
            return None
        if len(resource_ids) > threshold:
            return membership_subquery(relation, user)
        return Comparison(relation.record_column, Operator.IN, tuple(resource_ids))

    @staticmethod
    def _decided(table: str, user: UserContext, effective: EffectiveFilter) -> EffectiveFilter:
        logger.debug(
            f"Permission decision for {table} (role {user.role}): {effective.decision.value}",
            extra={"table": str(table), "decision": effective.decision.value},
        )
        return effective
