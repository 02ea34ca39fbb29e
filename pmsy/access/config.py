"""Configuration for application-level row visibility."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from pmsy.query.identifiers import Identifier


class Action(str, Enum):
    """Operation a caller wants to perform on a table or record."""
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Decision(str, Enum):
    """Kind of effective filter produced for a request."""
    UNRESTRICTED = "unrestricted"
    RESTRICTED = "restricted"
    DENY_ALL = "deny_all"


ADMIN_ROLE = "admin"
DEFAULT_ADMIN_ROLES: FrozenSet[str] = frozenset({ADMIN_ROLE})

# Membership lookups returning at most this many resource ids are inlined
# as ``IN (...)``; larger sets use the sub-query form.
DEFAULT_MEMBERSHIP_INLINE_THRESHOLD = 200

POLICY_DOCUMENT_VERSION = 1


@dataclass(frozen=True)
class MembershipRelation:
    """Join table granting users access to resources.

    A row of the governed table is visible when its ``record_column``
    holds a ``resource_column`` value that ``join_table`` links to the
    user through ``user_column``. ``record_column`` defaults to
    ``resource_column``.
    """

    join_table: Identifier
    user_column: Identifier
    resource_column: Identifier
    record_column: Optional[Identifier] = None

    def __post_init__(self):
        object.__setattr__(self, "join_table", Identifier(self.join_table))
        object.__setattr__(self, "user_column", Identifier(self.user_column))
        object.__setattr__(self, "resource_column", Identifier(self.resource_column))
        object.__setattr__(
            self, "record_column", Identifier(self.record_column or self.resource_column)
        )


@dataclass(frozen=True)
class PolicyEntry:
    """Visibility policy of one governed table."""

    admin_roles: FrozenSet[str] = DEFAULT_ADMIN_ROLES
    owner_column: Optional[Identifier] = None
    membership: Optional[MembershipRelation] = None
    # Columns only admins may write, e.g. the role the auth layer trusts
    protected_columns: FrozenSet[Identifier] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "admin_roles", frozenset(self.admin_roles))
        if self.owner_column is not None:
            object.__setattr__(self, "owner_column", Identifier(self.owner_column))
        object.__setattr__(
            self, "protected_columns", frozenset(Identifier(c) for c in self.protected_columns)
        )

    @property
    def admin_only(self) -> bool:
        return self.owner_column is None and self.membership is None

    def is_admin(self, role: str) -> bool:
        return role in self.admin_roles


# Policy applied to tables with no entry
ADMIN_ONLY = PolicyEntry()


def _project_scoped(owner_column: Optional[str] = None, record_column: Optional[str] = None) -> PolicyEntry:
    return PolicyEntry(
        owner_column=owner_column,
        membership=MembershipRelation(
            "project_members", "user_id", "project_id", record_column=record_column
        ),
    )


def _owned(owner_column: str, protected: Iterable[str] = ()) -> PolicyEntry:
    return PolicyEntry(owner_column=owner_column, protected_columns=frozenset(protected))


# Built-in policy table. Tables not listed here are admin-only.
DEFAULT_POLICIES: Dict[str, PolicyEntry] = {
    "profiles": _owned("id", protected=("role",)),
    "projects": _project_scoped("manager_id", record_column="id"),
    "tasks": _project_scoped("created_by"),
    "project_members": _project_scoped(),
    "milestones": _project_scoped(),
    "files": _project_scoped("uploaded_by"),
    "folders": _project_scoped("created_by"),
    "project_suppliers": _project_scoped(),
    "risks": _project_scoped(),
    "reports": _project_scoped("created_by"),
    "notifications": _owned("user_id"),
    "forum_posts": _owned("author_id"),
    "forum_comments": _owned("author_id"),
    "hot_news": _owned("created_by"),
    "project_clients": _project_scoped(),
    "task_assignees": _project_scoped(),
    "task_comments": _project_scoped("created_by"),
    "task_progress_logs": _project_scoped("user_id"),
    "project_modules": _project_scoped(),
    "task_modules": _project_scoped(),
    "task_dependencies": _project_scoped("created_by"),
    # Reference data without a per-user link
    "suppliers": ADMIN_ONLY,
    "clients": ADMIN_ONLY,
    # System tables
    "app_roles": ADMIN_ONLY,
    "role_permissions": ADMIN_ONLY,
    "system_configs": ADMIN_ONLY,
    "operation_logs": ADMIN_ONLY,
}


@dataclass
class AccessConfig:
    """Configuration for the permission filter compiler."""

    membership_inline_threshold: int = DEFAULT_MEMBERSHIP_INLINE_THRESHOLD
    default_admin_roles: FrozenSet[str] = field(default_factory=lambda: DEFAULT_ADMIN_ROLES)


@dataclass
class RateLimitConfig:
    """Fixed-window request limits per caller."""

    max_requests: int = 120
    window_seconds: float = 60.0
    max_keys: int = 10_000
    key_prefix: str = "rest"

    def key_for(self, user_id: str) -> str:
        return f"{self.key_prefix}:{user_id}"


def admin_roles_from(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if values is None:
        return DEFAULT_ADMIN_ROLES
    return frozenset(str(v) for v in values)
