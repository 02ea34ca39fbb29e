"""Policy registry.

Process-wide, read-only table of visibility policies, populated once at
start-up from static configuration and then frozen.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Union

from pmsy.api_errors.exceptions import IdentifierRejected
from pmsy.query.identifiers import Identifier

from .config import (
    DEFAULT_POLICIES,
    POLICY_DOCUMENT_VERSION,
    MembershipRelation,
    PolicyEntry,
    admin_roles_from,
)

logger = logging.getLogger(__name__)


class PolicyConfigurationError(ValueError):
    """Raised when policy configuration is invalid. Aborts start-up."""


class PolicyRegistry:
    """Per-table visibility policies.

    Tables are registered once; a second registration of the same table,
    or any registration after ``freeze()``, raises
    ``PolicyConfigurationError``. Tables absent from the registry are
    admin-only.
    """

    def __init__(self, entries: Optional[Mapping[str, PolicyEntry]] = None):
        self._entries: Dict[Identifier, PolicyEntry] = {}
        self._frozen = False
        for table, entry in (entries or {}).items():
            self.register(table, entry)

    def register(self, table: str, entry: PolicyEntry) -> None:
        if self._frozen:
            raise PolicyConfigurationError("Policy registry is frozen")
        try:
            name = Identifier(table)
        except IdentifierRejected:
            raise PolicyConfigurationError(f"Invalid table name in policy: {table!r}") from None
        if name in self._entries:
            raise PolicyConfigurationError(f"Table '{name}' is already registered")
        self._entries[name] = entry

    def freeze(self) -> "PolicyRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, table: str) -> Optional[PolicyEntry]:
        """Return the policy of ``table`` or ``None`` when it has none."""
        return self._entries.get(table)

    def __contains__(self, table: object) -> bool:
        return table in self._entries

    def __iter__(self) -> Iterator[Identifier]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # ── Loading ────────────────────────────────────────────────────────

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "PolicyRegistry":
        """Build a frozen registry from a versioned policy document.

        Shape::

            {"version": 1,
             "tables": {"tasks": {"admin_roles": ["admin"],
                                  "owner_column": "created_by",
                                  "membership": {"join_table": "project_members",
                                                 "user_column": "user_id",
                                                 "resource_column": "project_id"}}}}

        ``protected_columns`` lists columns that only admins may write.
        """
        if not isinstance(document, Mapping):
            raise PolicyConfigurationError("Policy document must be a JSON object")
        version = document.get("version")
        if version != POLICY_DOCUMENT_VERSION:
            raise PolicyConfigurationError(f"Unsupported policy document version: {version!r}")
        tables = document.get("tables")
        if not isinstance(tables, Mapping):
            raise PolicyConfigurationError("Policy document must contain a 'tables' object")

        registry = cls()
        for table, spec in tables.items():
            registry.register(table, _entry_from_document(table, spec or {}))
        logger.info(f"Loaded policy document v{version} with {len(registry)} tables")
        return registry.freeze()

    @classmethod
    def default(cls) -> "PolicyRegistry":
        """Frozen registry holding the built-in policy table."""
        return cls(DEFAULT_POLICIES).freeze()


def _entry_from_document(table: str, spec: Mapping[str, Any]) -> PolicyEntry:
    try:
        membership = spec.get("membership")
        protected = spec.get("protected_columns") or ()
        if isinstance(protected, str):
            raise TypeError("protected_columns must be a list")
        return PolicyEntry(
            admin_roles=admin_roles_from(spec.get("admin_roles")),
            owner_column=spec.get("owner_column"),
            protected_columns=frozenset(protected),
            membership=MembershipRelation(
                join_table=membership["join_table"],
                user_column=membership["user_column"],
                resource_column=membership["resource_column"],
                record_column=membership.get("record_column"),
            ) if membership else None,
        )
    except IdentifierRejected as exc:
        raise PolicyConfigurationError(
            f"Invalid identifier {exc.identifier!r} in policy for table '{table}'"
        ) from None
    except (KeyError, TypeError, AttributeError) as exc:
        raise PolicyConfigurationError(f"Malformed policy for table '{table}': {exc}") from None


def load_policy_file(path: Union[str, Path]) -> PolicyRegistry:
    """Read a JSON policy document from ``path``."""
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise PolicyConfigurationError(f"Cannot read policy file {path}: {exc}") from exc
    return PolicyRegistry.from_document(document)
