"""Query layer configuration.

Operators, sort directions, identifier rules and pagination defaults
shared by the filter parser and the query compiler.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet


class Operator(str, Enum):
    """Comparison operators accepted in list filters."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"
    IS_NULL = "is_null"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


# Operators whose value is taken from the query string as-is
VALUE_OPERATORS: Dict[str, Operator] = {
    "eq": Operator.EQ,
    "neq": Operator.NEQ,
    "gt": Operator.GT,
    "gte": Operator.GTE,
    "lt": Operator.LT,
    "lte": Operator.LTE,
    "like": Operator.LIKE,
    "ilike": Operator.ILIKE,
    "in": Operator.IN,
}

# ``is.<column>=<literal>`` maps the literal to a unary operator
IS_LITERALS: Dict[str, Operator] = {
    "null": Operator.IS_NULL,
    "true": Operator.IS_TRUE,
    "false": Operator.IS_FALSE,
}

UNARY_OPERATORS: FrozenSet[Operator] = frozenset(IS_LITERALS.values())

# Top-level keys that are not ``<operator>.<column>`` pairs
CONTROL_KEYS: FrozenSet[str] = frozenset({"select", "order", "limit", "offset", "page"})

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Store keywords refused as identifiers even though they match the pattern.
RESERVED_WORDS: FrozenSet[str] = frozenset({
    "all", "alter", "and", "as", "between", "case", "create", "delete",
    "distinct", "drop", "exists", "false", "from", "grant", "group",
    "having", "insert", "into", "join", "not", "null", "or", "revoke",
    "select", "table", "true", "truncate", "union", "update", "where",
})


@dataclass
class QueryConfig:
    """Pagination limits applied by the parser."""

    max_limit: int = 100
    default_limit: int = 100


DEFAULT_QUERY_CONFIG = QueryConfig()
