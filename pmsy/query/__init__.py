"""Query translation.

Parses client filters, validates identifiers and compiles parameterized
statements against an arbitrary table.
"""

from pmsy.query.compiler import ParameterizedQuery, QueryCompiler
from pmsy.query.config import Operator, QueryConfig, SortDirection
from pmsy.query.expressions import (
    AlwaysFalse,
    And,
    Comparison,
    InSubquery,
    Not,
    Or,
    and_,
    not_,
    or_,
    render,
)
from pmsy.query.filters import Condition, FilterSpec, OrderBy, parse_filter, to_query_string
from pmsy.query.identifiers import Identifier, is_valid_identifier, validate_identifier

__all__ = [
    # Config
    "Operator",
    "QueryConfig",
    "SortDirection",
    # Identifiers
    "Identifier",
    "is_valid_identifier",
    "validate_identifier",
    # Expressions
    "AlwaysFalse",
    "And",
    "Comparison",
    "InSubquery",
    "Not",
    "Or",
    "and_",
    "not_",
    "or_",
    "render",
    # Filters
    "Condition",
    "FilterSpec",
    "OrderBy",
    "parse_filter",
    "to_query_string",
    # Compiler
    "ParameterizedQuery",
    "QueryCompiler",
]
