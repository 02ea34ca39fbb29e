"""Identifier validation.

Table and column names arrive from the URL path, the query string and
request bodies. Each one passes through ``Identifier`` before it can be
used to build a statement.
"""

from typing import Any, Iterable, Tuple

from pmsy.api_errors.exceptions import IdentifierRejected
from pmsy.query.config import IDENTIFIER_PATTERN, RESERVED_WORDS


class Identifier(str):
    """A table or column name known to be safe to place in a statement.

    Constructing one validates the value: it must match
    ``[A-Za-z_][A-Za-z0-9_]*`` and must not be a reserved store keyword.
    Anything else raises ``IdentifierRejected``.
    """

    __slots__ = ()

    def __new__(cls, value: Any) -> "Identifier":
        if isinstance(value, Identifier):
            return value
        if not isinstance(value, str) or IDENTIFIER_PATTERN.fullmatch(value) is None:
            raise IdentifierRejected(value)
        if value.lower() in RESERVED_WORDS:
            raise IdentifierRejected(value)
        return super().__new__(cls, value)


def validate_identifier(value: Any) -> Identifier:
    """Return ``value`` as an ``Identifier`` or raise ``IdentifierRejected``."""
    return Identifier(value)


def validate_identifiers(values: Iterable[Any]) -> Tuple[Identifier, ...]:
    return tuple(Identifier(v) for v in values)


def is_valid_identifier(value: Any) -> bool:
    try:
        Identifier(value)
    except IdentifierRejected:
        return False
    return True
