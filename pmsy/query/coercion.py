"""Coerce string filter values to the Python type of their column.

Query-string values are always text. Drivers such as asyncpg bind
parameters strictly by type, so values are converted using the column
types reflected from the store before a statement is compiled.
"""

import uuid
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.types import TypeEngine

from pmsy.api_errors.exceptions import IdentifierRejected, MalformedFilter
from pmsy.query.config import Operator, UNARY_OPERATORS
from pmsy.query.filters import Condition, FilterSpec

ColumnTypes = Mapping[str, Optional[type]]

_TRUE = frozenset({"true", "t", "1", "yes"})
_FALSE = frozenset({"false", "f", "0", "no"})

# Pattern operators compare as text whatever the column type.
_TEXT_OPERATORS = frozenset({Operator.LIKE, Operator.ILIKE})


def _to_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(text)


_CONVERTERS = {
    bool: _to_bool,
    int: lambda text: int(text.strip()),
    float: lambda text: float(text.strip()),
    Decimal: lambda text: Decimal(text.strip()),
    datetime: lambda text: datetime.fromisoformat(text.strip()),
    date: lambda text: date.fromisoformat(text.strip()),
    time: lambda text: time.fromisoformat(text.strip()),
    uuid.UUID: lambda text: uuid.UUID(text.strip()),
}


def coerce_value(value: Any, python_type: Optional[type], column: str = "") -> Any:
    """Convert a string ``value`` to ``python_type``.

    Non-string values and columns of unknown or textual type pass through.
    Raises ``MalformedFilter`` when the text cannot be converted.
    """
    if not isinstance(value, str) or python_type is None:
        return value
    converter = _CONVERTERS.get(python_type)
    if converter is None:
        return value
    try:
        return converter(value)
    except (ValueError, TypeError, InvalidOperation):
        raise MalformedFilter(f"Invalid value for column {column}", field=column or None) from None


def require_columns(columns, column_types: ColumnTypes) -> None:
    """Raise ``IdentifierRejected`` for any column the table does not have."""
    for column in columns:
        if column not in column_types:
            raise IdentifierRejected(column)


def coerce_condition(condition: Condition, column_types: ColumnTypes) -> Condition:
    if condition.operator in UNARY_OPERATORS or condition.operator in _TEXT_OPERATORS:
        return condition
    python_type = column_types.get(condition.column)
    if condition.operator is Operator.IN:
        values = tuple(coerce_value(v, python_type, condition.column) for v in condition.value)
        return Condition(condition.column, condition.operator, values)
    return Condition(
        condition.column,
        condition.operator,
        coerce_value(condition.value, python_type, condition.column),
    )


def coerce_spec(spec: FilterSpec, column_types: ColumnTypes) -> FilterSpec:
    """Check every column of ``spec`` exists and convert condition values."""
    require_columns(spec.columns, column_types)
    return spec.with_conditions(coerce_condition(c, column_types) for c in spec.conditions)


def coerce_row(row: Mapping[str, Any], column_types: ColumnTypes) -> Dict[str, Any]:
    """Check the keys of a request body row and convert its string values."""
    require_columns(row.keys(), column_types)
    return {
        key: coerce_value(value, column_types.get(key), key)
        for key, value in row.items()
    }


def python_types(columns: Mapping[str, TypeEngine]) -> Dict[str, Optional[type]]:
    """Python types of reflected column types; ``None`` where the type has none."""
    types: Dict[str, Optional[type]] = {}
    for name, column_type in columns.items():
        try:
            types[name] = column_type.python_type
        except NotImplementedError:
            types[name] = None
    return types
