"""Filter parsing.

Turns the flat query string of a list request into an immutable
``FilterSpec``:

    select=id,name
    order=created_at.desc,name
    limit=10&offset=20          (or page=3)
    eq.status=active
    in.id=1,2,3
    is.deleted_at=null

Unknown keys are ignored. Column names and operators are validated
when the spec is built, so a ``FilterSpec`` never holds a raw string in
identifier position.
"""

import re
from dataclasses import dataclass, replace
from typing import Any, Iterable, Iterator, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from pmsy.api_errors.exceptions import MalformedFilter, UnknownOperator
from pmsy.query.config import (
    CONTROL_KEYS,
    DEFAULT_QUERY_CONFIG,
    IS_LITERALS,
    UNARY_OPERATORS,
    VALUE_OPERATORS,
    Operator,
    QueryConfig,
    SortDirection,
)
from pmsy.query.expressions import Comparison, Expression, and_
from pmsy.query.identifiers import Identifier

_UNSIGNED_INT = re.compile(r"[0-9]+")

QueryParams = Union[Mapping[str, Any], Iterable[Tuple[str, str]]]


def _to_operator(value: Any) -> Operator:
    if isinstance(value, Operator):
        return value
    try:
        return Operator(value)
    except ValueError:
        raise UnknownOperator(value) from None


@dataclass(frozen=True)
class Condition:
    """One ``column <operator> value`` filter from the caller."""

    column: Identifier
    operator: Operator
    value: Any = None

    def __post_init__(self):
        object.__setattr__(self, "column", Identifier(self.column))
        operator = _to_operator(self.operator)
        object.__setattr__(self, "operator", operator)
        if operator is Operator.IN:
            object.__setattr__(self, "value", tuple(self.value or ()))
        elif operator in UNARY_OPERATORS:
            object.__setattr__(self, "value", None)

    def to_expression(self) -> Comparison:
        return Comparison(self.column, self.operator, self.value)


@dataclass(frozen=True)
class OrderBy:
    column: Identifier
    direction: SortDirection = SortDirection.ASC

    def __post_init__(self):
        object.__setattr__(self, "column", Identifier(self.column))
        object.__setattr__(self, "direction", SortDirection(self.direction))


@dataclass(frozen=True)
class FilterSpec:
    """Parsed, validated list query.

    ``projection`` empty means all columns. ``limit`` of ``None`` means the
    compiler's default limit applies.
    """

    projection: Tuple[Identifier, ...] = ()
    conditions: Tuple[Condition, ...] = ()
    order: Tuple[OrderBy, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "projection", tuple(Identifier(c) for c in self.projection))
        object.__setattr__(self, "conditions", tuple(self.conditions))
        object.__setattr__(self, "order", tuple(self.order))
        if self.limit is not None and self.limit < 0:
            raise MalformedFilter("limit must be a non-negative integer", field="limit")
        if self.offset is not None and self.offset < 0:
            raise MalformedFilter("offset must be a non-negative integer", field="offset")

    @property
    def columns(self) -> Tuple[Identifier, ...]:
        """Every column named by the spec, in first-seen order."""
        seen = []
        for column in (
            list(self.projection)
            + [c.column for c in self.conditions]
            + [o.column for o in self.order]
        ):
            if column not in seen:
                seen.append(column)
        return tuple(seen)

    def with_conditions(self, conditions: Iterable[Condition]) -> "FilterSpec":
        return replace(self, conditions=tuple(conditions))

    def to_expression(self) -> Optional[Expression]:
        """AND of every caller condition, or ``None`` when there are none."""
        return and_(*(c.to_expression() for c in self.conditions))


def _iter_params(params: QueryParams) -> Iterator[Tuple[str, str]]:
    """Yield ``(key, value)`` pairs, expanding multi-valued keys in order."""
    if hasattr(params, "multi_items"):
        yield from params.multi_items()
        return
    items = params.items() if isinstance(params, Mapping) else params
    for key, value in items:
        if isinstance(value, (list, tuple)):
            for item in value:
                yield key, item
        else:
            yield key, value


def _parse_unsigned(name: str, value: str) -> int:
    text = str(value).strip()
    if not _UNSIGNED_INT.fullmatch(text):
        raise MalformedFilter(f"{name} must be a non-negative integer", field=name)
    return int(text)


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in str(value).split(",") if part.strip())


def _parse_order(value: str) -> Tuple[OrderBy, ...]:
    order = []
    for item in _split_list(value):
        column, _, direction = item.partition(".")
        direction = direction.strip().lower() or SortDirection.ASC.value
        if direction not in (SortDirection.ASC.value, SortDirection.DESC.value):
            raise MalformedFilter("order direction must be asc or desc", field="order")
        order.append(OrderBy(column.strip(), SortDirection(direction)))
    return tuple(order)


def _parse_select(value: str) -> Tuple[Identifier, ...]:
    columns = _split_list(value)
    if columns == ("*",):
        return ()
    return tuple(Identifier(c) for c in columns)


def _parse_condition(key: str, value: str) -> Optional[Condition]:
    prefix, dot, column = key.partition(".")
    if not dot:
        return None
    if prefix == "is":
        operator = IS_LITERALS.get(str(value).strip())
        if operator is None:
            raise MalformedFilter("is filter accepts only null, true or false", field=key)
        return Condition(column, operator)
    operator = VALUE_OPERATORS.get(prefix)
    if operator is None:
        return None
    if operator is Operator.IN:
        return Condition(column, operator, _split_list(value))
    return Condition(column, operator, value)


def parse_filter(params: QueryParams, config: Optional[QueryConfig] = None) -> FilterSpec:
    """Parse query parameters into a ``FilterSpec``.

    Raises ``MalformedFilter`` for bad values, ``IdentifierRejected`` for
    bad column names. ``limit`` above ``config.max_limit`` is clamped.
    When several values are given for ``select``, ``order``, ``limit``,
    ``offset`` or ``page``, the last one wins.
    """
    config = config or DEFAULT_QUERY_CONFIG

    projection: Tuple[Identifier, ...] = ()
    order: Tuple[OrderBy, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    page: Optional[int] = None
    conditions = []

    for key, value in _iter_params(params):
        if key == "select":
            projection = _parse_select(value)
        elif key == "order":
            order = _parse_order(value)
        elif key == "limit":
            limit = min(_parse_unsigned("limit", value), config.max_limit)
        elif key == "offset":
            offset = _parse_unsigned("offset", value)
        elif key == "page":
            page = _parse_unsigned("page", value)
            if page < 1:
                raise MalformedFilter("page must be 1 or greater", field="page")
        elif key not in CONTROL_KEYS:
            condition = _parse_condition(key, value)
            if condition is not None:
                conditions.append(condition)

    if page is not None and offset is None:
        page_size = limit if limit is not None else min(config.default_limit, config.max_limit)
        offset = (page - 1) * page_size

    return FilterSpec(
        projection=projection,
        conditions=tuple(conditions),
        order=order,
        limit=limit,
        offset=offset,
    )


def _encode(text: Any) -> str:
    return quote(str(text), safe=",.*_-")


def to_query_string(spec: FilterSpec) -> str:
    """Render a ``FilterSpec`` back to query-string form for logs and debugging.

    ``parse_filter`` of the result yields an equal spec.
    """
    parts = []
    if spec.projection:
        parts.append("select=" + _encode(",".join(spec.projection)))
    for condition in spec.conditions:
        if condition.operator in UNARY_OPERATORS:
            literal = condition.operator.value[len("is_"):]
            parts.append(f"is.{condition.column}={literal}")
        elif condition.operator is Operator.IN:
            parts.append(f"in.{condition.column}=" + ",".join(_encode(v) for v in condition.value))
        else:
            parts.append(f"{condition.operator.value}.{condition.column}=" + _encode(condition.value))
    if spec.order:
        parts.append("order=" + ",".join(f"{o.column}.{o.direction.value}" for o in spec.order))
    if spec.limit is not None:
        parts.append(f"limit={spec.limit}")
    if spec.offset is not None:
        parts.append(f"offset={spec.offset}")
    return "&".join(parts)
