"""Query compilation.

Builds parameterized SQLAlchemy Core statements from a validated table
name, a ``FilterSpec`` and an effective visibility filter. Identifiers
are placed through ``sa.table`` / ``sa.column`` (quoted by the dialect),
values only ever travel as bound parameters.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.sql.expression import ClauseElement, Executable
from sqlalchemy.types import TypeEngine

from pmsy.api_errors.exceptions import PolicyMisconfigured, UnknownOperator
from pmsy.query.config import DEFAULT_QUERY_CONFIG, Operator, QueryConfig, SortDirection
from pmsy.query.expressions import (
    FALSE,
    AlwaysFalse,
    And,
    Comparison,
    Expression,
    InSubquery,
    Not,
    Or,
    and_,
    referenced_columns,
)
from pmsy.query.filters import FilterSpec
from pmsy.query.identifiers import Identifier, validate_identifiers

if TYPE_CHECKING:
    from pmsy.access.policies import EffectiveFilter

logger = logging.getLogger(__name__)

ColumnMap = Mapping[str, TypeEngine]

_BINARY = {
    Operator.EQ: lambda col, bind: col == bind,
    Operator.NEQ: lambda col, bind: col != bind,
    Operator.GT: lambda col, bind: col > bind,
    Operator.GTE: lambda col, bind: col >= bind,
    Operator.LT: lambda col, bind: col < bind,
    Operator.LTE: lambda col, bind: col <= bind,
}


@dataclass(frozen=True)
class ParameterizedQuery:
    """A statement ready for execution plus what it is, for logging."""

    statement: Executable
    operation: str
    table: Identifier
    returns_rows: bool = True

    def compiled(self, dialect: Any = None):
        return self.statement.compile(dialect=dialect)

    @property
    def sql(self) -> str:
        return str(self.compiled())

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.compiled().params)


@dataclass
class _TableRef:
    """A table clause carrying every column a statement touches."""

    clause: sa.TableClause
    known: bool = False
    column_names: List[str] = field(default_factory=list)

    def c(self, name: str) -> sa.ColumnClause:
        return self.clause.c[name]

    def all_columns(self) -> List[Any]:
        if self.known:
            return [self.clause.c[name] for name in self.column_names]
        return [sa.literal_column("*")]


def _bind(column: sa.ColumnClause, value: Any) -> sa.BindParameter:
    return sa.bindparam(None, value, type_=column.type)


class QueryCompiler:
    """Compiles filters and policies into parameterized statements.

    ``columns`` arguments map column names to reflected SQLAlchemy types.
    When given, every statement binds values with the column's type and
    ``SELECT``/``RETURNING`` list the columns explicitly; otherwise
    ``*`` is used.
    """

    def __init__(self, config: Optional[QueryConfig] = None):
        self.config = config or DEFAULT_QUERY_CONFIG

    # ── Expressions ────────────────────────────────────────────────────

    def to_clause(self, expression: Expression, table: sa.TableClause) -> ClauseElement:
        """Translate an expression tree to a SQLAlchemy clause on ``table``."""
        if isinstance(expression, AlwaysFalse):
            return sa.false()
        if isinstance(expression, And):
            return sa.and_(*(self.to_clause(op, table) for op in expression.operands))
        if isinstance(expression, Or):
            return sa.or_(*(self.to_clause(op, table) for op in expression.operands))
        if isinstance(expression, Not):
            return sa.not_(self.to_clause(expression.operand, table))
        if isinstance(expression, InSubquery):
            return self._in_subquery(expression, table)
        if isinstance(expression, Comparison):
            return self._comparison(expression, table)
        raise TypeError(f"Not an expression: {type(expression).__name__}")

    def _comparison(self, expression: Comparison, table: sa.TableClause) -> ClauseElement:
        column = table.c[expression.column]
        operator = expression.operator
        if operator in _BINARY:
            return _BINARY[operator](column, _bind(column, expression.value))
        if operator is Operator.LIKE:
            return column.like(expression.value)
        if operator is Operator.ILIKE:
            return column.ilike(expression.value)
        if operator is Operator.IN:
            return column.in_(list(expression.value))
        if operator is Operator.IS_NULL:
            return column.is_(None)
        if operator is Operator.IS_TRUE:
            return column.is_(sa.true())
        if operator is Operator.IS_FALSE:
            return column.is_(sa.false())
        raise UnknownOperator(operator)

    def _in_subquery(self, expression: InSubquery, table: sa.TableClause) -> ClauseElement:
        inner_names = dict.fromkeys([expression.select_column, expression.match_column])
        inner = sa.table(expression.table, *(sa.column(name) for name in inner_names))
        match = inner.c[expression.match_column]
        subquery = sa.select(inner.c[expression.select_column]).where(
            match == sa.bindparam(None, expression.value, type_=match.type)
        )
        return table.c[expression.column].in_(subquery)

    # ── Helpers ────────────────────────────────────────────────────────

    def _table(
        self,
        table: Any,
        referenced: Iterable[str],
        columns: Optional[ColumnMap] = None,
    ) -> _TableRef:
        name = Identifier(table)
        names: List[str] = []
        if columns:
            names.extend(validate_identifiers(columns.keys()))
        for column in referenced:
            column = Identifier(column)
            if column not in names:
                names.append(column)
        clause = sa.table(
            name,
            *(sa.column(c, columns.get(c) if columns else None) for c in names),
        )
        return _TableRef(clause=clause, known=bool(columns), column_names=names)

    def predicate(
        self,
        table: Any,
        spec: Optional[FilterSpec],
        effective: "EffectiveFilter",
    ) -> Optional[Expression]:
        """Caller conditions ANDed with the policy of ``effective``.

        A misconfigured policy fails closed to a predicate matching nothing.
        """
        base = spec.to_expression() if spec is not None else None
        try:
            return effective.where(base)
        except PolicyMisconfigured as exc:
            logger.error(
                f"Policy misconfigured for table {table}; denying all rows",
                extra={"table": str(table), "error_code": exc.error_code.value},
            )
            return FALSE

    def _limit(self, spec: FilterSpec) -> int:
        limit = spec.limit if spec.limit is not None else self.config.default_limit
        return min(limit, self.config.max_limit)

    # ── Statements ─────────────────────────────────────────────────────

    def select(
        self,
        table: Any,
        spec: FilterSpec,
        effective: "EffectiveFilter",
        columns: Optional[ColumnMap] = None,
        paginate: bool = True,
    ) -> ParameterizedQuery:
        """``SELECT`` with filter, policy, ordering and pagination.

        With ``paginate=False`` the spec's limit is applied as given and
        ``max_limit`` is not enforced; used for internal lookups.
        """
        where = self.predicate(table, spec, effective)
        ref = self._table(table, list(spec.columns) + list(referenced_columns(where)), columns)

        selected = [ref.c(c) for c in spec.projection] or ref.all_columns()
        statement = sa.select(*selected).select_from(ref.clause)
        if where is not None:
            statement = statement.where(self.to_clause(where, ref.clause))
        for order in spec.order:
            column = ref.c(order.column)
            statement = statement.order_by(
                column.desc() if order.direction is SortDirection.DESC else column.asc()
            )
        if paginate:
            statement = statement.limit(self._limit(spec))
        elif spec.limit is not None:
            statement = statement.limit(spec.limit)
        if spec.offset:
            statement = statement.offset(spec.offset)
        return ParameterizedQuery(statement, "select", Identifier(ref.clause.name))

    def distinct_values(
        self,
        table: Any,
        column: str,
        match_column: str,
        value: Any,
        limit: int,
    ) -> ParameterizedQuery:
        """Ordered distinct ``column`` values of rows where ``match_column = value``.

        Not subject to ``max_limit``; used for internal lookups.
        """
        ref = self._table(table, [column, match_column])
        selected = ref.c(Identifier(column))
        match = ref.c(Identifier(match_column))
        statement = (
            sa.select(selected)
            .where(match == _bind(match, value))
            .distinct()
            .order_by(selected)
            .limit(limit)
        )
        return ParameterizedQuery(statement, "lookup", Identifier(ref.clause.name))

    def count(
        self,
        table: Any,
        spec: FilterSpec,
        effective: "EffectiveFilter",
        columns: Optional[ColumnMap] = None,
    ) -> ParameterizedQuery:
        """``SELECT count(*)`` over the same predicate as ``select``, unpaginated."""
        where = self.predicate(table, spec, effective)
        ref = self._table(table, list(spec.columns) + list(referenced_columns(where)), columns)
        statement = sa.select(sa.func.count()).select_from(ref.clause)
        if where is not None:
            statement = statement.where(self.to_clause(where, ref.clause))
        return ParameterizedQuery(statement, "count", Identifier(ref.clause.name))

    def select_by_id(
        self,
        table: Any,
        record_id: Any,
        effective: "EffectiveFilter",
        projection: Sequence[str] = (),
        columns: Optional[ColumnMap] = None,
        id_column: str = "id",
    ) -> ParameterizedQuery:
        projection = validate_identifiers(projection)
        where = and_(
            Comparison(Identifier(id_column), Operator.EQ, record_id),
            self.predicate(table, None, effective),
        )
        ref = self._table(table, list(projection) + list(referenced_columns(where)), columns)
        selected = [ref.c(c) for c in projection] or ref.all_columns()
        statement = (
            sa.select(*selected)
            .select_from(ref.clause)
            .where(self.to_clause(where, ref.clause))
            .limit(1)
        )
        return ParameterizedQuery(statement, "select", Identifier(ref.clause.name))

    def insert(
        self,
        table: Any,
        row: Mapping[str, Any],
        columns: Optional[ColumnMap] = None,
    ) -> ParameterizedQuery:
        """Single-row ``INSERT ... RETURNING``."""
        keys = validate_identifiers(row.keys())
        ref = self._table(table, keys, columns)
        values = {key: _bind(ref.c(key), row[key]) for key in keys}
        statement = sa.insert(ref.clause).values(values).returning(*ref.all_columns())
        return ParameterizedQuery(statement, "insert", Identifier(ref.clause.name))

    def update(
        self,
        table: Any,
        values: Mapping[str, Any],
        spec: Optional[FilterSpec],
        effective: "EffectiveFilter",
        columns: Optional[ColumnMap] = None,
    ) -> ParameterizedQuery:
        """``UPDATE ... RETURNING`` of rows matching filter and policy."""
        keys = validate_identifiers(values.keys())
        where = self.predicate(table, spec, effective)
        return self._update(table, keys, values, where, columns)

    def update_by_id(
        self,
        table: Any,
        record_id: Any,
        values: Mapping[str, Any],
        columns: Optional[ColumnMap] = None,
        id_column: str = "id",
    ) -> ParameterizedQuery:
        keys = validate_identifiers(values.keys())
        where = Comparison(Identifier(id_column), Operator.EQ, record_id)
        return self._update(table, keys, values, where, columns)

    def _update(self, table, keys, values, where, columns) -> ParameterizedQuery:
        ref = self._table(table, list(keys) + list(referenced_columns(where)), columns)
        statement = sa.update(ref.clause).values(
            {key: _bind(ref.c(key), values[key]) for key in keys}
        )
        if where is not None:
            statement = statement.where(self.to_clause(where, ref.clause))
        statement = statement.returning(*ref.all_columns())
        return ParameterizedQuery(statement, "update", Identifier(ref.clause.name))

    def delete(
        self,
        table: Any,
        spec: Optional[FilterSpec],
        effective: "EffectiveFilter",
        columns: Optional[ColumnMap] = None,
    ) -> ParameterizedQuery:
        where = self.predicate(table, spec, effective)
        return self._delete(table, where, columns)

    def delete_by_id(
        self,
        table: Any,
        record_id: Any,
        columns: Optional[ColumnMap] = None,
        id_column: str = "id",
    ) -> ParameterizedQuery:
        where = Comparison(Identifier(id_column), Operator.EQ, record_id)
        return self._delete(table, where, columns)

    def _delete(self, table, where, columns) -> ParameterizedQuery:
        ref = self._table(table, referenced_columns(where), columns)
        statement = sa.delete(ref.clause)
        if where is not None:
            statement = statement.where(self.to_clause(where, ref.clause))
        return ParameterizedQuery(statement, "delete", Identifier(ref.clause.name), returns_rows=False)
