"""Predicate expression tree.

Caller filters and visibility policies are both expressed as small
immutable trees of ``Comparison``, ``InSubquery``, ``And``, ``Or``,
``Not`` and ``AlwaysFalse`` nodes. Combining them is plain data
manipulation; ``pmsy.query.compiler`` turns the result into SQLAlchemy
clauses.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Optional, Tuple, Union

from pmsy.query.config import Operator, UNARY_OPERATORS
from pmsy.query.identifiers import Identifier


@dataclass(frozen=True)
class Comparison:
    """``column <operator> value``. ``value`` is a tuple for ``IN``."""

    column: Identifier
    operator: Operator
    value: Any = None


@dataclass(frozen=True)
class InSubquery:
    """``column IN (SELECT select_column FROM table WHERE match_column = value)``."""

    column: Identifier
    table: Identifier
    select_column: Identifier
    match_column: Identifier
    value: Any


@dataclass(frozen=True)
class And:
    operands: Tuple["Expression", ...]


@dataclass(frozen=True)
class Or:
    operands: Tuple["Expression", ...]


@dataclass(frozen=True)
class Not:
    operand: "Expression"


@dataclass(frozen=True)
class AlwaysFalse:
    """A predicate that matches no row."""


Expression = Union[Comparison, InSubquery, And, Or, Not, AlwaysFalse]

FALSE = AlwaysFalse()


def and_(*operands: Optional[Expression]) -> Optional[Expression]:
    """Conjunction of the given expressions.

    ``None`` operands mean "no restriction" and are skipped; nested ``And``
    nodes are flattened. A false operand makes the whole conjunction false.
    Returns ``None`` when nothing restricts.
    """
    flat = []
    for operand in operands:
        if operand is None:
            continue
        if isinstance(operand, AlwaysFalse):
            return FALSE
        if isinstance(operand, And):
            flat.extend(operand.operands)
        else:
            flat.append(operand)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def or_(*operands: Expression) -> Expression:
    """Disjunction of the given expressions. With no live branch it is false."""
    flat = []
    for operand in operands:
        if isinstance(operand, AlwaysFalse):
            continue
        if isinstance(operand, Or):
            flat.extend(operand.operands)
        else:
            flat.append(operand)
    if not flat:
        return FALSE
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def not_(operand: Expression) -> Expression:
    if isinstance(operand, Not):
        return operand.operand
    return Not(operand)


def walk(expression: Expression) -> Iterator[Expression]:
    """Yield every node, depth first."""
    yield expression
    if isinstance(expression, (And, Or)):
        for operand in expression.operands:
            yield from walk(operand)
    elif isinstance(expression, Not):
        yield from walk(expression.operand)


def referenced_columns(expression: Optional[Expression]) -> Tuple[Identifier, ...]:
    """Columns of the target table referenced by ``expression``, in first-seen order."""
    if expression is None:
        return ()
    seen = []
    for node in walk(expression):
        if isinstance(node, (Comparison, InSubquery)) and node.column not in seen:
            seen.append(node.column)
    return tuple(seen)


_SYMBOLS = {
    Operator.EQ: "=",
    Operator.NEQ: "<>",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.LIKE: "LIKE",
    Operator.ILIKE: "ILIKE",
}


def render(expression: Optional[Expression]) -> str:
    """Describe an expression for logs, with every value shown as ``?``."""
    if expression is None:
        return "TRUE"
    if isinstance(expression, AlwaysFalse):
        return "FALSE"
    if isinstance(expression, Comparison):
        if expression.operator in UNARY_OPERATORS:
            literal = expression.operator.value[len("is_"):].upper()
            return f"{expression.column} IS {literal}"
        if expression.operator is Operator.IN:
            return f"{expression.column} IN ({', '.join('?' for _ in expression.value)})"
        return f"{expression.column} {_SYMBOLS[expression.operator]} ?"
    if isinstance(expression, InSubquery):
        return (
            f"{expression.column} IN (SELECT {expression.select_column} "
            f"FROM {expression.table} WHERE {expression.match_column} = ?)"
        )
    if isinstance(expression, Not):
        return f"NOT ({render(expression.operand)})"
    joiner = " AND " if isinstance(expression, And) else " OR "
    return joiner.join(
        f"({render(op)})" if isinstance(op, (And, Or)) else render(op)
        for op in expression.operands
    )
