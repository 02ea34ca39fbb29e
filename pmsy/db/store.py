"""Data store access.

``Store`` executes ``ParameterizedQuery`` objects on an async SQLAlchemy
engine, reflects table columns and translates driver failures into
``StoreError``. Statement text and bound parameters are never logged
or returned to clients.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError, NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.types import TypeEngine

from pmsy.api_errors.config import ErrorCode
from pmsy.api_errors.exceptions import StoreError
from pmsy.logging_config.performance import QueryTimer
from pmsy.query.compiler import ParameterizedQuery
from pmsy.query.identifiers import Identifier

logger = logging.getLogger(__name__)

# SQLSTATE codes of constraint violations
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"

_SQLSTATE_ERRORS = {
    UNIQUE_VIOLATION: (ErrorCode.DUPLICATE_ENTRY, "Duplicate entry"),
    FOREIGN_KEY_VIOLATION: (ErrorCode.FOREIGN_KEY_VIOLATION, "Referenced record does not exist"),
    NOT_NULL_VIOLATION: (ErrorCode.NOT_NULL_VIOLATION, "A required field is missing"),
}

# SQLite reports constraint failures only through the message
_SQLITE_MESSAGES = {
    "UNIQUE constraint failed": UNIQUE_VIOLATION,
    "FOREIGN KEY constraint failed": FOREIGN_KEY_VIOLATION,
    "NOT NULL constraint failed": NOT_NULL_VIOLATION,
}


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    message = str(orig) if orig is not None else ""
    for fragment, code in _SQLITE_MESSAGES.items():
        if fragment in message:
            return code
    return None


def classify_store_error(exc: Exception) -> StoreError:
    """Map a driver exception to a ``StoreError`` with a client-safe message."""
    sqlstate = _sqlstate(exc) if isinstance(exc, DBAPIError) else None
    if sqlstate in _SQLSTATE_ERRORS:
        error_code, message = _SQLSTATE_ERRORS[sqlstate]
        return StoreError(message, error_code, sqlstate=sqlstate)
    return StoreError(sqlstate=sqlstate)


def _row_to_dict(row: Any) -> Dict[str, Any]:
    return dict(row._mapping)


class Store:
    """Executes parameterized queries on an async engine.

    A ``Store`` created by ``transaction()`` runs every statement on one
    connection inside a single transaction; the plain store opens a
    short transaction per statement.
    """

    def __init__(self, engine: AsyncEngine, connection: Optional[AsyncConnection] = None):
        self.engine = engine
        self._connection = connection

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        if self._connection is not None:
            yield self._connection
        else:
            async with self.engine.begin() as conn:
                yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Store"]:
        """Run several statements atomically.

        Example:
            async with store.transaction() as tx:
                await tx.fetch_one(insert_a)
                await tx.fetch_one(insert_b)
        """
        if self._connection is not None:
            yield self
            return
        try:
            async with self.engine.begin() as conn:
                yield Store(self.engine, conn)
        except StoreError:
            raise
        except SQLAlchemyError as exc:
            raise self._failed(exc, "transaction", "") from None

    async def _execute(self, query: ParameterizedQuery, consume):
        try:
            async with self._connect() as conn:
                with QueryTimer(query.operation, table=query.table):
                    result = await conn.execute(query.statement)
                    return consume(result)
        except SQLAlchemyError as exc:
            raise self._failed(exc, query.operation, query.table) from None

    async def fetch_all(self, query: ParameterizedQuery) -> List[Dict[str, Any]]:
        return await self._execute(query, lambda result: [_row_to_dict(r) for r in result])

    async def fetch_one(self, query: ParameterizedQuery) -> Optional[Dict[str, Any]]:
        def _first(result):
            row = result.first()
            return _row_to_dict(row) if row is not None else None

        return await self._execute(query, _first)

    async def fetch_scalar(self, query: ParameterizedQuery) -> Any:
        return await self._execute(query, lambda result: result.scalar())

    async def fetch_column(self, query: ParameterizedQuery) -> List[Any]:
        return await self._execute(query, lambda result: list(result.scalars()))

    async def execute(self, query: ParameterizedQuery) -> int:
        """Run a statement that returns no rows; returns the affected row count."""
        return await self._execute(query, lambda result: result.rowcount)

    async def table_columns(self, table: str) -> Dict[str, TypeEngine]:
        """Reflect the columns of ``table`` as ``{name: type}``, in table order.

        An unknown table yields an empty mapping.
        """
        name = Identifier(table)

        def _reflect(sync_conn) -> Dict[str, TypeEngine]:
            try:
                columns = sa.inspect(sync_conn).get_columns(name)
            except NoSuchTableError:
                return {}
            return {column["name"]: column["type"] for column in columns}

        try:
            async with self._connect() as conn:
                with QueryTimer("reflect", table=name):
                    return await conn.run_sync(_reflect)
        except SQLAlchemyError as exc:
            raise self._failed(exc, "reflect", name) from None

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(sa.text("SELECT 1"))
        return True

    @staticmethod
    def _failed(exc: SQLAlchemyError, operation: str, table: str) -> StoreError:
        error = classify_store_error(exc)
        logger.error(
            f"Store error during {operation} on {table or '-'}: "
            f"{type(getattr(exc, 'orig', exc)).__name__}",
            extra={
                "operation": operation,
                "table": str(table),
                "error_code": error.error_code.value,
            },
        )
        return error
