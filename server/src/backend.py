from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from sqlalchemy import Table, insert
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.schema import CreateIndex, CreateTable, ExecutableDDLElement
from sqlalchemy.sql import Executable

from server.src.core.logging import get_logger

logger = get_logger(__name__)

Row = Mapping[str, Any]


@dataclass(frozen=True)
class QueryResult:
    """Row count and rows of an executed statement.

    For SELECT statements `count` is the number of rows returned; for DML it
    is the driver-reported number of affected rows.
    """

    count: int
    rows: Sequence[Row] = field(default_factory=tuple)


class StorageBackend(Protocol):
    """Capabilities the persistence layer needs from a database."""

    @property
    def dialect(self) -> str: ...

    async def query(self, statement: Executable) -> QueryResult: ...

    async def transaction(self, statements: Sequence[Executable]) -> None: ...

    def prepare_multi_insert(self, table: Table, rows: Sequence[Row]) -> Executable: ...

    def prepare_multi_update(
        self,
        table: Table,
        keys: Sequence[str],
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> Executable: ...

    def prepare_create_table(self, table: Table) -> list[ExecutableDDLElement]: ...


class SqlAlchemyBackend:
    """StorageBackend over an async SQLAlchemy engine (sqlite, postgresql, mysql)."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    async def query(self, statement: Executable) -> QueryResult:
        async with self._engine.connect() as connection:
            result = await connection.execute(statement)
            if result.returns_rows:
                rows = tuple(result.mappings().all())
                count = len(rows)
            else:
                rows = ()
                count = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else 0
            await connection.commit()
        return QueryResult(count=count, rows=rows)

    async def transaction(self, statements: Sequence[Executable]) -> None:
        """Run every statement on one pooled connection inside one transaction.

        On failure the transaction is rolled back and the original error is
        re-raised. The connection goes back to the pool on both paths.
        """
        if not statements:
            return

        async with self._engine.connect() as connection:
            trans = await connection.begin()
            try:
                for statement in statements:
                    await connection.execute(statement)
            except Exception:
                await trans.rollback()
                logger.debug("Rolled back transaction of %d statement(s)", len(statements))
                raise
            await trans.commit()

    def prepare_multi_insert(self, table: Table, rows: Sequence[Row]) -> Executable:
        return insert(table).values([dict(row) for row in rows])

    def prepare_multi_update(
        self,
        table: Table,
        keys: Sequence[str],
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> Executable:
        """Build a multi-row insert that replaces `columns` when `keys` already exist."""
        values = [dict(row) for row in rows]
        dialect = self.dialect

        if dialect == "mysql":
            stmt = mysql.insert(table).values(values)
            return stmt.on_duplicate_key_update({column: stmt.inserted[column] for column in columns})

        if dialect == "postgresql":
            stmt = postgresql.insert(table).values(values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(table).values(values)
        else:
            raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")

        return stmt.on_conflict_do_update(
            index_elements=[table.c[key] for key in keys],
            set_={column: stmt.excluded[column] for column in columns},
        )

    def prepare_create_table(self, table: Table) -> list[ExecutableDDLElement]:
        statements: list[ExecutableDDLElement] = [CreateTable(table, if_not_exists=True)]
        if table.indexes and self.dialect == "mysql":
            # MySQL has no CREATE INDEX IF NOT EXISTS.
            raise NotImplementedError(
                f"Secondary indexes on table '{table.name}' cannot be created idempotently on mysql"
            )
        for index in sorted(table.indexes, key=lambda idx: idx.name or ""):
            statements.append(CreateIndex(index, if_not_exists=True))
        return statements
