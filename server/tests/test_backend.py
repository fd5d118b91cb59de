from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import Column, Integer, MetaData, Table
from sqlalchemy.dialects import mysql, postgresql, sqlite

from server.src.backend import SqlAlchemyBackend
from server.src.models import TABLES, nodes_table

DIALECTS = {
    "sqlite": sqlite.dialect(),
    "postgresql": postgresql.dialect(),
    "mysql": mysql.dialect(),
}


def _backend(dialect) -> SqlAlchemyBackend:
    # DDL and statement builders only read the engine's dialect.
    return SqlAlchemyBackend(SimpleNamespace(dialect=dialect))


def _compile(statement, dialect) -> str:
    return str(statement.compile(dialect=dialect))


@pytest.mark.parametrize("name", sorted(DIALECTS))
def test_schema_ddl_is_idempotent_for_every_dialect(name) -> None:
    dialect = DIALECTS[name]
    backend = _backend(dialect)

    for table in TABLES:
        statements = [_compile(stmt, dialect) for stmt in backend.prepare_create_table(table)]

        assert len(statements) == 1
        assert statements[0].strip().startswith("CREATE TABLE IF NOT EXISTS")
        assert not any("CREATE INDEX" in text for text in statements)


def test_indexes_are_created_if_missing_on_sqlite() -> None:
    table = Table(
        "indexed_samples",
        MetaData(),
        Column("id", Integer, primary_key=True),
        Column("value", Integer, index=True),
    )

    dialect = DIALECTS["sqlite"]
    statements = [_compile(stmt, dialect) for stmt in _backend(dialect).prepare_create_table(table)]

    assert len(statements) == 2
    assert statements[1].strip().startswith("CREATE INDEX IF NOT EXISTS ix_indexed_samples_value")


def test_indexed_table_is_rejected_on_mysql() -> None:
    table = Table(
        "indexed_samples",
        MetaData(),
        Column("id", Integer, primary_key=True),
        Column("value", Integer, index=True),
    )

    with pytest.raises(NotImplementedError):
        _backend(DIALECTS["mysql"]).prepare_create_table(table)


def test_mysql_upsert_uses_on_duplicate_key_update() -> None:
    backend = _backend(DIALECTS["mysql"])
    rows = [
        {"id": "a", "name": "A", "hostname": "a.example", "port": 11898, "ssl": False, "cache": False},
        {"id": "b", "name": "B", "hostname": "b.example", "port": 11898, "ssl": True, "cache": False},
    ]

    stmt = backend.prepare_multi_update(nodes_table, ["id"], ["name", "port"], rows)
    assert "ON DUPLICATE KEY UPDATE" in _compile(stmt, DIALECTS["mysql"])


@pytest.mark.parametrize("name", ["sqlite", "postgresql"])
def test_upsert_uses_on_conflict_on_the_key(name) -> None:
    dialect = DIALECTS[name]
    rows = [{"id": "a", "name": "A", "hostname": "a.example", "port": 11898, "ssl": False, "cache": False}]

    stmt = _backend(dialect).prepare_multi_update(nodes_table, ["id"], ["name"], rows)

    assert "ON CONFLICT (id) DO UPDATE" in _compile(stmt, dialect)
