from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from server.src.core.logging import get_logger

from .backend import SqlAlchemyBackend
from .config import Settings
from .repositories.node_monitor import NodeMonitorRepository

logger = get_logger(__name__)

settings = Settings()
engine: AsyncEngine | None = None
backend: SqlAlchemyBackend | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ARG001
    # SQLite ignores ON DELETE/UPDATE CASCADE unless enabled per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure_database(config: Settings | None = None) -> SqlAlchemyBackend:
    """(Re)Initialize the async engine and storage backend for the specified settings.

    Raises ConfigurationError when the configured backend lacks connection
    parameters.
    """
    global settings, engine, backend

    settings = config or Settings()
    url = settings.resolved_database_url()

    if engine is not None:
        engine.sync_engine.dispose()

    engine = create_async_engine(url, echo=settings.sql_echo, future=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    backend = SqlAlchemyBackend(engine)
    return backend


def get_backend() -> SqlAlchemyBackend:
    if backend is None:
        return configure_database(settings)
    return backend


async def init_database(config: Settings | None = None) -> None:
    """Create the database directory and tables if they do not exist."""
    cfg = config or settings
    url = cfg.resolved_database_url()

    if url.startswith("sqlite") and ":memory:" not in url:
        db_path = cfg.database_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(db_path, "a", encoding="utf-8"):
                pass
        except PermissionError as exc:
            raise RuntimeError(
                f"Cannot write to database file {db_path!s}: permission denied. "
                "Ensure the file is writable or run the process with sufficient privileges."
            ) from exc
        except OSError as exc:
            raise RuntimeError(
                f"Unable to create or access database file {db_path!s}: {exc!s}"
            ) from exc

    storage = get_backend()
    await NodeMonitorRepository(storage).init()
    logger.debug("Database schema ready on %s backend", storage.dialect)
