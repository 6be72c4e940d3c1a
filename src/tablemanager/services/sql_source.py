"""Data source and persistence backed by SQL databases through SQLAlchemy.

Uses SQLAlchemy's native async support (aiosqlite for SQLite files).
Reflection runs through ``AsyncConnection.run_sync`` because the inspector
API is synchronous.
"""

from typing import Any, Mapping, Sequence

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from tablemanager.errors import ConnectionNotFoundError, DataSourceError, PersistenceError, TableNotFoundError
from tablemanager.models.enums import TableKind
from tablemanager.models.table import Record


class SqlAlchemyDataSource:
    """Lists and writes records of SQL tables for a set of connections.

    Accepts one AsyncEngine per connection id via dependency injection so
    tests can point it at temporary SQLite files.
    """

    def __init__(
        self,
        engines: Mapping[str, AsyncEngine],
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engines = dict(engines)
        self._logger = logger or structlog.get_logger(__name__)

    def add_engine(self, connection_id: str, engine: AsyncEngine) -> None:
        self._engines[connection_id] = engine

    async def dispose(self) -> None:
        """Close every engine's connection pool."""
        for engine in self._engines.values():
            await engine.dispose()

    async def list_tables(self, connection_id: str) -> list[dict[str, Any]]:
        """Reflect tables and views with their column definitions.

        Args:
            connection_id: Connection to inspect.

        Returns:
            One ``{name, type, columns}`` entry per table or view.

        Raises:
            ConnectionNotFoundError: If the connection id is unknown.
            DataSourceError: If reflection fails.
        """
        engine = self._engine(connection_id)
        try:
            async with engine.connect() as conn:
                tables = await conn.run_sync(_reflect_tables)
        except SQLAlchemyError as e:
            self._logger.error("list_tables_failed", connection_id=connection_id, error=str(e))
            raise DataSourceError(f"Failed to list tables: {e}") from e

        self._logger.debug("tables_listed", connection_id=connection_id, table_count=len(tables))
        return tables

    async def list_records(self, connection_id: str, table_name: str) -> dict[str, Any]:
        """Return every row of a table as ``{"records": [...]}``.

        Raises:
            ConnectionNotFoundError: If the connection id is unknown.
            TableNotFoundError: If the table does not exist.
            DataSourceError: If the query fails.
        """
        engine = self._engine(connection_id)
        try:
            async with engine.connect() as conn:
                table = await self._reflect(conn, table_name)
                result = await conn.execute(sa.select(table))
                records = [dict(row) for row in result.mappings()]
        except NoSuchTableError:
            raise TableNotFoundError(table_name) from None
        except SQLAlchemyError as e:
            self._logger.error("list_records_failed", connection_id=connection_id, table=table_name, error=str(e))
            raise DataSourceError(f"Failed to fetch records of '{table_name}': {e}") from e

        self._logger.debug("records_listed", connection_id=connection_id, table=table_name, count=len(records))
        return {"records": records}

    async def create_record(self, connection_id: str, table_name: str, record: Record) -> None:
        async def insert(conn: AsyncConnection, table: sa.Table) -> None:
            await conn.execute(sa.insert(table).values(_known_fields(table, record)))

        await self._write(connection_id, table_name, "create_record", insert)

    async def update_record(
        self,
        connection_id: str,
        table_name: str,
        key: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> None:
        async def update(conn: AsyncConnection, table: sa.Table) -> None:
            values = _known_fields(table, fields)
            if values:
                await conn.execute(sa.update(table).where(_key_clause(table, key)).values(values))

        await self._write(connection_id, table_name, "update_record", update)

    async def delete_record(self, connection_id: str, table_name: str, key: Mapping[str, Any]) -> None:
        async def delete(conn: AsyncConnection, table: sa.Table) -> None:
            await conn.execute(sa.delete(table).where(_key_clause(table, key)))

        await self._write(connection_id, table_name, "delete_record", delete)

    async def bulk_update(
        self,
        connection_id: str,
        table_name: str,
        keys: Sequence[Mapping[str, Any]],
        patch: Mapping[str, Any],
    ) -> None:
        if not keys:
            return

        async def update(conn: AsyncConnection, table: sa.Table) -> None:
            values = _known_fields(table, patch)
            if values:
                clause = sa.or_(*(_key_clause(table, key) for key in keys))
                await conn.execute(sa.update(table).where(clause).values(values))

        await self._write(connection_id, table_name, "bulk_update", update)

    async def bulk_delete(self, connection_id: str, table_name: str, keys: Sequence[Mapping[str, Any]]) -> None:
        if not keys:
            return

        async def delete(conn: AsyncConnection, table: sa.Table) -> None:
            clause = sa.or_(*(_key_clause(table, key) for key in keys))
            await conn.execute(sa.delete(table).where(clause))

        await self._write(connection_id, table_name, "bulk_delete", delete)

    async def _write(self, connection_id: str, table_name: str, operation: str, statement) -> None:
        """Run a write in its own transaction, translating driver errors."""
        engine = self._engine(connection_id)
        try:
            async with engine.begin() as conn:
                table = await self._reflect(conn, table_name)
                await statement(conn, table)
        except NoSuchTableError:
            raise TableNotFoundError(table_name) from None
        except SQLAlchemyError as e:
            self._logger.error(f"{operation}_failed", connection_id=connection_id, table=table_name, error=str(e))
            raise PersistenceError(f"Failed to {operation.replace('_', ' ')} in '{table_name}': {e}") from e

        self._logger.debug(operation, connection_id=connection_id, table=table_name)

    async def _reflect(self, conn: AsyncConnection, table_name: str) -> sa.Table:
        return await conn.run_sync(lambda sync_conn: sa.Table(table_name, sa.MetaData(), autoload_with=sync_conn))

    def _engine(self, connection_id: str) -> AsyncEngine:
        try:
            return self._engines[connection_id]
        except KeyError:
            raise ConnectionNotFoundError(connection_id) from None


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database path.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == ":memory:":
        url = "sqlite+aiosqlite:///:memory:"
    else:
        url = f"sqlite+aiosqlite:///{db_path}"
    return create_async_engine(url)


def _reflect_tables(sync_conn: sa.Connection) -> list[dict[str, Any]]:
    inspector = sa.inspect(sync_conn)
    listing = [
        {"name": name, "type": TableKind.TABLE.value, "columns": _reflect_columns(inspector, name)}
        for name in inspector.get_table_names()
    ]
    listing.extend(
        {"name": name, "type": TableKind.VIEW.value, "columns": _reflect_columns(inspector, name, is_view=True)}
        for name in inspector.get_view_names()
    )
    return listing


def _reflect_columns(inspector: sa.Inspector, table_name: str, is_view: bool = False) -> list[dict[str, Any]]:
    primary_keys: set[str] = set()
    unique: set[str] = set()
    foreign: set[str] = set()
    if not is_view:
        primary_keys = set(inspector.get_pk_constraint(table_name).get("constrained_columns") or [])
        for constraint in inspector.get_unique_constraints(table_name):
            if len(constraint["column_names"]) == 1:
                unique.update(constraint["column_names"])
        for index in inspector.get_indexes(table_name):
            if index.get("unique") and len(index["column_names"]) == 1:
                unique.update(name for name in index["column_names"] if name)
        for foreign_key in inspector.get_foreign_keys(table_name):
            foreign.update(foreign_key["constrained_columns"])

    return [
        {
            "name": column["name"],
            "data_type": str(column["type"]),
            "nullable": column.get("nullable", True),
            "primary_key": column["name"] in primary_keys,
            "unique_key": column["name"] in unique,
            "foreign_key": column["name"] in foreign,
            "default": column.get("default"),
        }
        for column in inspector.get_columns(table_name)
    ]


def _known_fields(table: sa.Table, fields: Mapping[str, Any]) -> dict[str, Any]:
    return {name: value for name, value in fields.items() if name in table.c}


def _key_clause(table: sa.Table, key: Mapping[str, Any]) -> sa.ColumnElement[bool]:
    if not key:
        raise PersistenceError(f"Cannot address a record of '{table.name}' without primary key values")
    return sa.and_(*(table.c[name] == value for name, value in key.items()))
