"""Interfaces to the external data-access collaborator and the table loader.

The engine never talks to a database directly. It lists tables and records
through a :class:`DataSource` and, when one is wired, forwards writes to a
:class:`RecordPersistence`. :class:`InMemoryDataSource` implements both for
tests and offline use.
"""

import asyncio
import copy
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import structlog
from pydantic import ValidationError

from tablemanager.errors import ConnectionNotFoundError, TableManagerError, TableNotFoundError
from tablemanager.models.column import Column
from tablemanager.models.enums import TableKind
from tablemanager.models.table import Record, Table


@runtime_checkable
class DataSource(Protocol):
    async def list_tables(self, connection_id: str) -> list[dict[str, Any]]:
        """Return ``[{name, type?, rowCount?, columns?}]`` for a connection."""
        ...

    async def list_records(self, connection_id: str, table_name: str) -> dict[str, Any]:
        """Return ``{"records": [...]}`` for one table."""
        ...


@runtime_checkable
class RecordPersistence(Protocol):
    async def create_record(self, connection_id: str, table_name: str, record: Record) -> None: ...

    async def update_record(
        self,
        connection_id: str,
        table_name: str,
        key: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> None: ...

    async def delete_record(self, connection_id: str, table_name: str, key: Mapping[str, Any]) -> None: ...

    async def bulk_update(
        self,
        connection_id: str,
        table_name: str,
        keys: Sequence[Mapping[str, Any]],
        patch: Mapping[str, Any],
    ) -> None: ...

    async def bulk_delete(self, connection_id: str, table_name: str, keys: Sequence[Mapping[str, Any]]) -> None: ...


class InMemoryDataSource:
    """Dict-backed data source and persistence layer.

    Holds ``{connection_id: [table payload, ...]}`` where each payload is
    shaped like a remote listing plus a ``records`` list. Reads return deep
    copies so the engine's working set never aliases the backing data.
    """

    def __init__(self, connections: Mapping[str, Sequence[Mapping[str, Any]]] | None = None) -> None:
        self._connections: dict[str, dict[str, dict[str, Any]]] = {}
        for connection_id, tables in (connections or {}).items():
            self._connections[connection_id] = {str(table["name"]): copy.deepcopy(dict(table)) for table in tables}
        self.calls: list[tuple[str, str, str]] = []

    def add_table(self, connection_id: str, table: Mapping[str, Any]) -> None:
        self._connections.setdefault(connection_id, {})[str(table["name"])] = copy.deepcopy(dict(table))

    async def list_tables(self, connection_id: str) -> list[dict[str, Any]]:
        tables = self._connection(connection_id)
        return [
            {key: copy.deepcopy(value) for key, value in table.items() if key != "records"}
            | {"rowCount": table.get("rowCount", len(table.get("records", [])))}
            for table in tables.values()
        ]

    async def list_records(self, connection_id: str, table_name: str) -> dict[str, Any]:
        table = self._table(connection_id, table_name)
        return {"records": copy.deepcopy(table.get("records", []))}

    async def create_record(self, connection_id: str, table_name: str, record: Record) -> None:
        self._table(connection_id, table_name).setdefault("records", []).append(dict(record))
        self.calls.append(("create_record", connection_id, table_name))

    async def update_record(
        self,
        connection_id: str,
        table_name: str,
        key: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> None:
        for record in self._matching(connection_id, table_name, [key]):
            record.update(fields)
        self.calls.append(("update_record", connection_id, table_name))

    async def delete_record(self, connection_id: str, table_name: str, key: Mapping[str, Any]) -> None:
        self._delete(connection_id, table_name, [key])
        self.calls.append(("delete_record", connection_id, table_name))

    async def bulk_update(
        self,
        connection_id: str,
        table_name: str,
        keys: Sequence[Mapping[str, Any]],
        patch: Mapping[str, Any],
    ) -> None:
        for record in self._matching(connection_id, table_name, keys):
            record.update(patch)
        self.calls.append(("bulk_update", connection_id, table_name))

    async def bulk_delete(self, connection_id: str, table_name: str, keys: Sequence[Mapping[str, Any]]) -> None:
        self._delete(connection_id, table_name, keys)
        self.calls.append(("bulk_delete", connection_id, table_name))

    def records(self, connection_id: str, table_name: str) -> list[Record]:
        return self._table(connection_id, table_name).get("records", [])

    def _delete(self, connection_id: str, table_name: str, keys: Sequence[Mapping[str, Any]]) -> None:
        table = self._table(connection_id, table_name)
        doomed = {id(record) for record in self._matching(connection_id, table_name, keys)}
        table["records"] = [record for record in table.get("records", []) if id(record) not in doomed]

    def _matching(self, connection_id: str, table_name: str, keys: Sequence[Mapping[str, Any]]) -> list[Record]:
        records = self._table(connection_id, table_name).get("records", [])
        return [record for record in records if any(_matches_key(record, key) for key in keys)]

    def _connection(self, connection_id: str) -> dict[str, dict[str, Any]]:
        try:
            return self._connections[connection_id]
        except KeyError:
            raise ConnectionNotFoundError(connection_id) from None

    def _table(self, connection_id: str, table_name: str) -> dict[str, Any]:
        try:
            return self._connection(connection_id)[table_name]
        except KeyError:
            raise TableNotFoundError(table_name) from None


class TableLoader:
    """Materializes tables from a data source into engine models.

    Lists a connection's tables, normalizes their column shapes, and fetches
    each table's records concurrently. A table whose record fetch fails is
    kept without records. Tables that declare no columns get TEXT columns
    inferred from their first record.
    """

    def __init__(
        self,
        data_source: DataSource,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._data_source = data_source
        self._logger = logger or structlog.get_logger(__name__)

    async def load_tables(self, connection_id: str) -> list[Table]:
        """Fetch every table of a connection with its records.

        Args:
            connection_id: Connection to list.

        Returns:
            Tables in the order the data source listed them.
        """
        self._logger.info("tables_load_started", connection_id=connection_id)
        listing = await self._data_source.list_tables(connection_id)
        tables = [self.table_from_listing(entry) for entry in listing]
        loaded = await asyncio.gather(*(self._load_records(connection_id, table) for table in tables))
        self._logger.info("tables_load_completed", connection_id=connection_id, table_count=len(loaded))
        return list(loaded)

    async def load_records(self, connection_id: str, table: Table) -> Table:
        """Refetch one table's records, propagating fetch errors."""
        payload = await self._data_source.list_records(connection_id, table.name)
        return self._with_records(table, payload.get("records") or [])

    def table_from_listing(self, entry: Mapping[str, Any]) -> Table:
        columns = [Column.from_remote(column) for column in entry.get("columns") or []]
        return Table(
            name=entry["name"],
            kind=_table_kind(entry.get("type")),
            columns=columns,
            row_count=entry.get("rowCount") or 0,
        )

    async def _load_records(self, connection_id: str, table: Table) -> Table:
        try:
            return await self.load_records(connection_id, table)
        except (TableManagerError, ValidationError, OSError) as e:
            self._logger.warning(
                "records_load_failed",
                connection_id=connection_id,
                table=table.name,
                error=str(e),
            )
            return table

    def _with_records(self, table: Table, records: list[Record]) -> Table:
        columns = table.columns
        if not columns and records:
            columns = infer_columns(records[0])
        loaded = table.model_copy(update={"columns": columns, "records": [dict(record) for record in records]})
        loaded.refresh_row_count()
        return loaded


def infer_columns(record: Mapping[str, Any]) -> list[Column]:
    """Derive nullable TEXT columns from the fields of a sample record."""
    return [Column(name=str(name)) for name in record]


def _table_kind(value: Any) -> TableKind:
    try:
        return TableKind(str(value).lower()) if value else TableKind.TABLE
    except ValueError:
        return TableKind.TABLE


def _matches_key(record: Mapping[str, Any], key: Mapping[str, Any]) -> bool:
    return bool(key) and all(record.get(name) == value for name, value in key.items())
