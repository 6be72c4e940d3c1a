"""Structural and single-record mutations of the table store."""

from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

import structlog

from tablemanager.errors import (
    DuplicateColumnError,
    DuplicateTableNameError,
    InvalidTableNameError,
    NoPrimaryKeyError,
    RecordNotFoundError,
    UniqueConstraintError,
)
from tablemanager.models.column import Column
from tablemanager.models.config import EngineConfig
from tablemanager.models.enums import TableKind
from tablemanager.models.table import Record, Table
from tablemanager.services.constraints import ensure_primary_key_unchanged, ensure_unique_fields
from tablemanager.services.keys import RecordKeyResolver
from tablemanager.services.store import TableStore, next_record_id

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TableLifecycleManager:
    """Creates and removes tables, columns, and individual records.

    Column edits are structural only and never rewrite stored record values.
    Record writes check primary key immutability and unique columns before
    touching the store, so a rejected write leaves the table unchanged.
    """

    def __init__(
        self,
        store: TableStore,
        resolver: RecordKeyResolver,
        config: EngineConfig | None = None,
        clock: Clock = utc_now,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._config = config or EngineConfig()
        self._clock = clock
        self._logger = logger or structlog.get_logger(__name__)

    def create_table(
        self,
        name: str,
        columns: Sequence[Column],
        kind: TableKind = TableKind.TABLE,
    ) -> Table:
        """Append an empty table to the store.

        Args:
            name: Table name, unique within the store.
            columns: Column definitions in display order.
            kind: Table, view, or collection.

        Returns:
            The created table.

        Raises:
            InvalidTableNameError: If the name is blank.
            DuplicateTableNameError: If the name is taken.
            DuplicateColumnError: If two columns share a name.
        """
        if not name or not name.strip():
            raise InvalidTableNameError("Table name is required")
        if name in self._store:
            raise DuplicateTableNameError(name)
        seen: set[str] = set()
        for column in columns:
            if column.name in seen:
                raise DuplicateColumnError(name, column.name)
            seen.add(column.name)

        table = self._store.add(Table(name=name, kind=kind, columns=list(columns)))
        self._logger.info("table_created", table=name, column_count=len(table.columns))
        return table

    def delete_table(self, name: str) -> Table:
        """Remove a table and return it.

        Choosing a replacement active table is left to the caller.

        Raises:
            TableNotFoundError: If no such table exists.
        """
        table = self._store.remove(name)
        self._logger.info("table_deleted", table=name)
        return table

    def add_column(self, table_name: str, column: Column) -> Column:
        table = self._store.get(table_name)
        if table.column(column.name) is not None:
            raise DuplicateColumnError(table_name, column.name)
        table.columns = [*table.columns, column]
        self._logger.info("column_added", table=table_name, column=column.name)
        return column

    def update_column(self, table_name: str, column_name: str, **changes: Any) -> Column:
        """Replace attributes of a column definition.

        Args:
            table_name: Table owning the column.
            column_name: Current name of the column.
            **changes: Column fields to change, by field name or alias.

        Returns:
            The updated column.

        Raises:
            UnknownColumnError: If the column does not exist.
            DuplicateColumnError: If a rename collides with another column.
        """
        table = self._store.get(table_name)
        current = table.require_column(column_name)
        updated = Column.model_validate({**current.model_dump(), **_field_names(changes)})
        if updated.name != column_name and table.column(updated.name) is not None:
            raise DuplicateColumnError(table_name, updated.name)

        table.columns = [updated if column.name == column_name else column for column in table.columns]
        self._logger.info("column_updated", table=table_name, column=column_name, changes=sorted(changes))
        return updated

    def remove_column(self, table_name: str, column_name: str) -> Column:
        table = self._store.get(table_name)
        removed = table.require_column(column_name)
        table.columns = [column for column in table.columns if column.name != column_name]
        self._logger.info("column_removed", table=table_name, column=column_name)
        return removed

    def create_record(self, table_name: str, fields: Mapping[str, Any]) -> Record:
        """Append a new record with a synthetic id and creation timestamp.

        The id is one more than the largest numeric id in the table; an id
        supplied in ``fields`` takes precedence.

        Raises:
            UniqueConstraintError: If the record would duplicate a unique
                value or an existing record's identity.
        """
        table = self._store.get(table_name)
        id_field = self._config.id_field
        record: Record = {
            id_field: next_record_id(table.records, id_field),
            **fields,
            self._config.created_at_field: self._clock().isoformat(),
        }

        ensure_unique_fields(table, record, self._resolver)
        if table.has_primary_key:
            key = self._resolver.resolve_key(record, table.columns)
            if key in self._keys(table):
                column = table.primary_key_columns[0]
                raise UniqueConstraintError(column.name, record.get(column.name))

        self._store.replace_records(table_name, [*table.records, record])
        self._logger.info("record_created", table=table_name, row_count=table.row_count)
        return record

    def update_record(self, table_name: str, record_key: str, fields: Mapping[str, Any]) -> Record:
        """Merge ``fields`` into the record identified by ``record_key``.

        Raises:
            RecordNotFoundError: If no record has that key.
            ImmutableColumnError: If a primary key value would change.
            UniqueConstraintError: If a unique value would be duplicated.
        """
        table = self._store.get(table_name)
        index = self.find_record_index(table, record_key)
        if index is None:
            raise RecordNotFoundError(table_name, record_key)

        current = table.records[index]
        ensure_primary_key_unchanged(table, current, fields)
        ensure_unique_fields(table, fields, self._resolver, exclude_keys={record_key})

        updated = {**current, **fields}
        records = list(table.records)
        records[index] = updated
        self._store.replace_records(table_name, records)
        self._logger.info("record_updated", table=table_name, record_key=record_key, fields=sorted(fields))
        return updated

    def delete_record(self, table_name: str, record_key: str) -> bool:
        """Remove the record identified by ``record_key``.

        Returns:
            True if a record was removed, False if none matched.

        Raises:
            NoPrimaryKeyError: If the table has no primary key.
        """
        table = self._store.get(table_name)
        if not table.has_primary_key:
            raise NoPrimaryKeyError(table_name)

        remaining = [
            record for record in table.records if self._resolver.resolve_key(record, table.columns) != record_key
        ]
        if len(remaining) == len(table.records):
            return False

        self._store.replace_records(table_name, remaining)
        self._logger.info("record_deleted", table=table_name, record_key=record_key, row_count=table.row_count)
        return True

    def recompute_row_count(self, table_name: str) -> int:
        return self._store.get(table_name).refresh_row_count()

    def find_record(self, table_name: str, record_key: str) -> Record | None:
        table = self._store.get(table_name)
        index = self.find_record_index(table, record_key)
        return None if index is None else table.records[index]

    def find_record_index(self, table: Table, record_key: str) -> int | None:
        for index, record in enumerate(table.records):
            if self._resolver.resolve_key(record, table.columns) == record_key:
                return index
        return None

    def _keys(self, table: Table) -> set[str]:
        return set(self._resolver.resolve_keys(table.records, table.columns))


def _field_names(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase column aliases onto field names."""
    aliases = {
        field.alias: name for name, field in Column.model_fields.items() if field.alias is not None
    }
    return {aliases.get(key, key): value for key, value in changes.items()}
