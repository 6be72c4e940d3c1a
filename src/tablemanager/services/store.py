"""Table store holding the in-memory working set."""

import math
from typing import Any, Iterator, Mapping, Sequence

import structlog

from tablemanager.errors import DuplicateTableNameError, TableNotFoundError
from tablemanager.models.table import Record, Table


class TableStore:
    """Ordered collection of tables keyed by name.

    The store is the single mutable resource of the engine. Other services
    hold table names, never copies of tables, and mutate through the methods
    here so ``row_count`` stays in step with the record list.
    """

    def __init__(
        self,
        tables: Sequence[Table] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._tables: dict[str, Table] = {}
        self._logger = logger or structlog.get_logger(__name__)
        for table in tables or []:
            self.add(table)

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def __len__(self) -> int:
        return len(self._tables)

    def __iter__(self) -> Iterator[Table]:
        return iter(list(self._tables.values()))

    @property
    def tables(self) -> list[Table]:
        return list(self._tables.values())

    def names(self) -> list[str]:
        return list(self._tables)

    def first(self) -> Table | None:
        return next(iter(self._tables.values()), None)

    def get(self, name: str) -> Table:
        """Return the table called ``name``.

        Raises:
            TableNotFoundError: If no such table exists.
        """
        try:
            return self._tables[name]
        except KeyError:
            raise TableNotFoundError(name) from None

    def add(self, table: Table) -> Table:
        """Append a table to the end of the collection.

        Raises:
            DuplicateTableNameError: If a table with the same name exists.
        """
        if table.name in self._tables:
            raise DuplicateTableNameError(table.name)
        self._tables[table.name] = table
        self._logger.debug("table_added", table=table.name, row_count=table.row_count)
        return table

    def upsert(self, table: Table) -> Table:
        """Insert or replace a table, keeping its position when replaced."""
        self._tables[table.name] = table
        return table

    def remove(self, name: str) -> Table:
        table = self.get(name)
        del self._tables[name]
        self._logger.debug("table_removed", table=name)
        return table

    def clear(self) -> None:
        self._tables.clear()

    def replace_records(self, name: str, records: list[Record]) -> Table:
        """Swap in a new record list for a table and recompute its row count."""
        table = self.get(name)
        table.records = records
        table.refresh_row_count()
        return table

    def snapshot_records(self, name: str) -> list[Record]:
        """Return a copy of a table's records suitable for later restore."""
        return [dict(record) for record in self.get(name).records]


def next_record_id(records: Sequence[Mapping[str, Any]], id_field: str = "id") -> int:
    """Return one more than the largest numeric id among ``records``.

    Non-numeric ids are ignored; a table without numeric ids starts at 1.
    """
    numeric_ids = [
        value
        for value in (record.get(id_field) for record in records)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)
    ]
    if not numeric_ids:
        return 1
    return int(max(numeric_ids)) + 1
