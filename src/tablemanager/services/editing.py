"""Inline single-cell edit session."""

from typing import Any

import structlog

from tablemanager.errors import (
    EditSessionStateError,
    ImmutableColumnError,
    RecordNotFoundError,
    UniqueConstraintError,
)
from tablemanager.models.editing import EditingCell
from tablemanager.models.enums import EditState
from tablemanager.models.table import Record
from tablemanager.services.constraints import ensure_unique_value
from tablemanager.services.keys import RecordKeyResolver
from tablemanager.services.store import TableStore


class EditSession:
    """State machine for editing one cell of one table in place.

    The session moves IDLE -> EDITING on :meth:`start_edit` and back to IDLE
    on a successful :meth:`commit` or on :meth:`cancel`. A commit rejected by
    a unique constraint leaves the session EDITING with the draft intact so
    the user can correct it.
    """

    def __init__(
        self,
        store: TableStore,
        table_name: str,
        resolver: RecordKeyResolver,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._table_name = table_name
        self._resolver = resolver
        self._logger = logger or structlog.get_logger(__name__)
        self._cell: EditingCell | None = None

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def state(self) -> EditState:
        return EditState.IDLE if self._cell is None else EditState.EDITING

    @property
    def cell(self) -> EditingCell | None:
        return self._cell

    @property
    def is_editing(self) -> bool:
        return self._cell is not None

    def start_edit(self, record_key: str, column_name: str, current_value: Any) -> EditingCell:
        """Begin editing a cell.

        Args:
            record_key: Resolved key of the record being edited.
            column_name: Column of the cell.
            current_value: Value shown in the cell, kept for rollback.

        Returns:
            The new EditingCell.

        Raises:
            ImmutableColumnError: If the column is a primary key.
            UnknownColumnError: If the table has no such column.
            EditSessionStateError: If another cell is already being edited.
        """
        table = self._store.get(self._table_name)
        column = table.require_column(column_name)
        if column.primary_key:
            self._logger.info("edit_refused_primary_key", table=self._table_name, column=column_name)
            raise ImmutableColumnError(column_name)
        if self._cell is not None:
            raise EditSessionStateError(
                f"Already editing '{self._cell.column_name}' of record '{self._cell.record_key}'"
            )

        self._cell = EditingCell(
            record_key=record_key,
            column_name=column_name,
            value=current_value,
            original_value=current_value,
        )
        self._logger.debug("edit_started", table=self._table_name, record_key=record_key, column=column_name)
        return self._cell

    def update_draft(self, value: Any) -> EditingCell:
        cell = self._require_editing("update_draft")
        self._cell = cell.with_value(value)
        return self._cell

    def commit(self) -> Record:
        """Write the draft into the store.

        Returns:
            The updated record.

        Raises:
            EditSessionStateError: If no cell is being edited.
            UniqueConstraintError: If another record already holds the draft
                value in a unique column. The session stays EDITING.
            RecordNotFoundError: If the edited record no longer exists. The
                session stays EDITING.
        """
        cell = self._require_editing("commit")
        table = self._store.get(self._table_name)

        index = self._find_record_index(cell.record_key)
        if index is None:
            raise RecordNotFoundError(self._table_name, cell.record_key)

        try:
            ensure_unique_value(table, cell.column_name, cell.value, self._resolver, exclude_keys={cell.record_key})
        except UniqueConstraintError:
            self._logger.info(
                "edit_commit_rejected",
                table=self._table_name,
                record_key=cell.record_key,
                column=cell.column_name,
            )
            raise

        updated = {**table.records[index], cell.column_name: cell.value}
        records = list(table.records)
        records[index] = updated
        self._store.replace_records(self._table_name, records)

        self._cell = None
        self._logger.info(
            "edit_committed",
            table=self._table_name,
            record_key=cell.record_key,
            column=cell.column_name,
        )
        return updated

    def cancel(self) -> EditingCell:
        """Discard the draft without touching the store.

        Returns:
            The discarded EditingCell.
        """
        cell = self._require_editing("cancel")
        self._cell = None
        self._logger.debug("edit_cancelled", table=self._table_name, record_key=cell.record_key)
        return cell

    def _require_editing(self, operation: str) -> EditingCell:
        if self._cell is None:
            raise EditSessionStateError(f"Cannot {operation} while no cell is being edited")
        return self._cell

    def _find_record_index(self, record_key: str) -> int | None:
        table = self._store.get(self._table_name)
        for index, record in enumerate(table.records):
            if self._resolver.resolve_key(record, table.columns) == record_key:
                return index
        return None
