"""Command dispatcher that owns the table store and the view state.

Every user action in the table view is expressed as a command from
:mod:`tablemanager.models.commands` and handed to :meth:`TableManager.dispatch`.
The manager runs each command to completion before the next state change,
then recomputes whatever view state depends on it: selections are pruned of
deleted records, and an edit is cancelled when its record or table goes away.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable

import structlog

from tablemanager.errors import (
    EditSessionStateError,
    NoActiveTableError,
    PersistenceError,
    RecordNotFoundError,
    TableManagerError,
)
from tablemanager.models.commands import (
    AddColumn,
    CancelEdit,
    Command,
    CommitEdit,
    CreateRecord,
    CreateTable,
    DeleteRecord,
    DeleteTable,
    RefreshRecords,
    RemoveColumn,
    RunBulkDelete,
    RunBulkUpdate,
    RunExport,
    RunImport,
    SelectTable,
    SetPage,
    SetSearchTerm,
    StartEdit,
    ToggleAllOnPage,
    ToggleSelection,
    UpdateColumn,
    UpdateDraft,
    UpdateRecord,
)
from tablemanager.models.editing import EditingCell
from tablemanager.models.results import Page
from tablemanager.models.table import Record, Table
from tablemanager.services.bulk import BulkOperationCoordinator, ProgressCallback
from tablemanager.services.editing import EditSession
from tablemanager.services.keys import RecordKeyResolver, key_fields
from tablemanager.services.lifecycle import TableLifecycleManager
from tablemanager.services.search import SearchPaginator
from tablemanager.services.selection import SelectionSet
from tablemanager.services.source import RecordPersistence, TableLoader
from tablemanager.services.store import TableStore


class TableManager:
    """Single entry point for driving the table editing engine.

    Holds the active connection and table, the search term and page, the
    selection, and the inline edit session. All dependencies are injected;
    see :mod:`tablemanager.services.factory` for wiring.
    """

    def __init__(
        self,
        store: TableStore,
        resolver: RecordKeyResolver,
        lifecycle: TableLifecycleManager,
        bulk: BulkOperationCoordinator,
        paginator: SearchPaginator,
        loader: TableLoader | None = None,
        persistence: RecordPersistence | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._lifecycle = lifecycle
        self._bulk = bulk
        self._paginator = paginator
        self._loader = loader
        self._persistence = persistence
        self._logger = logger or structlog.get_logger(__name__)

        self._connection_id: str | None = None
        self._active_table_name: str | None = None
        self._selection = SelectionSet(logger=self._logger)
        self._edit_session: EditSession | None = None
        self._search_term = ""
        self._page = 1
        self._progress = 0
        self._is_processing = False
        self._progress_listener: ProgressCallback | None = None
        # serializes dispatch, connect and disconnect
        self._lock = asyncio.Lock()

        self._handlers: dict[type[Command], Callable[[Any], Any]] = {
            SelectTable: self._select_table,
            CreateTable: self._create_table,
            DeleteTable: self._delete_table,
            AddColumn: self._add_column,
            UpdateColumn: self._update_column,
            RemoveColumn: self._remove_column,
            CreateRecord: self._create_record,
            UpdateRecord: self._update_record,
            DeleteRecord: self._delete_record,
            StartEdit: self._start_edit,
            UpdateDraft: self._update_draft,
            CommitEdit: self._commit_edit,
            CancelEdit: self._cancel_edit,
            ToggleSelection: self._toggle_selection,
            ToggleAllOnPage: self._toggle_all_on_page,
            SetSearchTerm: self._set_search_term,
            SetPage: self._set_page,
            RunBulkDelete: self._run_bulk_delete,
            RunBulkUpdate: self._run_bulk_update,
            RunImport: self._run_import,
            RunExport: self._run_export,
            RefreshRecords: self._refresh_records,
        }

    @property
    def store(self) -> TableStore:
        return self._store

    @property
    def connection_id(self) -> str | None:
        return self._connection_id

    @property
    def active_table(self) -> Table | None:
        if self._active_table_name is None:
            return None
        return self._store.get(self._active_table_name)

    @property
    def selection(self) -> SelectionSet:
        return self._selection

    @property
    def editing_cell(self) -> EditingCell | None:
        return self._edit_session.cell if self._edit_session else None

    @property
    def search_term(self) -> str:
        return self._search_term

    @property
    def page(self) -> int:
        return self._page

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    def filtered_records(self) -> list[Record]:
        table = self.active_table
        if table is None:
            return []
        return self._paginator.filter(table.records, self._search_term)

    def current_page(self) -> Page:
        """Return the visible page for the current search term and page number."""
        return self._paginator.paginate(self.filtered_records(), self._page)

    def page_keys(self) -> list[str]:
        table = self.active_table
        if table is None:
            return []
        return self._resolver.resolve_keys(self.current_page().records, table.columns)

    def selected_records(self) -> list[Record]:
        table = self.active_table
        if table is None:
            return []
        return [record for record in table.records if self._key(record, table) in self._selection]

    def record_key(self, record: Record) -> str:
        return self._key(record, self._require_active())

    async def connect(self, connection_id: str) -> list[Table]:
        """Load a connection's tables into the store and activate the first.

        Raises:
            RuntimeError: If the manager has no data source.
            TableManagerError: If the table listing fails, for example
                DataSourceError or ConnectionNotFoundError. The store is left
                empty and no table is active.
        """
        if self._loader is None:
            raise RuntimeError("TableManager has no data source. Pass a TableLoader to connect.")

        async with self._lock:
            return await self._connect(connection_id)

    async def _connect(self, connection_id: str) -> list[Table]:
        self._connection_id = connection_id
        self._activate(None)
        self._store.clear()
        try:
            tables = await self._loader.load_tables(connection_id)
        except TableManagerError:
            self._logger.error("connection_load_failed", connection_id=connection_id)
            raise

        for table in tables:
            self._store.upsert(table)
        first = self._store.first()
        self._activate(first.name if first else None)
        self._logger.info("connected", connection_id=connection_id, table_count=len(self._store))
        return self._store.tables

    async def disconnect(self) -> None:
        async with self._lock:
            self._activate(None)
            self._store.clear()
            self._connection_id = None

    async def dispatch(self, command: Command, on_progress: ProgressCallback | None = None) -> Any:
        """Apply one command and return its result.

        Commands run one at a time: a command dispatched while another is
        still awaiting waits until that one has finished.

        Args:
            command: The command to run.
            on_progress: Receives progress percentages for bulk commands.

        Returns:
            Whatever the command produces: a table, record, page, bulk
            result, export artifact, or None.

        Raises:
            TypeError: If the command type is not recognised.
            TableManagerError: Any engine error raised by the command. The
                store is unchanged when one is raised.
        """
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported command: {type(command).__name__}")

        async with self._lock:
            self._logger.debug("command_dispatched", command=type(command).__name__, table=self._active_table_name)
            self._progress_listener = on_progress
            try:
                result = handler(command)
                if inspect.isawaitable(result):
                    result = await result
            finally:
                self._progress_listener = None
            return result

    def _select_table(self, command: SelectTable) -> Table | None:
        if command.table_name is not None:
            self._store.get(command.table_name)
        self._activate(command.table_name)
        return self.active_table

    def _create_table(self, command: CreateTable) -> Table:
        return self._lifecycle.create_table(command.name, command.columns, command.kind)

    def _delete_table(self, command: DeleteTable) -> Table | None:
        self._lifecycle.delete_table(command.table_name)
        if command.table_name == self._active_table_name:
            replacement = self._store.first()
            self._activate(replacement.name if replacement else None)
        return self.active_table

    def _add_column(self, command: AddColumn) -> Any:
        return self._lifecycle.add_column(self._target(command.table_name), command.column)

    def _update_column(self, command: UpdateColumn) -> Any:
        table_name = self._target(command.table_name)
        self._cancel_edit_on_column(table_name, command.column_name)
        column = self._lifecycle.update_column(table_name, command.column_name, **command.changes)
        self._prune_selection()
        return column

    def _remove_column(self, command: RemoveColumn) -> Any:
        table_name = self._target(command.table_name)
        self._cancel_edit_on_column(table_name, command.column_name)
        column = self._lifecycle.remove_column(table_name, command.column_name)
        self._prune_selection()
        return column

    async def _create_record(self, command: CreateRecord) -> Record:
        table = self._require_active()
        snapshot = self._store.snapshot_records(table.name)
        record = self._lifecycle.create_record(table.name, command.fields)
        await self._persist(
            table.name,
            snapshot,
            lambda persistence, conn: persistence.create_record(conn, table.name, record),
        )
        return record

    async def _update_record(self, command: UpdateRecord) -> Record:
        table = self._require_active()
        snapshot = self._store.snapshot_records(table.name)
        record = self._lifecycle.update_record(table.name, command.record_key, command.fields)
        key = key_fields(record, table.columns)
        await self._persist(
            table.name,
            snapshot,
            lambda persistence, conn: persistence.update_record(conn, table.name, key, command.fields),
        )
        return record

    async def _delete_record(self, command: DeleteRecord) -> bool:
        table = self._require_active()
        record = self._lifecycle.find_record(table.name, command.record_key)
        snapshot = self._store.snapshot_records(table.name)
        deleted = self._lifecycle.delete_record(table.name, command.record_key)
        if not deleted or record is None:
            return False

        cell = self.editing_cell
        if cell is not None and cell.record_key == command.record_key and self._edit_session is not None:
            self._edit_session.cancel()
        self._prune_selection()

        key = key_fields(record, table.columns)
        await self._persist(
            table.name,
            snapshot,
            lambda persistence, conn: persistence.delete_record(conn, table.name, key),
        )
        return True

    def _start_edit(self, command: StartEdit) -> EditingCell:
        return self._require_session().start_edit(command.record_key, command.column_name, command.current_value)

    def _update_draft(self, command: UpdateDraft) -> EditingCell:
        return self._require_session().update_draft(command.value)

    async def _commit_edit(self, command: CommitEdit) -> Record:
        session = self._require_session()
        cell = session.cell
        table = self._require_active()
        snapshot = self._store.snapshot_records(table.name)
        record = session.commit()
        if cell is None:
            return record

        key = key_fields(record, table.columns)
        await self._persist(
            table.name,
            snapshot,
            lambda persistence, conn: persistence.update_record(
                conn, table.name, key, {cell.column_name: cell.value}
            ),
        )
        return record

    def _cancel_edit(self, command: CancelEdit) -> EditingCell:
        return self._require_session().cancel()

    def _toggle_selection(self, command: ToggleSelection) -> bool:
        table = self._require_active()
        if command.record_key not in self._selection and command.record_key not in self._keys(table):
            raise RecordNotFoundError(table.name, command.record_key)
        return self._selection.toggle(command.record_key)

    def _toggle_all_on_page(self, command: ToggleAllOnPage) -> frozenset[str]:
        self._require_active()
        self._selection.toggle_all_on_page(self.page_keys())
        return self._selection.keys

    def _set_search_term(self, command: SetSearchTerm) -> Page:
        self._search_term = command.term
        return self.current_page()

    def _set_page(self, command: SetPage) -> Page:
        self._page = command.page
        return self.current_page()

    async def _run_bulk_delete(self, command: RunBulkDelete) -> Any:
        table = self._require_active()
        result = await self._run_bulk(
            lambda report: self._bulk.bulk_delete(
                table.name, self._selection, on_progress=report, connection_id=self._connection_id
            )
        )
        self._cancel_edit_if_missing()
        return result

    async def _run_bulk_update(self, command: RunBulkUpdate) -> Any:
        table = self._require_active()
        return await self._run_bulk(
            lambda report: self._bulk.bulk_update(
                table.name, self._selection, command.patch, on_progress=report, connection_id=self._connection_id
            )
        )

    async def _run_import(self, command: RunImport) -> Any:
        table = self._require_active()
        return await self._run_bulk(
            lambda report: self._bulk.import_records(
                table.name, command.payload, on_progress=report, connection_id=self._connection_id
            )
        )

    async def _run_export(self, command: RunExport) -> Any:
        table = self._require_active()
        return await self._run_bulk(
            lambda report: self._bulk.export_selection(
                table.name, self._selection, on_progress=report, export_date=command.export_date
            )
        )

    async def _refresh_records(self, command: RefreshRecords) -> Table:
        table = self._require_active()
        if self._loader is None or self._connection_id is None:
            raise RuntimeError("TableManager is not connected to a data source")

        refreshed = await self._loader.load_records(self._connection_id, table)
        self._store.upsert(refreshed)
        self._prune_selection()
        self._cancel_edit_if_missing()
        self._logger.info("records_refreshed", table=table.name, row_count=refreshed.row_count)
        return refreshed

    async def _run_bulk(self, operation: Callable[[ProgressCallback], Awaitable[Any]]) -> Any:
        listener = self._progress_listener

        def report(value: int) -> None:
            self._progress = value
            if listener is not None:
                listener(value)

        self._is_processing = True
        try:
            return await operation(report)
        finally:
            self._is_processing = False
            self._progress = 0

    async def _persist(
        self,
        table_name: str,
        snapshot: list[Record],
        call: Callable[[RecordPersistence, str], Awaitable[None]],
    ) -> None:
        """Forward an applied change upstream, restoring ``snapshot`` on failure."""
        if self._persistence is None or self._connection_id is None:
            return
        try:
            await call(self._persistence, self._connection_id)
        except Exception as e:
            self._store.replace_records(table_name, snapshot)
            self._prune_selection()
            self._logger.error("persistence_failed", table=table_name, error=str(e))
            raise PersistenceError(f"Failed to save changes to '{table_name}': {e}") from e

    def _activate(self, table_name: str | None) -> None:
        if self._edit_session is not None and self._edit_session.is_editing:
            self._edit_session.cancel()
        self._active_table_name = table_name
        self._selection.reset(table_name)
        self._edit_session = (
            EditSession(self._store, table_name, self._resolver, logger=self._logger) if table_name else None
        )
        self._logger.debug("table_activated", table=table_name)

    def _target(self, table_name: str | None) -> str:
        if table_name is not None:
            return self._store.get(table_name).name
        return self._require_active().name

    def _require_active(self) -> Table:
        table = self.active_table
        if table is None:
            raise NoActiveTableError()
        return table

    def _require_session(self) -> EditSession:
        self._require_active()
        if self._edit_session is None:
            raise EditSessionStateError("No edit session for the active table")
        return self._edit_session

    def _cancel_edit_on_column(self, table_name: str, column_name: str) -> None:
        cell = self.editing_cell
        if (
            cell is not None
            and self._edit_session is not None
            and table_name == self._active_table_name
            and cell.column_name == column_name
        ):
            self._edit_session.cancel()

    def _cancel_edit_if_missing(self) -> None:
        cell = self.editing_cell
        table = self.active_table
        if cell is None or table is None or self._edit_session is None:
            return
        if cell.record_key not in self._keys(table):
            self._edit_session.cancel()

    def _prune_selection(self) -> None:
        table = self.active_table
        if table is None:
            self._selection.clear()
            return
        removed = self._selection.discard_missing(self._keys(table))
        if removed:
            self._logger.debug("selection_pruned", table=table.name, removed=removed)

    def _keys(self, table: Table) -> set[str]:
        return set(self._resolver.resolve_keys(table.records, table.columns))

    def _key(self, record: Record, table: Table) -> str:
        return self._resolver.resolve_key(record, table.columns)
