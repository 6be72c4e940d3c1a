"""Bulk delete, update, import, and export over a selection.

Every operation follows the same order: validate the input and the table
completely, report progress while the remote step runs, then apply the
change to the store in one synchronous step and report completion. Because
the store is only touched after the last await, cancelling the task that
runs an operation, or a failure in the persistence collaborator, leaves the
working set exactly as it was.
"""

import asyncio
import json
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Collection, Mapping

import structlog

from tablemanager.errors import (
    ImmutableColumnError,
    MalformedImportError,
    MalformedPatchError,
    NoPrimaryKeyError,
    PersistenceError,
    UniqueConstraintError,
)
from tablemanager.models.base import is_scalar
from tablemanager.models.config import EngineConfig
from tablemanager.models.enums import BulkOperation
from tablemanager.models.results import BulkOperationResult, ExportArtifact
from tablemanager.models.table import Record, Table
from tablemanager.services.constraints import ensure_unique_across, ensure_unique_value
from tablemanager.services.keys import RecordKeyResolver, key_fields
from tablemanager.services.selection import SelectionSet
from tablemanager.services.source import RecordPersistence
from tablemanager.services.store import TableStore, next_record_id

ProgressCallback = Callable[[int], None]

PROGRESS_STARTED = 0
PROGRESS_VALIDATED = 30
PROGRESS_PREPARED = 80
PROGRESS_DONE = 100


class BulkOperationCoordinator:
    """Runs bulk mutations and transfers against the table store.

    Progress is reported as 0, 30, 80 and 100 through an optional callback.
    When a persistence collaborator and connection id are given, the remote
    call replaces the first simulated delay; otherwise the configured delays
    stand in for it.
    """

    def __init__(
        self,
        store: TableStore,
        resolver: RecordKeyResolver,
        config: EngineConfig | None = None,
        persistence: RecordPersistence | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._config = config or EngineConfig()
        self._persistence = persistence
        self._logger = logger or structlog.get_logger(__name__)

    async def bulk_delete(
        self,
        table_name: str,
        selection: SelectionSet,
        on_progress: ProgressCallback | None = None,
        connection_id: str | None = None,
    ) -> BulkOperationResult:
        """Delete every selected record.

        Args:
            table_name: Table to delete from.
            selection: Selected record keys. Cleared on success.
            on_progress: Receives progress percentages.
            connection_id: Connection passed to the persistence collaborator.

        Returns:
            Result with the number of records removed.

        Raises:
            NoPrimaryKeyError: If the table has no primary key.
            PersistenceError: If the persistence collaborator fails.
        """
        report = _reporter(on_progress)
        report(PROGRESS_STARTED)
        table = self._store.get(table_name)
        self._require_primary_key(table)

        selected = selection.keys
        doomed = [record for record in table.records if self._key(record, table) in selected]
        report(PROGRESS_VALIDATED)

        await self._remote_step(
            BulkOperation.DELETE,
            table_name,
            connection_id,
            lambda persistence, conn: persistence.bulk_delete(
                conn, table_name, [key_fields(record, table.columns) for record in doomed]
            ),
        )
        report(PROGRESS_PREPARED)
        await self._pause(1)

        table = self._store.get(table_name)
        remaining = [record for record in table.records if self._key(record, table) not in selected]
        affected = len(table.records) - len(remaining)
        self._store.replace_records(table_name, remaining)
        selection.clear()
        report(PROGRESS_DONE)
        return self._finish(BulkOperation.DELETE, table, affected)

    async def bulk_update(
        self,
        table_name: str,
        selection: SelectionSet,
        patch: str | Mapping[str, Any],
        on_progress: ProgressCallback | None = None,
        connection_id: str | None = None,
    ) -> BulkOperationResult:
        """Merge a flat patch into every selected record.

        Args:
            table_name: Table to update.
            selection: Selected record keys. Cleared on success.
            patch: JSON object text or a mapping of column to scalar value.
            on_progress: Receives progress percentages.
            connection_id: Connection passed to the persistence collaborator.

        Returns:
            Result with the number of records updated.

        Raises:
            NoPrimaryKeyError: If the table has no primary key.
            MalformedPatchError: If the patch is not a flat object.
            ImmutableColumnError: If the patch sets a primary key column.
            UniqueConstraintError: If the patch would duplicate a unique value.
            PersistenceError: If the persistence collaborator fails.
        """
        report = _reporter(on_progress)
        report(PROGRESS_STARTED)
        table = self._store.get(table_name)
        self._require_primary_key(table)
        updates = parse_patch(patch)

        for column in table.primary_key_columns:
            if column.name in updates:
                raise ImmutableColumnError(column.name)

        selected = selection.keys
        targets = [record for record in table.records if self._key(record, table) in selected]
        self._check_patch_uniqueness(table, updates, targets, selected)
        report(PROGRESS_VALIDATED)

        await self._remote_step(
            BulkOperation.UPDATE,
            table_name,
            connection_id,
            lambda persistence, conn: persistence.bulk_update(
                conn, table_name, [key_fields(record, table.columns) for record in targets], updates
            ),
        )
        report(PROGRESS_PREPARED)
        await self._pause(1)

        table = self._store.get(table_name)
        updated = [
            {**record, **updates} if self._key(record, table) in selected else record for record in table.records
        ]
        self._store.replace_records(table_name, updated)
        selection.clear()
        report(PROGRESS_DONE)
        return self._finish(BulkOperation.UPDATE, table, len(targets))

    async def import_records(
        self,
        table_name: str,
        payload: str | list[Any],
        on_progress: ProgressCallback | None = None,
        connection_id: str | None = None,
    ) -> BulkOperationResult:
        """Append a list of record objects with synthesized ids.

        Each item receives id ``max(existing numeric ids) + 1 + position``,
        replacing any id it carried. Unique columns are only checked when
        ``EngineConfig.enforce_unique_on_import`` is set.

        Raises:
            MalformedImportError: If the payload is not a list of objects.
            UniqueConstraintError: If enforcing uniqueness and an imported
                value collides.
            PersistenceError: If the persistence collaborator fails.
        """
        report = _reporter(on_progress)
        report(PROGRESS_STARTED)
        table = self._store.get(table_name)
        items = parse_import(payload)

        id_field = self._config.id_field
        base_id = next_record_id(table.records, id_field)
        new_records = [{**item, id_field: base_id + position} for position, item in enumerate(items)]
        if self._config.enforce_unique_on_import:
            ensure_unique_across(table, [*table.records, *new_records])
        report(PROGRESS_VALIDATED)

        async def persist(persistence: RecordPersistence, conn: str) -> None:
            for record in new_records:
                await persistence.create_record(conn, table_name, record)

        await self._remote_step(BulkOperation.IMPORT, table_name, connection_id, persist)
        report(PROGRESS_PREPARED)
        await self._pause(1)

        table = self._store.get(table_name)
        self._store.replace_records(table_name, [*table.records, *new_records])
        report(PROGRESS_DONE)
        return self._finish(BulkOperation.IMPORT, table, len(new_records))

    async def export_selection(
        self,
        table_name: str,
        selection: SelectionSet,
        on_progress: ProgressCallback | None = None,
        export_date: date | None = None,
    ) -> ExportArtifact:
        """Serialize the selected records to a JSON download.

        Records appear in table order. The store is never modified.

        Returns:
            Artifact named ``<table>_export_<YYYY-MM-DD>.json``, dated in UTC
            unless ``export_date`` is given.
        """
        report = _reporter(on_progress)
        report(PROGRESS_STARTED)
        table = self._store.get(table_name)
        selected = selection.keys
        records = [record for record in table.records if self._key(record, table) in selected]
        report(PROGRESS_VALIDATED)

        content = json.dumps(records, indent=2, ensure_ascii=False, default=str)
        report(PROGRESS_PREPARED)

        day = export_date or datetime.now(timezone.utc).date()
        artifact = ExportArtifact(filename=f"{table_name}_export_{day.isoformat()}.json", content=content)
        report(PROGRESS_DONE)
        self._logger.info(
            "bulk_export_completed",
            table=table_name,
            record_count=len(records),
            filename=artifact.filename,
        )
        return artifact

    def _require_primary_key(self, table: Table) -> None:
        if not table.has_primary_key:
            self._logger.info("bulk_refused_no_primary_key", table=table.name)
            raise NoPrimaryKeyError(table.name)

    def _check_patch_uniqueness(
        self,
        table: Table,
        updates: Mapping[str, Any],
        targets: list[Record],
        selected: Collection[str],
    ) -> None:
        for column_name, value in updates.items():
            column = table.column(column_name)
            if column is None or not column.unique or value is None or not targets:
                continue
            if len(targets) > 1:
                raise UniqueConstraintError(column_name, value)
            ensure_unique_value(table, column_name, value, self._resolver, exclude_keys=selected)

    async def _remote_step(
        self,
        operation: BulkOperation,
        table_name: str,
        connection_id: str | None,
        call: Callable[[RecordPersistence, str], Awaitable[None]],
    ) -> None:
        if self._persistence is None or connection_id is None:
            await self._pause(0)
            return
        try:
            await call(self._persistence, connection_id)
        except PersistenceError:
            raise
        except Exception as e:
            self._logger.error(
                "bulk_persistence_failed",
                operation=operation.value,
                table=table_name,
                error=str(e),
            )
            raise PersistenceError(f"Failed to {operation.value} records in '{table_name}': {e}") from e

    async def _pause(self, step: int) -> None:
        delay = self._config.progress_delays[step]
        if delay > 0:
            await asyncio.sleep(delay)

    def _key(self, record: Record, table: Table) -> str:
        return self._resolver.resolve_key(record, table.columns)

    def _finish(self, operation: BulkOperation, table: Table, affected: int) -> BulkOperationResult:
        self._logger.info(
            f"bulk_{operation.value}_completed",
            table=table.name,
            affected_count=affected,
            row_count=table.row_count,
        )
        return BulkOperationResult(
            operation=operation,
            table_name=table.name,
            affected_count=affected,
            row_count=table.row_count,
        )


def parse_patch(patch: str | bytes | Mapping[str, Any]) -> dict[str, Any]:
    """Parse bulk update input into a flat column to value mapping.

    Raises:
        MalformedPatchError: If the input is not valid JSON, not an object,
            or holds nested values.
    """
    data: Any = patch
    if isinstance(patch, (str, bytes)):
        try:
            data = json.loads(patch)
        except json.JSONDecodeError as e:
            raise MalformedPatchError(f"Invalid JSON for update data: {e.msg}") from e
        except UnicodeDecodeError as e:
            raise MalformedPatchError(f"Update data is not valid UTF-8: {e.reason}") from e
    if not isinstance(data, Mapping):
        raise MalformedPatchError("Update data must be a JSON object of field values")
    for name, value in data.items():
        if not isinstance(name, str) or not name:
            raise MalformedPatchError("Update data field names must be non-empty strings")
        if not is_scalar(value):
            raise MalformedPatchError(f"Update data field '{name}' must be a scalar value")
    return dict(data)


def parse_import(payload: str | bytes | list[Any]) -> list[Record]:
    """Parse import input into a list of record objects.

    Raises:
        MalformedImportError: If the input is not valid JSON, not a list, or
            holds non-object items.
    """
    data: Any = payload
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedImportError(f"Invalid JSON for import data: {e.msg}") from e
        except UnicodeDecodeError as e:
            raise MalformedImportError(f"Import data is not valid UTF-8: {e.reason}") from e
    if not isinstance(data, list):
        raise MalformedImportError("Import data must be a JSON array of records")
    for position, item in enumerate(data):
        if not isinstance(item, Mapping):
            raise MalformedImportError(f"Import item {position} is not an object")
    return [dict(item) for item in data]


def _reporter(on_progress: ProgressCallback | None) -> ProgressCallback:
    if on_progress is None:
        return lambda value: None
    return on_progress
