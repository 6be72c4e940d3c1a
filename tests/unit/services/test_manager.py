"""Unit tests for the TableManager command dispatcher."""

import asyncio
from datetime import date, datetime, timezone
from typing import Any, Mapping

import pytest

from tablemanager.errors import (
    EditSessionStateError,
    NoActiveTableError,
    PersistenceError,
    RecordNotFoundError,
    TableNotFoundError,
    UniqueConstraintError,
)
from tablemanager.models.column import Column
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
    UpdateDraft,
    UpdateRecord,
)
from tablemanager.models.config import EngineConfig
from tablemanager.models.enums import BulkOperation
from tablemanager.services.bulk import BulkOperationCoordinator
from tablemanager.services.factory import create_table_manager
from tablemanager.services.keys import RecordKeyResolver
from tablemanager.services.lifecycle import TableLifecycleManager
from tablemanager.services.manager import TableManager
from tablemanager.services.search import SearchPaginator
from tablemanager.services.source import InMemoryDataSource
from tablemanager.services.store import TableStore

NO_DELAYS = EngineConfig(progress_delays=(0.0, 0.0))
FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

USER_COLUMNS = [
    {"name": "id", "data_type": "INTEGER", "primary_key": True},
    {"name": "email", "data_type": "TEXT", "unique_key": True},
]


def _users(count: int = 2) -> dict[str, Any]:
    return {
        "name": "users",
        "columns": USER_COLUMNS,
        "records": [{"id": index, "email": f"{chr(96 + index)}@x.io"} for index in range(1, count + 1)],
    }


def _numbers(count: int) -> dict[str, Any]:
    return {
        "name": "numbers",
        "columns": [{"name": "id", "data_type": "INTEGER", "primary_key": True}, {"name": "label"}],
        "records": [{"id": index, "label": f"n{index}"} for index in range(1, count + 1)],
    }


class FailingWritesSource(InMemoryDataSource):
    """In-memory source whose single-record writes fail."""

    async def update_record(
        self, connection_id: str, table_name: str, key: Mapping[str, Any], fields: Mapping[str, Any]
    ) -> None:
        raise RuntimeError("write rejected")

    async def delete_record(self, connection_id: str, table_name: str, key: Mapping[str, Any]) -> None:
        raise RuntimeError("write rejected")


class UnknownCommand(Command):
    pass


def _manager(source: InMemoryDataSource) -> TableManager:
    return create_table_manager(source, config=NO_DELAYS, clock=lambda: FIXED_NOW)


@pytest.fixture
def source() -> InMemoryDataSource:
    return InMemoryDataSource({"main": [_users(), _numbers(23)]})


@pytest.fixture
async def manager(source: InMemoryDataSource) -> TableManager:
    manager = _manager(source)
    await manager.connect("main")
    return manager


class TestConnect:
    """Tests for loading a connection."""

    async def test_connect_activates_first_table(self, manager: TableManager) -> None:
        assert manager.connection_id == "main"
        assert manager.store.names() == ["users", "numbers"]
        assert manager.active_table is not None
        assert manager.active_table.name == "users"

    async def test_connect_without_loader_raises(self) -> None:
        store = TableStore()
        resolver = RecordKeyResolver()
        manager = TableManager(
            store=store,
            resolver=resolver,
            lifecycle=TableLifecycleManager(store, resolver),
            bulk=BulkOperationCoordinator(store, resolver),
            paginator=SearchPaginator(),
        )

        with pytest.raises(RuntimeError):
            await manager.connect("main")

    async def test_disconnect_clears_state(self, manager: TableManager) -> None:
        await manager.disconnect()

        assert manager.active_table is None
        assert len(manager.store) == 0
        assert manager.connection_id is None

    async def test_unknown_command_type(self, manager: TableManager) -> None:
        with pytest.raises(TypeError):
            await manager.dispatch(UnknownCommand())


class TestTableCommands:
    """Tests for selecting, creating, and deleting tables."""

    async def test_select_table_clears_selection_and_edit(self, manager: TableManager) -> None:
        await manager.dispatch(ToggleSelection(record_key="1"))
        await manager.dispatch(StartEdit(record_key="2", column_name="email", current_value="b@x.io"))

        await manager.dispatch(SelectTable(table_name="numbers"))

        assert manager.active_table.name == "numbers"
        assert len(manager.selection) == 0
        assert manager.editing_cell is None

    async def test_select_unknown_table(self, manager: TableManager) -> None:
        with pytest.raises(TableNotFoundError):
            await manager.dispatch(SelectTable(table_name="missing"))

        assert manager.active_table.name == "users"

    async def test_create_table_keeps_active_table(self, manager: TableManager) -> None:
        await manager.dispatch(CreateTable(name="orders", columns=[Column(name="id", primary_key=True)]))

        assert manager.store.names() == ["users", "numbers", "orders"]
        assert manager.active_table.name == "users"

    async def test_delete_active_table_selects_first_remaining(self, manager: TableManager) -> None:
        active = await manager.dispatch(DeleteTable(table_name="users"))

        assert active is not None
        assert active.name == "numbers"

    async def test_delete_only_active_table_leaves_none(self) -> None:
        manager = _manager(InMemoryDataSource({"main": [_users()]}))
        await manager.connect("main")

        active = await manager.dispatch(DeleteTable(table_name="users"))

        assert active is None
        assert manager.active_table is None
        assert len(manager.store) == 0

    async def test_record_command_without_active_table(self) -> None:
        manager = _manager(InMemoryDataSource({"main": []}))
        await manager.connect("main")

        with pytest.raises(NoActiveTableError):
            await manager.dispatch(CreateRecord(fields={"name": "x"}))


class TestColumnCommands:
    """Tests for structural column commands."""

    async def test_add_column_defaults_to_active_table(self, manager: TableManager) -> None:
        await manager.dispatch(AddColumn(column=Column(name="age", type="INTEGER")))

        assert manager.active_table.column_names == ["id", "email", "age"]

    async def test_remove_column_cancels_edit_on_it(self, manager: TableManager) -> None:
        await manager.dispatch(StartEdit(record_key="1", column_name="email", current_value="a@x.io"))

        await manager.dispatch(RemoveColumn(column_name="email"))

        assert manager.editing_cell is None
        assert manager.active_table.column_names == ["id"]


class TestRecordCommands:
    """Tests for single-record commands and their persistence."""

    async def test_create_record_is_persisted(self, manager: TableManager, source: InMemoryDataSource) -> None:
        record = await manager.dispatch(CreateRecord(fields={"email": "c@x.io"}))

        assert record == {"id": 3, "email": "c@x.io", "created_at": FIXED_NOW.isoformat()}
        assert manager.active_table.row_count == 3
        assert source.records("main", "users")[-1]["id"] == 3

    async def test_update_record_is_persisted(self, manager: TableManager, source: InMemoryDataSource) -> None:
        await manager.dispatch(UpdateRecord(record_key="2", fields={"email": "z@x.io"}))

        assert manager.active_table.records[1]["email"] == "z@x.io"
        assert source.records("main", "users")[1]["email"] == "z@x.io"

    async def test_delete_record_prunes_selection_and_edit(self, manager: TableManager) -> None:
        await manager.dispatch(ToggleSelection(record_key="1"))
        await manager.dispatch(ToggleSelection(record_key="2"))
        await manager.dispatch(StartEdit(record_key="1", column_name="email", current_value="a@x.io"))

        deleted = await manager.dispatch(DeleteRecord(record_key="1"))

        assert deleted is True
        assert list(manager.selection) == ["2"]
        assert manager.editing_cell is None
        assert manager.active_table.row_count == 1

    async def test_delete_missing_record(self, manager: TableManager) -> None:
        assert await manager.dispatch(DeleteRecord(record_key="9")) is False

    async def test_persistence_failure_restores_records(self) -> None:
        manager = _manager(FailingWritesSource({"main": [_users()]}))
        await manager.connect("main")

        with pytest.raises(PersistenceError, match="write rejected"):
            await manager.dispatch(UpdateRecord(record_key="2", fields={"email": "z@x.io"}))

        assert manager.active_table.records[1]["email"] == "b@x.io"

    async def test_failed_delete_restores_record(self) -> None:
        manager = _manager(FailingWritesSource({"main": [_users()]}))
        await manager.connect("main")

        with pytest.raises(PersistenceError):
            await manager.dispatch(DeleteRecord(record_key="1"))

        assert manager.active_table.row_count == 2

    async def test_refresh_records_reloads_from_source(
        self, manager: TableManager, source: InMemoryDataSource
    ) -> None:
        await source.create_record("main", "users", {"id": 3, "email": "c@x.io"})

        refreshed = await manager.dispatch(RefreshRecords())

        assert refreshed.row_count == 3
        assert manager.active_table.row_count == 3


class TestEditCommands:
    """Tests for inline editing through the dispatcher."""

    async def test_commit_edit_is_persisted(self, manager: TableManager, source: InMemoryDataSource) -> None:
        await manager.dispatch(StartEdit(record_key="1", column_name="email", current_value="a@x.io"))
        await manager.dispatch(UpdateDraft(value="new@x.io"))

        record = await manager.dispatch(CommitEdit())

        assert record["email"] == "new@x.io"
        assert manager.editing_cell is None
        assert source.records("main", "users")[0]["email"] == "new@x.io"

    async def test_unique_edit_rejected_and_still_editing(self, manager: TableManager) -> None:
        await manager.dispatch(StartEdit(record_key="2", column_name="email", current_value="b@x.io"))
        await manager.dispatch(UpdateDraft(value="a@x.io"))

        with pytest.raises(UniqueConstraintError):
            await manager.dispatch(CommitEdit())

        assert manager.editing_cell is not None
        assert manager.editing_cell.value == "a@x.io"
        assert manager.active_table.records[1]["email"] == "b@x.io"

    async def test_cancel_edit(self, manager: TableManager) -> None:
        await manager.dispatch(StartEdit(record_key="1", column_name="email", current_value="a@x.io"))

        await manager.dispatch(CancelEdit())

        assert manager.editing_cell is None

    async def test_commit_without_edit(self, manager: TableManager) -> None:
        with pytest.raises(EditSessionStateError):
            await manager.dispatch(CommitEdit())


class TestSearchAndSelection:
    """Tests for search, pagination, and selection commands."""

    async def test_twenty_three_records_paginate_into_three_pages(self, manager: TableManager) -> None:
        await manager.dispatch(SelectTable(table_name="numbers"))

        page = await manager.dispatch(SetPage(page=3))

        assert page.total_pages == 3
        assert len(page.records) == 3

    async def test_search_term_filters_current_page(self, manager: TableManager) -> None:
        await manager.dispatch(SelectTable(table_name="numbers"))

        page = await manager.dispatch(SetSearchTerm(term="n2"))

        assert [record["id"] for record in page.records] == [2, 20, 21, 22, 23]

    async def test_page_out_of_range_is_not_clamped(self, manager: TableManager) -> None:
        page = await manager.dispatch(SetPage(page=5))

        assert manager.page == 5
        assert page.records == []

    async def test_toggle_unknown_record(self, manager: TableManager) -> None:
        with pytest.raises(RecordNotFoundError):
            await manager.dispatch(ToggleSelection(record_key="9"))

    async def test_toggle_all_on_page_selects_visible_keys(self, manager: TableManager) -> None:
        await manager.dispatch(SelectTable(table_name="numbers"))
        await manager.dispatch(SetPage(page=3))

        selected = await manager.dispatch(ToggleAllOnPage())

        assert selected == frozenset({"21", "22", "23"})

    async def test_selection_survives_search_change(self, manager: TableManager) -> None:
        await manager.dispatch(ToggleSelection(record_key="1"))

        await manager.dispatch(SetSearchTerm(term="b@"))

        assert "1" in manager.selection
        assert manager.selected_records() == [{"id": 1, "email": "a@x.io"}]


class TestBulkCommands:
    """Tests for bulk commands through the dispatcher."""

    async def test_bulk_delete_reports_progress(self, manager: TableManager, source: InMemoryDataSource) -> None:
        await manager.dispatch(ToggleSelection(record_key="1"))
        progress: list[int] = []

        result = await manager.dispatch(RunBulkDelete(), on_progress=progress.append)

        assert progress == [0, 30, 80, 100]
        assert result.operation == BulkOperation.DELETE
        assert manager.is_processing is False
        assert manager.progress == 0
        assert len(manager.selection) == 0
        assert source.records("main", "users") == [{"id": 2, "email": "b@x.io"}]

    async def test_bulk_update_through_dispatcher(self, manager: TableManager) -> None:
        await manager.dispatch(SelectTable(table_name="numbers"))
        await manager.dispatch(ToggleSelection(record_key="1"))
        await manager.dispatch(ToggleSelection(record_key="2"))

        result = await manager.dispatch(RunBulkUpdate(patch='{"label": "same"}'))

        assert result.affected_count == 2
        assert [record["label"] for record in manager.active_table.records[:3]] == ["same", "same", "n3"]

    async def test_import_two_records_yields_ids_three_and_four(self, manager: TableManager) -> None:
        result = await manager.dispatch(RunImport(payload='[{"email": "c@x.io"}, {"email": "d@x.io"}]'))

        assert [record["id"] for record in manager.active_table.records] == [1, 2, 3, 4]
        assert manager.active_table.row_count == 4
        assert result.row_count == 4

    async def test_export_selected_records(self, manager: TableManager) -> None:
        await manager.dispatch(ToggleSelection(record_key="2"))

        artifact = await manager.dispatch(RunExport(export_date=date(2024, 5, 1)))

        assert artifact.filename == "users_export_2024-05-01.json"
        assert '"b@x.io"' in artifact.content
        assert list(manager.selection) == ["2"]

    async def test_bulk_delete_cancels_edit_on_deleted_record(self, manager: TableManager) -> None:
        await manager.dispatch(StartEdit(record_key="1", column_name="email", current_value="a@x.io"))
        await manager.dispatch(ToggleSelection(record_key="1"))

        await manager.dispatch(RunBulkDelete())

        assert manager.editing_cell is None

    async def test_reselecting_table_cancels_edit(self, manager: TableManager) -> None:
        await manager.dispatch(StartEdit(record_key="1", column_name="email", current_value="a@x.io"))

        await manager.dispatch(SelectTable(table_name="users"))

        assert manager.editing_cell is None


class TestConcurrentCommands:
    """Tests for commands dispatched while a bulk operation is still running."""

    @pytest.fixture
    async def slow_manager(self, source: InMemoryDataSource) -> TableManager:
        manager = create_table_manager(source, config=EngineConfig(progress_delays=(0.01, 0.01)))
        await manager.connect("main")
        return manager

    async def test_overlapping_imports_get_distinct_ids(
        self, slow_manager: TableManager, source: InMemoryDataSource
    ) -> None:
        first, second = await asyncio.gather(
            slow_manager.dispatch(RunImport(payload='[{"email": "c@x.io"}]')),
            slow_manager.dispatch(RunImport(payload='[{"email": "d@x.io"}]')),
        )

        assert [record["id"] for record in slow_manager.active_table.records] == [1, 2, 3, 4]
        assert slow_manager.active_table.row_count == 4
        assert (first.row_count, second.row_count) == (3, 4)
        assert [record["id"] for record in source.records("main", "users")] == [1, 2, 3, 4]

    async def test_commit_during_bulk_update_sees_new_unique_value(self, slow_manager: TableManager) -> None:
        await slow_manager.dispatch(ToggleSelection(record_key="1"))

        async def edit_second_record() -> Any:
            await slow_manager.dispatch(StartEdit(record_key="2", column_name="email", current_value="b@x.io"))
            await slow_manager.dispatch(UpdateDraft(value="z@x.io"))
            return await slow_manager.dispatch(CommitEdit())

        bulk_result, edit_result = await asyncio.gather(
            slow_manager.dispatch(RunBulkUpdate(patch='{"email": "z@x.io"}')),
            edit_second_record(),
            return_exceptions=True,
        )

        assert bulk_result.affected_count == 1
        assert isinstance(edit_result, UniqueConstraintError)
        emails = [record["email"] for record in slow_manager.active_table.records]
        assert emails == ["z@x.io", "b@x.io"]

    async def test_refresh_waits_for_bulk_delete(
        self, slow_manager: TableManager, source: InMemoryDataSource
    ) -> None:
        await source.create_record("main", "users", {"id": 3, "email": "c@x.io"})
        await slow_manager.dispatch(ToggleSelection(record_key="1"))

        deleted = asyncio.create_task(slow_manager.dispatch(RunBulkDelete()))
        await asyncio.sleep(0)
        refreshed = await slow_manager.dispatch(RefreshRecords())
        result = await deleted

        assert result.affected_count == 1
        assert [record["id"] for record in refreshed.records] == [2, 3]
        assert [record["id"] for record in slow_manager.active_table.records] == [2, 3]
        assert len(slow_manager.selection) == 0
