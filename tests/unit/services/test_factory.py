"""Unit tests for the factory functions."""

from pathlib import Path

import structlog

from tablemanager.log_config import configure_logging
from tablemanager.models.commands import RunBulkDelete, ToggleSelection
from tablemanager.models.config import EngineConfig
from tablemanager.services.factory import (
    create_sql_table_manager,
    create_table_manager,
    create_test_table_manager,
)
from tablemanager.services.manager import TableManager
from tablemanager.services.source import InMemoryDataSource


def _connections() -> dict:
    return {
        "main": [
            {
                "name": "users",
                "columns": [{"name": "id", "primary_key": True}, {"name": "email"}],
                "records": [{"id": 1, "email": "a@x.io"}, {"id": 2, "email": "b@x.io"}],
            }
        ]
    }


class TestCreateTestTableManager:
    """Tests for create_test_table_manager factory."""

    def test_returns_table_manager(self) -> None:
        manager = create_test_table_manager()

        assert isinstance(manager, TableManager)
        assert manager.active_table is None

    async def test_loads_in_memory_connections(self) -> None:
        manager = create_test_table_manager(_connections())

        tables = await manager.connect("main")

        assert [table.name for table in tables] == ["users"]
        assert manager.active_table.row_count == 2

    async def test_bulk_operations_run_without_delays(self) -> None:
        manager = create_test_table_manager(_connections(), config=EngineConfig(progress_delays=(60.0, 60.0)))
        await manager.connect("main")
        await manager.dispatch(ToggleSelection(record_key="1"))

        result = await manager.dispatch(RunBulkDelete())

        assert result.row_count == 1

    async def test_page_size_comes_from_config(self) -> None:
        manager = create_test_table_manager(_connections(), config=EngineConfig(page_size=1))
        await manager.connect("main")

        assert manager.current_page().total_pages == 2

    async def test_independent_instances(self) -> None:
        first = create_test_table_manager(_connections())
        second = create_test_table_manager(_connections())
        await first.connect("main")
        await second.connect("main")

        await first.dispatch(ToggleSelection(record_key="1"))
        await first.dispatch(RunBulkDelete())

        assert first.active_table.row_count == 1
        assert second.active_table.row_count == 2


class TestCreateTableManager:
    """Tests for create_table_manager factory."""

    async def test_writes_reach_data_source(self) -> None:
        source = InMemoryDataSource(_connections())
        manager = create_table_manager(source, config=EngineConfig(progress_delays=(0.0, 0.0)))
        await manager.connect("main")
        await manager.dispatch(ToggleSelection(record_key="2"))

        await manager.dispatch(RunBulkDelete())

        assert source.records("main", "users") == [{"id": 1, "email": "a@x.io"}]

    def test_sql_factory_accepts_paths(self, tmp_path: Path) -> None:
        manager = create_sql_table_manager({"local": str(tmp_path / "app.db")})

        assert isinstance(manager, TableManager)
        assert manager.connection_id is None


def test_configure_logging_writes_events(capsys) -> None:
    configure_logging(cache_logger_on_first_use=False)
    try:
        structlog.get_logger("tablemanager.test").info("table_created", table="users")
    finally:
        structlog.reset_defaults()

    captured = capsys.readouterr()
    assert "table_created" in captured.err
    assert "users" in captured.err
