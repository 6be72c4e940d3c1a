"""Factory functions for creating and wiring the table manager.

Provides production factories that connect the engine to a real data source
and test factories that use an in-memory source with no progress delays for
fast, isolated testing.
"""

from typing import Any, Mapping, Sequence

import structlog

from tablemanager.models.config import EngineConfig
from tablemanager.services.bulk import BulkOperationCoordinator
from tablemanager.services.keys import RecordKeyResolver
from tablemanager.services.lifecycle import Clock, TableLifecycleManager, utc_now
from tablemanager.services.manager import TableManager
from tablemanager.services.search import SearchPaginator
from tablemanager.services.source import DataSource, InMemoryDataSource, RecordPersistence, TableLoader
from tablemanager.services.sql_source import SqlAlchemyDataSource, create_async_engine_from_path
from tablemanager.services.store import TableStore

_TEST_PROGRESS_DELAYS = (0.0, 0.0)


def create_table_manager(
    data_source: DataSource,
    persistence: RecordPersistence | None = None,
    config: EngineConfig | None = None,
    clock: Clock = utc_now,
) -> TableManager:
    """Create a TableManager reading from ``data_source``.

    Args:
        data_source: Lists tables and records for a connection.
        persistence: Receives record writes. Defaults to ``data_source`` when
            it also implements RecordPersistence.
        config: Engine tunables. Defaults to EngineConfig().
        clock: Source of creation timestamps for new records.

    Returns:
        Configured TableManager. Call ``connect`` before dispatching.
    """
    logger = structlog.get_logger(__name__)
    config = config or EngineConfig()
    if persistence is None and isinstance(data_source, RecordPersistence):
        persistence = data_source

    store = TableStore(logger=logger)
    resolver = RecordKeyResolver(separator=config.key_separator)

    lifecycle = TableLifecycleManager(
        store=store,
        resolver=resolver,
        config=config,
        clock=clock,
        logger=logger,
    )

    bulk = BulkOperationCoordinator(
        store=store,
        resolver=resolver,
        config=config,
        persistence=persistence,
        logger=logger,
    )

    return TableManager(
        store=store,
        resolver=resolver,
        lifecycle=lifecycle,
        bulk=bulk,
        paginator=SearchPaginator(page_size=config.page_size),
        loader=TableLoader(data_source=data_source, logger=logger),
        persistence=persistence,
        logger=logger,
    )


def create_sql_table_manager(
    db_paths: Mapping[str, str],
    config: EngineConfig | None = None,
) -> TableManager:
    """Create a TableManager over SQLite database files.

    Args:
        db_paths: Connection id to SQLite file path, or ":memory:".
        config: Engine tunables.

    Returns:
        TableManager whose reads and writes go through SQLAlchemy.
    """
    logger = structlog.get_logger(__name__)
    engines = {connection_id: create_async_engine_from_path(path) for connection_id, path in db_paths.items()}
    data_source = SqlAlchemyDataSource(engines=engines, logger=logger)
    return create_table_manager(data_source, config=config)


def create_test_table_manager(
    connections: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
    config: EngineConfig | None = None,
    clock: Clock = utc_now,
) -> TableManager:
    """Create a TableManager over an InMemoryDataSource for testing.

    Bulk progress delays are forced to zero. Each call creates independent
    storage, so tests don't interfere.

    Args:
        connections: Connection id to table payloads, each shaped like a
            remote listing plus a ``records`` list.
        config: Engine tunables; its delays are overridden.
        clock: Source of creation timestamps for new records.

    Returns:
        Configured TableManager with in-memory storage.
    """
    effective_config = (config or EngineConfig()).model_copy(update={"progress_delays": _TEST_PROGRESS_DELAYS})
    return create_table_manager(InMemoryDataSource(connections), config=effective_config, clock=clock)
