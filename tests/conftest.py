"""
Shared test fixtures for pytest.

Provides common fakes and real (in-memory) persistence for all test modules:
- fake_settings: Test environment configuration
- engine / session_factory: sqlite+aiosqlite in-memory database with all tables
- store, audit: RequestStore and AuditTrail over that database
- catalog: FakeCatalog, an in-memory CatalogReader
- warehouse: FakeWarehouse, an in-memory WarehouseConnector that records calls
- pool: started BackgroundWorkerPool
- export_service, deletion_service: services wired to the fakes above
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

import subject_rights.models  # noqa: F401 - registers all models with Base.metadata
from subject_rights.config import Environment, Settings, get_settings
from subject_rights.connectors.catalog import CatalogColumn, CatalogReader, CatalogTable
from subject_rights.connectors.warehouse import ConnectorStatus, WarehouseConnector
from subject_rights.core.audit import AuditTrail
from subject_rights.database import Base, build_engine, make_session_factory
from subject_rights.discovery.locator import DataLocator
from subject_rights.errors import CatalogError, WarehouseError
from subject_rights.infra.background_worker import BackgroundWorkerPool, Task, TaskType
from subject_rights.models.dsar_request import RequestKind
from subject_rights.planning.planner import DeletionPlanner
from subject_rights.services.deletion import DeletionService
from subject_rights.services.export import ExportService
from subject_rights.store import RequestStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ------------------------------------------------------------------ #
# Settings
# ------------------------------------------------------------------ #

@pytest.fixture
def fake_settings(tmp_path: Path) -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        database_url=TEST_DATABASE_URL,
        warehouse_endpoint="http://warehouse.test",
        debug=True,
        db_echo_sql=False,
        background_worker_concurrency=2,
        background_worker_max_retries=1,
        export_dir=str(tmp_path / "exports"),
    )


# ------------------------------------------------------------------ #
# Database Fixtures
# ------------------------------------------------------------------ #

@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with every ORM table created."""
    db_engine = build_engine(TEST_DATABASE_URL, for_test=True)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> RequestStore:
    return RequestStore(session_factory)


@pytest.fixture
def audit(session_factory: async_sessionmaker[AsyncSession]) -> AuditTrail:
    return AuditTrail(session_factory)


# ------------------------------------------------------------------ #
# Connector Fakes
# ------------------------------------------------------------------ #

class FakeCatalog(CatalogReader):
    """In-memory catalog. Tables are returned in insertion order."""

    def __init__(self) -> None:
        self.tables: list[tuple[CatalogTable, str]] = []
        self.columns: dict[CatalogTable, list[CatalogColumn]] = {}
        self.foreign_keys: dict[CatalogTable, list[str]] = {}
        self.failing_columns: set[str] = set()
        self.failing_foreign_keys: set[str] = set()
        self.fail_list_tables = False

    def add_table(
        self,
        name: str,
        columns: list[tuple[str, str]],
        *,
        references: list[str] | None = None,
        table_type: str = "BASE TABLE",
    ) -> CatalogTable:
        """Register "db.schema.table" with its columns and referenced tables."""
        database_name, schema_name, table_name = name.split(".")
        table = CatalogTable(database_name, schema_name, table_name)
        self.tables.append((table, table_type))
        self.columns[table] = [CatalogColumn(c, t) for c, t in columns]
        self.foreign_keys[table] = list(references or [])
        return table

    async def list_tables(self, *, base_tables_only: bool = False) -> list[CatalogTable]:
        if self.fail_list_tables:
            raise CatalogError("catalog unavailable")
        return [
            table
            for table, table_type in self.tables
            if not base_tables_only or table_type == "BASE TABLE"
        ]

    async def list_columns(self, table: CatalogTable) -> list[CatalogColumn]:
        if table.qualified_name in self.failing_columns:
            raise CatalogError(f"columns unavailable for {table.qualified_name}")
        return list(self.columns.get(table, []))

    async def list_foreign_keys(self, table: CatalogTable) -> list[str]:
        if table.qualified_name in self.failing_foreign_keys:
            raise CatalogError(f"foreign keys unavailable for {table.qualified_name}")
        return list(self.foreign_keys.get(table, []))


class FakeWarehouse(WarehouseConnector):
    """In-memory warehouse keyed by qualified table name.

    Every call is appended to ``calls`` as (operation, qualified_name, kwargs).
    """

    def __init__(self) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.counts: dict[str, int] = {}
        self.failing: dict[str, set[str]] = {"count": set(), "extract": set(), "delete": set()}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def set_rows(self, name: str, rows: list[dict[str, Any]]) -> None:
        self.rows[name] = list(rows)

    def set_count(self, name: str, count: int) -> None:
        self.counts[name] = count

    def fail(self, operation: str, name: str) -> None:
        self.failing[operation].add(name)

    def _count(self, name: str) -> int:
        if name in self.counts:
            return self.counts[name]
        return len(self.rows.get(name, []))

    async def count_rows(self, table, columns, subject_type, subject_value) -> int:
        self.calls.append(("count", table.qualified_name, {"columns": list(columns)}))
        if table.qualified_name in self.failing["count"]:
            raise WarehouseError(f"count failed for {table.qualified_name}")
        return self._count(table.qualified_name)

    async def extract_rows(self, table, columns, subject_type, subject_value):
        self.calls.append(("extract", table.qualified_name, {"columns": list(columns)}))
        if table.qualified_name in self.failing["extract"]:
            raise WarehouseError(f"extract failed for {table.qualified_name}")
        return list(self.rows.get(table.qualified_name, []))

    async def delete_rows(
        self,
        table,
        columns,
        subject_type,
        subject_value,
        *,
        soft_delete: bool = True,
        cascade: bool = False,
        backup: bool = True,
    ) -> int:
        self.calls.append(
            (
                "delete",
                table.qualified_name,
                {
                    "columns": list(columns),
                    "soft_delete": soft_delete,
                    "cascade": cascade,
                    "backup": backup,
                },
            )
        )
        if table.qualified_name in self.failing["delete"]:
            raise WarehouseError(f"delete failed for {table.qualified_name}")
        return self._count(table.qualified_name)

    async def health_check(self) -> ConnectorStatus:
        return ConnectorStatus.HEALTHY

    def tables_called(self, operation: str) -> list[str]:
        return [name for op, name, _ in self.calls if op == operation]


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


# ------------------------------------------------------------------ #
# Background Processing & Services
# ------------------------------------------------------------------ #

@pytest_asyncio.fixture
async def pool() -> AsyncGenerator[BackgroundWorkerPool, None]:
    """Started worker pool; handlers are registered by the service fixtures."""
    # One worker: every session shares the single in-memory SQLite connection
    worker_pool = BackgroundWorkerPool(max_workers=1, max_retries=1)
    await worker_pool.start()
    yield worker_pool
    await worker_pool.shutdown(drain=False)


@pytest.fixture
def locator(catalog: FakeCatalog, warehouse: FakeWarehouse) -> DataLocator:
    return DataLocator(catalog, warehouse, relevance_threshold=0.3)


@pytest.fixture
def planner(locator: DataLocator, catalog: FakeCatalog) -> DeletionPlanner:
    return DeletionPlanner(locator, catalog, approval_row_threshold=10_000)


@pytest.fixture
def export_service(
    store: RequestStore,
    audit: AuditTrail,
    pool: BackgroundWorkerPool,
    locator: DataLocator,
    warehouse: FakeWarehouse,
    fake_settings: Settings,
) -> ExportService:
    service = ExportService(
        store,
        audit,
        pool,
        locator,
        warehouse,
        export_dir=fake_settings.export_dir,
    )
    pool.register_handler(TaskType.PROCESS_REQUEST, service.handle_task)
    return service


@pytest.fixture
def deletion_service(
    store: RequestStore,
    audit: AuditTrail,
    pool: BackgroundWorkerPool,
    planner: DeletionPlanner,
    warehouse: FakeWarehouse,
    export_service: ExportService,
) -> DeletionService:
    service = DeletionService(store, audit, pool, planner, warehouse)

    async def dispatch(task: Task) -> None:
        if task.payload["kind"] == RequestKind.EXPORT.value:
            await export_service.handle_task(task)
        else:
            await service.handle_task(task)

    pool.register_handler(TaskType.PROCESS_REQUEST, dispatch)
    return service
