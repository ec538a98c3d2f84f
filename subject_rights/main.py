"""Runtime entrypoint.

Startup order:
1. Load settings (from environment)
2. Configure structured logging
3. Initialize database engine and session factory
4. Open the warehouse connector
5. Start background workers
6. Re-enqueue requests whose scheduled run was lost, then sweep periodically

Shutdown order:
1. Stop the reconciliation sweep
2. Drain and stop background workers
3. Close the warehouse connector
4. Close DB connection pools
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from subject_rights.config import Settings, get_settings
from subject_rights.connectors.catalog import CatalogReader, SqlCatalogReader
from subject_rights.connectors.warehouse import (
    ConnectorConfig,
    HttpWarehouseConnector,
    RetryConfig,
    WarehouseConnector,
)
from subject_rights.core.audit import AuditTrail
from subject_rights.database import (
    build_engine,
    close_db,
    get_session_factory,
    init_db,
    make_session_factory,
)
from subject_rights.discovery.locator import DataLocator
from subject_rights.infra.background_worker import BackgroundWorkerPool, Task, TaskType
from subject_rights.infra.reconciler import RequestReconciler
from subject_rights.models.dsar_request import RequestKind, RequestStatus
from subject_rights.planning.planner import DeletionPlan, DeletionPlanner
from subject_rights.services.deletion import DeletionService
from subject_rights.services.export import ExportService
from subject_rights.services.orchestrator import DSARRequest, RequestStatusReport
from subject_rights.store import DEFAULT_LIST_LIMIT, RequestStore
from subject_rights.telemetry.logging import configure_logging

log = structlog.get_logger(__name__)


def build_warehouse(settings: Settings) -> HttpWarehouseConnector:
    return HttpWarehouseConnector(
        ConnectorConfig(
            name="warehouse",
            endpoint=settings.warehouse_endpoint,
            api_key=settings.warehouse_api_key.get_secret_value(),
            timeout_seconds=settings.warehouse_timeout_seconds,
            retry_config=RetryConfig(max_attempts=settings.warehouse_max_attempts),
        )
    )


class SubjectRightsRuntime:
    """Wires store, connectors, workers and services together.

    Usage:
        runtime = SubjectRightsRuntime(settings, session_factory=factory)
        await runtime.start()
        request = await runtime.create_export_request("email", "a@b.com", "dpo")
        await runtime.stop()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: CatalogReader | None = None,
        warehouse: WarehouseConnector | None = None,
    ) -> None:
        self.settings = settings
        self.store = RequestStore(session_factory)
        self.audit = AuditTrail(session_factory)
        self.catalog = catalog or SqlCatalogReader(session_factory)
        self.warehouse = warehouse or build_warehouse(settings)

        self.pool = BackgroundWorkerPool(
            max_workers=settings.background_worker_concurrency,
            max_retries=settings.background_worker_max_retries,
        )
        self.locator = DataLocator(
            self.catalog,
            self.warehouse,
            relevance_threshold=settings.relevance_threshold,
        )
        self.planner = DeletionPlanner(
            self.locator,
            self.catalog,
            approval_row_threshold=settings.approval_row_threshold,
        )
        self.exports = ExportService(
            self.store,
            self.audit,
            self.pool,
            self.locator,
            self.warehouse,
            export_dir=settings.export_dir,
        )
        self.deletions = DeletionService(
            self.store,
            self.audit,
            self.pool,
            self.planner,
            self.warehouse,
        )
        self.reconciler = RequestReconciler(
            self.store,
            self.pool,
            interval_seconds=settings.reconcile_interval_seconds,
        )
        self.pool.register_handler(TaskType.PROCESS_REQUEST, self._dispatch)

    async def _dispatch(self, task: Task) -> None:
        kind = RequestKind(task.payload["kind"])
        service = self.exports if kind == RequestKind.EXPORT else self.deletions
        await service.handle_task(task)

    async def start(self) -> None:
        if isinstance(self.warehouse, HttpWarehouseConnector):
            self.warehouse.open()
        await self.pool.start()
        requeued = await self.reconciler.sweep()
        self.reconciler.start()
        log.info("runtime.started", requeued=requeued)

    async def stop(self) -> None:
        await self.reconciler.stop()
        await self.pool.shutdown(drain=True)
        dead = self.pool.get_dead_letter_queue()
        if dead:
            log.warning(
                "runtime.dead_lettered_requests",
                count=len(dead),
                request_ids=[t.payload.get("request_id") for t in dead],
            )
        if isinstance(self.warehouse, HttpWarehouseConnector):
            await self.warehouse.aclose()
        log.info("runtime.stopped")

    # ------------------------------------------------------------------ #
    # Exposed operations
    # ------------------------------------------------------------------ #

    async def create_export_request(
        self,
        subject_type: str,
        subject_value: str,
        requested_by: str,
        *,
        options: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> DSARRequest:
        return await self.exports.create_export_request(
            subject_type, subject_value, requested_by, options=options, reason=reason
        )

    async def get_export_status(self, request_id: int) -> RequestStatusReport:
        return await self.exports.get_export_status(request_id)

    async def cancel_export_request(
        self, request_id: int, cancelled_by: str | None = None
    ) -> DSARRequest:
        return await self.exports.cancel_export_request(request_id, cancelled_by)

    async def create_deletion_request(
        self,
        subject_type: str,
        subject_value: str,
        requested_by: str,
        *,
        options: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> DSARRequest:
        return await self.deletions.create_deletion_request(
            subject_type, subject_value, requested_by, options=options, reason=reason
        )

    async def generate_deletion_plan(self, subject_type: str, subject_value: str) -> DeletionPlan:
        return await self.deletions.generate_deletion_plan(subject_type, subject_value)

    async def approve_deletion_request(self, request_id: int, approver: str) -> DSARRequest:
        return await self.deletions.approve_deletion_request(request_id, approver)

    async def reject_deletion_request(
        self, request_id: int, approver: str, reason: str
    ) -> DSARRequest:
        return await self.deletions.reject_deletion_request(request_id, approver, reason)

    async def get_deletion_status(self, request_id: int) -> RequestStatusReport:
        return await self.deletions.get_deletion_status(request_id)

    async def cancel_request(
        self, request_id: int, cancelled_by: str | None = None
    ) -> DSARRequest:
        return await self.deletions.cancel_request(request_id, cancelled_by)

    async def list_requests(
        self,
        *,
        kind: RequestKind | None = None,
        status: RequestStatus | None = None,
        subject_type: str | None = None,
        requested_by: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[DSARRequest]:
        return await self.deletions.list_requests(
            kind=kind,
            status=status,
            subject_type=subject_type,
            requested_by=requested_by,
            limit=limit,
        )


@asynccontextmanager
async def run_runtime(settings: Settings | None = None) -> AsyncGenerator[SubjectRightsRuntime, None]:
    """Runtime lifespan: startup and shutdown."""
    settings = settings or get_settings()

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.is_prod,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )

    log.info(
        "runtime.starting",
        environment=settings.environment,
        db_url=settings.database_url.split("@")[-1],
    )

    init_db(settings)
    session_factory = get_session_factory()

    catalog_engine: AsyncEngine | None = None
    catalog_factory = session_factory
    if settings.catalog_database_url:
        catalog_engine = build_engine(settings.catalog_database_url, echo=settings.db_echo_sql)
        catalog_factory = make_session_factory(catalog_engine)

    runtime = SubjectRightsRuntime(
        settings,
        session_factory=session_factory,
        catalog=SqlCatalogReader(catalog_factory),
    )
    await runtime.start()
    log.info("runtime.ready")
    try:
        yield runtime
    finally:
        await runtime.stop()
        if catalog_engine is not None:
            await catalog_engine.dispose()
        await close_db()
        log.info("runtime.shutdown")


async def _serve() -> None:
    async with run_runtime():
        await asyncio.Event().wait()


def main() -> None:
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
