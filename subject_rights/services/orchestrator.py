"""Request lifecycle orchestration shared by export and deletion.

Lifecycle:
    pending → processing → completed | failed
    pending → cancelled
    pending → failed                      (deletion rejected)

A request is processed by a background worker, never inline. Scheduling
writes scheduled_at first and then enqueues the id, so a lost queue entry
can be recovered by the reconciler. Processing starts with a
compare-and-set claim (pending → processing); a worker that loses the claim
does nothing.

Once claimed, the request's per-table items are created and run one at a
time in sequence order. An item failure is captured on the item and never
stops its siblings; the request still completes. Only an orchestration
failure (building items, writing the result) fails the request.

Subclasses fill in the kind-specific hooks below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar

import structlog

from subject_rights.connectors.catalog import CatalogTable
from subject_rights.core.audit import AuditEventType, AuditTrail
from subject_rights.errors import (
    InvalidRequestStateError,
    RequestNotFoundError,
    RequestValidationError,
)
from subject_rights.infra.background_worker import BackgroundWorkerPool, Task, TaskType
from subject_rights.models.dsar_request import (
    DSARRequestItemRecord,
    DSARRequestRecord,
    RequestKind,
    RequestStatus,
)
from subject_rights.store import DEFAULT_LIST_LIMIT, RequestStore
from subject_rights.telemetry.logging import bind_request_context

log = structlog.get_logger(__name__)


@dataclass
class DSARRequest:
    """A data subject request as returned to callers."""

    id: int
    kind: RequestKind
    subject_type: str
    subject_value: str
    status: RequestStatus
    requested_by: str
    assigned_to: str | None
    reason: str | None
    metadata: dict[str, Any]
    requested_at: datetime
    completed_at: datetime | None
    updated_at: datetime


@dataclass
class DSARRequestItem:
    """One table-scoped unit of work of a request."""

    id: int
    request_id: int
    database_name: str
    schema_name: str
    table_name: str
    columns: list[str]
    sequence: int
    status: RequestStatus
    affected_rows: int | None
    result_data: dict[str, Any] | None
    error_message: str | None
    processed_at: datetime | None

    @property
    def table(self) -> CatalogTable:
        return CatalogTable(self.database_name, self.schema_name, self.table_name)

    @property
    def qualified_name(self) -> str:
        return f"{self.database_name}.{self.schema_name}.{self.table_name}"


@dataclass
class RequestProgress:
    total_items: int
    completed_items: int
    failed_items: int
    percentage: int


@dataclass
class RequestStatusReport:
    """Status of a request with its items and progress."""

    request: DSARRequest
    items: list[DSARRequestItem]
    progress: RequestProgress
    total_deleted_rows: int | None = None
    deletion_plan: dict[str, Any] | None = None


@dataclass
class ItemOutcome:
    """Result of running one item against the warehouse."""

    affected_rows: int
    result_data: dict[str, Any] = field(default_factory=dict)
    # Kept in memory for the summary step, never persisted on the item
    payload: Any = None


def compute_progress(items: list[DSARRequestItem]) -> RequestProgress:
    total = len(items)
    completed = sum(1 for i in items if i.status == RequestStatus.COMPLETED)
    failed = sum(1 for i in items if i.status == RequestStatus.FAILED)
    # Half-up: 1 of 8 is 13, not 12
    percentage = (completed * 200 + total) // (2 * total) if total else 0
    return RequestProgress(
        total_items=total,
        completed_items=completed,
        failed_items=failed,
        percentage=percentage,
    )


def record_to_request(record: DSARRequestRecord) -> DSARRequest:
    return DSARRequest(
        id=record.id,
        kind=RequestKind(record.kind),
        subject_type=record.subject_type,
        subject_value=record.subject_value,
        status=RequestStatus(record.status),
        requested_by=record.requested_by,
        assigned_to=record.assigned_to,
        reason=record.reason,
        metadata=dict(record.request_metadata or {}),
        requested_at=record.requested_at,
        completed_at=record.completed_at,
        updated_at=record.updated_at,
    )


def record_to_item(record: DSARRequestItemRecord) -> DSARRequestItem:
    return DSARRequestItem(
        id=record.id,
        request_id=record.request_id,
        database_name=record.database_name,
        schema_name=record.schema_name,
        table_name=record.table_name,
        columns=list(record.columns or []),
        sequence=record.sequence,
        status=RequestStatus(record.status),
        affected_rows=record.affected_rows,
        result_data=record.result_data,
        error_message=record.error_message,
        processed_at=record.processed_at,
    )


def validate_submission(subject_type: str, subject_value: str, requested_by: str) -> None:
    if not subject_type or not subject_type.strip():
        raise RequestValidationError("subject_type is required")
    if not subject_value or not subject_value.strip():
        raise RequestValidationError("subject_value is required")
    if not requested_by or not requested_by.strip():
        raise RequestValidationError("requested_by is required")


class RequestOrchestrator:
    """Base lifecycle driver for one request kind."""

    kind: ClassVar[RequestKind]

    def __init__(
        self,
        store: RequestStore,
        audit: AuditTrail,
        pool: BackgroundWorkerPool,
    ) -> None:
        self._store = store
        self._audit = audit
        self._pool = pool

    # ------------------------------------------------------------------ #
    # Kind-specific hooks
    # ------------------------------------------------------------------ #

    async def _build_items(self, request: DSARRequest) -> list[dict[str, Any]]:
        """Return the item rows to create for a claimed request."""
        raise NotImplementedError

    async def _execute_item(self, request: DSARRequest, item: DSARRequestItem) -> ItemOutcome:
        """Run one item against the warehouse."""
        raise NotImplementedError

    async def _summarize(
        self,
        request: DSARRequest,
        outcomes: list[tuple[DSARRequestItem, ItemOutcome | None]],
    ) -> dict[str, Any]:
        """Return the metadata entries written when the request completes."""
        raise NotImplementedError

    # ------------------------------------------------------------------ #
    # Scheduling
    # ------------------------------------------------------------------ #

    async def schedule(self, request_id: int) -> str:
        """Durably mark the request for processing, then enqueue it."""
        await self._store.mark_scheduled(request_id)
        return await self._pool.submit_task(
            task_type=TaskType.PROCESS_REQUEST,
            payload={"request_id": request_id, "kind": self.kind.value},
        )

    async def handle_task(self, task: Task) -> None:
        """Worker entry point for PROCESS_REQUEST tasks of this kind."""
        await self.process(int(task.payload["request_id"]))

    # ------------------------------------------------------------------ #
    # Processing
    # ------------------------------------------------------------------ #

    async def process(self, request_id: int) -> None:
        """Claim and run a pending request.

        Never raises for failures inside the run; those fail the request.
        A failure to claim (store unavailable) propagates so the worker can
        retry the task.
        """
        with bind_request_context(request_id, self.kind.value):
            record = await self._store.get_request(request_id, self.kind)
            if record is None:
                log.warning("dsar.process.request_missing")
                return

            claimed = await self._store.transition(
                request_id,
                [RequestStatus.PENDING],
                RequestStatus.PROCESSING,
            )
            if not claimed:
                log.info("dsar.process.claim_lost", status=record.status)
                return

            await self._audit.record(request_id, AuditEventType.PROCESSING_STARTED)
            log.info("dsar.process.started", subject_type=record.subject_type)

            request = record_to_request(record)
            request.status = RequestStatus.PROCESSING
            try:
                await self._run(request)
            except Exception as exc:
                log.error("dsar.process.failed", error=str(exc), exc_info=True)
                await self._fail(request, str(exc))

    async def _run(self, request: DSARRequest) -> None:
        rows = await self._build_items(request)
        records = await self._store.create_items(request.id, rows) if rows else []
        items = [record_to_item(r) for r in records]

        outcomes: list[tuple[DSARRequestItem, ItemOutcome | None]] = []
        total_rows = 0
        for item in items:
            outcome = await self.process_item(request, item)
            if outcome is not None:
                total_rows += outcome.affected_rows
            outcomes.append((item, outcome))

        summary = await self._summarize(request, outcomes)
        metadata = {**request.metadata, **summary}
        now = datetime.now(UTC)
        await self._store.transition(
            request.id,
            [RequestStatus.PROCESSING],
            RequestStatus.COMPLETED,
            completed_at=now,
            request_metadata=metadata,
        )

        failed_items = sum(1 for item, _ in outcomes if item.status == RequestStatus.FAILED)
        await self._audit.record(
            request.id,
            AuditEventType.COMPLETED,
            details={
                "total_items": len(items),
                "failed_items": failed_items,
                "affected_rows": total_rows,
            },
        )
        log.info(
            "dsar.process.completed",
            total_items=len(items),
            failed_items=failed_items,
            affected_rows=total_rows,
        )

    async def process_item(
        self,
        request: DSARRequest,
        item: DSARRequestItem,
    ) -> ItemOutcome | None:
        """Run one item. Returns None (and records the error) on failure."""
        await self._store.update_item(item.id, status=RequestStatus.PROCESSING.value)
        item.status = RequestStatus.PROCESSING

        try:
            outcome = await self._execute_item(request, item)
        except Exception as exc:
            log.warning(
                "dsar.item.failed",
                item_id=item.id,
                table=item.qualified_name,
                error=str(exc),
            )
            now = datetime.now(UTC)
            await self._store.update_item(
                item.id,
                status=RequestStatus.FAILED.value,
                error_message=str(exc),
                affected_rows=0,
                processed_at=now,
            )
            item.status = RequestStatus.FAILED
            item.affected_rows = 0
            item.error_message = str(exc)
            item.processed_at = now
            return None

        now = datetime.now(UTC)
        await self._store.update_item(
            item.id,
            status=RequestStatus.COMPLETED.value,
            affected_rows=outcome.affected_rows,
            result_data=outcome.result_data,
            processed_at=now,
        )
        item.status = RequestStatus.COMPLETED
        item.affected_rows = outcome.affected_rows
        item.result_data = outcome.result_data
        item.processed_at = now
        log.info(
            "dsar.item.completed",
            item_id=item.id,
            table=item.qualified_name,
            affected_rows=outcome.affected_rows,
        )
        return outcome

    async def _fail(self, request: DSARRequest, reason: str) -> None:
        metadata = {**request.metadata, "failure_reason": reason}
        await self._store.transition(
            request.id,
            [RequestStatus.PROCESSING],
            RequestStatus.FAILED,
            request_metadata=metadata,
        )
        await self._audit.record(
            request.id,
            AuditEventType.FAILED,
            details={"failure_reason": reason},
        )

    # ------------------------------------------------------------------ #
    # Queries and cancellation
    # ------------------------------------------------------------------ #

    async def _require(self, request_id: int, kind: RequestKind | None) -> DSARRequestRecord:
        record = await self._store.get_request(request_id, kind)
        if record is None:
            raise RequestNotFoundError(request_id, kind.value if kind else None)
        return record

    async def get_status(self, request_id: int) -> RequestStatusReport:
        record = await self._require(request_id, self.kind)
        items = [record_to_item(r) for r in await self._store.list_items(request_id)]
        return RequestStatusReport(
            request=record_to_request(record),
            items=items,
            progress=compute_progress(items),
        )

    async def cancel_request(
        self,
        request_id: int,
        cancelled_by: str | None = None,
    ) -> DSARRequest:
        """Cancel a pending request of any kind."""
        return await self._cancel(request_id, None, cancelled_by)

    async def _cancel(
        self,
        request_id: int,
        kind: RequestKind | None,
        cancelled_by: str | None,
    ) -> DSARRequest:
        record = await self._require(request_id, kind)
        if record.status != RequestStatus.PENDING.value:
            raise InvalidRequestStateError("cancel", record.status)

        cancelled = await self._store.transition(
            request_id,
            [RequestStatus.PENDING],
            RequestStatus.CANCELLED,
        )
        if not cancelled:
            current = await self._require(request_id, kind)
            raise InvalidRequestStateError("cancel", current.status)

        items_cancelled = await self._store.cancel_pending_items(request_id)
        await self._audit.record(
            request_id,
            AuditEventType.CANCELLED,
            actor=cancelled_by,
            details={"items_cancelled": items_cancelled},
        )
        log.info("dsar.request_cancelled", request_id=request_id, kind=record.kind)

        request = record_to_request(record)
        request.status = RequestStatus.CANCELLED
        return request

    async def list_requests(
        self,
        *,
        kind: RequestKind | None = None,
        status: RequestStatus | None = None,
        subject_type: str | None = None,
        requested_by: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[DSARRequest]:
        """List requests of any kind, newest first."""
        records = await self._store.list_requests(
            kind=kind,
            status=status,
            subject_type=subject_type,
            requested_by=requested_by,
            limit=limit,
        )
        return [record_to_request(r) for r in records]
