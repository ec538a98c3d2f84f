"""Subject data deletion (right to erasure).

Usage:
    service = DeletionService(store, audit, pool, planner, warehouse)
    request = await service.create_deletion_request(
        subject_type="email",
        subject_value="alice@example.com",
        requested_by="dpo@example.com",
    )
    await service.approve_deletion_request(request.id, approver="legal@example.com")

The deletion plan is generated when the request is submitted and stored in
its metadata. A request runs without human approval only when the caller
opted out of verification and the plan raised no risk warning; otherwise it
waits in pending for approve or reject. Processing replays the stored plan
table by table in deletion order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from subject_rights.connectors.warehouse import WarehouseConnector
from subject_rights.core.audit import AuditEventType, AuditTrail
from subject_rights.errors import InvalidRequestStateError, RequestValidationError
from subject_rights.infra.background_worker import BackgroundWorkerPool
from subject_rights.models.dsar_request import RequestKind, RequestStatus
from subject_rights.planning.planner import DeletionPlan, DeletionPlanner
from subject_rights.services.orchestrator import (
    DSARRequest,
    DSARRequestItem,
    ItemOutcome,
    RequestOrchestrator,
    RequestStatusReport,
    record_to_request,
    validate_submission,
)
from subject_rights.store import RequestStore

log = structlog.get_logger(__name__)


@dataclass
class DeletionOptions:
    cascade_delete: bool = False
    soft_delete: bool = True
    backup_before_delete: bool = True
    verification_required: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DeletionOptions:
        data = data or {}
        return cls(
            cascade_delete=bool(data.get("cascade_delete", False)),
            soft_delete=bool(data.get("soft_delete", True)),
            backup_before_delete=bool(data.get("backup_before_delete", True)),
            verification_required=bool(data.get("verification_required", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "cascade_delete": self.cascade_delete,
            "soft_delete": self.soft_delete,
            "backup_before_delete": self.backup_before_delete,
            "verification_required": self.verification_required,
        }


class DeletionService(RequestOrchestrator):
    """Lifecycle of deletion requests, including the approval gate."""

    kind = RequestKind.DELETE

    def __init__(
        self,
        store: RequestStore,
        audit: AuditTrail,
        pool: BackgroundWorkerPool,
        planner: DeletionPlanner,
        warehouse: WarehouseConnector,
    ) -> None:
        super().__init__(store, audit, pool)
        self._planner = planner
        self._warehouse = warehouse

    async def generate_deletion_plan(self, subject_type: str, subject_value: str) -> DeletionPlan:
        """Preview the plan a deletion request would store. Nothing is persisted."""
        if not subject_type or not subject_type.strip():
            raise RequestValidationError("subject_type is required")
        if not subject_value or not subject_value.strip():
            raise RequestValidationError("subject_value is required")
        return await self._planner.generate_plan(subject_type.strip(), subject_value.strip())

    async def create_deletion_request(
        self,
        subject_type: str,
        subject_value: str,
        requested_by: str,
        *,
        options: DeletionOptions | dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> DSARRequest:
        """Plan and record a deletion request.

        The request is scheduled right away only when verification is not
        required and the plan needs no approval.

        Raises:
            RequestValidationError: If the submission is invalid
        """
        validate_submission(subject_type, subject_value, requested_by)
        if not isinstance(options, DeletionOptions):
            options = DeletionOptions.from_dict(options)

        subject_type = subject_type.strip()
        subject_value = subject_value.strip()
        plan = await self._planner.generate_plan(subject_type, subject_value)

        record = await self._store.create_request(
            kind=self.kind,
            subject_type=subject_type,
            subject_value=subject_value,
            requested_by=requested_by,
            reason=reason,
            metadata={"options": options.to_dict(), "deletion_plan": plan.to_dict()},
        )
        await self._audit.record(
            record.id,
            AuditEventType.CREATED,
            actor=requested_by,
            details={
                "kind": self.kind.value,
                "subject_type": subject_type,
                "tables": len(plan.tables_to_process),
                "total_estimated_rows": plan.total_estimated_rows,
                "requires_approval": plan.requires_approval,
                "warnings": plan.warnings,
            },
        )

        auto_execute = not options.verification_required and not plan.requires_approval
        log.info(
            "dsar.deletion.created",
            request_id=record.id,
            subject_type=subject_type,
            subject_value=subject_value,
            tables=len(plan.tables_to_process),
            requires_approval=plan.requires_approval,
            auto_execute=auto_execute,
        )
        if auto_execute:
            await self.schedule(record.id)
        return record_to_request(record)

    async def approve_deletion_request(self, request_id: int, approver: str) -> DSARRequest:
        """Approve a pending deletion and schedule it.

        Raises:
            RequestNotFoundError: If no deletion request has this id
            InvalidRequestStateError: If the request is not pending
        """
        if not approver or not approver.strip():
            raise RequestValidationError("approver is required")

        record = await self._require(request_id, self.kind)
        if record.status != RequestStatus.PENDING.value:
            raise InvalidRequestStateError("approve", record.status)

        metadata = {
            **(record.request_metadata or {}),
            "approved_by": approver,
            "approved_at": datetime.now(UTC).isoformat(),
        }
        approved = await self._store.transition(
            request_id,
            [RequestStatus.PENDING],
            RequestStatus.PENDING,
            assigned_to=approver,
            request_metadata=metadata,
        )
        if not approved:
            current = await self._require(request_id, self.kind)
            raise InvalidRequestStateError("approve", current.status)

        await self._audit.record(request_id, AuditEventType.APPROVED, actor=approver)
        log.info("dsar.deletion.approved", request_id=request_id, approver=approver)

        await self.schedule(request_id)

        request = record_to_request(record)
        request.assigned_to = approver
        request.metadata = metadata
        return request

    async def reject_deletion_request(
        self,
        request_id: int,
        approver: str,
        reason: str,
    ) -> DSARRequest:
        """Reject a pending deletion. The request ends failed and never runs.

        Raises:
            RequestNotFoundError: If no deletion request has this id
            InvalidRequestStateError: If the request is not pending
        """
        if not approver or not approver.strip():
            raise RequestValidationError("approver is required")
        if not reason or not reason.strip():
            raise RequestValidationError("reason is required")

        record = await self._require(request_id, self.kind)
        if record.status != RequestStatus.PENDING.value:
            raise InvalidRequestStateError("reject", record.status)

        metadata = {**(record.request_metadata or {}), "rejection_reason": reason}
        rejected = await self._store.transition(
            request_id,
            [RequestStatus.PENDING],
            RequestStatus.FAILED,
            assigned_to=approver,
            reason=reason,
            request_metadata=metadata,
        )
        if not rejected:
            current = await self._require(request_id, self.kind)
            raise InvalidRequestStateError("reject", current.status)

        await self._audit.record(
            request_id,
            AuditEventType.REJECTED,
            actor=approver,
            details={"reason": reason},
        )
        log.info("dsar.deletion.rejected", request_id=request_id, approver=approver)

        request = record_to_request(record)
        request.status = RequestStatus.FAILED
        request.assigned_to = approver
        request.reason = reason
        request.metadata = metadata
        return request

    async def get_deletion_status(self, request_id: int) -> RequestStatusReport:
        report = await self.get_status(request_id)
        report.total_deleted_rows = sum(
            item.affected_rows or 0
            for item in report.items
            if item.status == RequestStatus.COMPLETED
        )
        report.deletion_plan = report.request.metadata.get("deletion_plan")
        return report

    # ------------------------------------------------------------------ #
    # Processing hooks
    # ------------------------------------------------------------------ #

    async def _build_items(self, request: DSARRequest) -> list[dict[str, Any]]:
        plan = DeletionPlan.from_dict(request.metadata.get("deletion_plan") or {})
        return [
            {
                "database_name": t.database_name,
                "schema_name": t.schema_name,
                "table_name": t.table_name,
                "columns": t.columns,
                "sequence": t.deletion_order,
                "affected_rows": t.estimated_rows,
            }
            for t in plan.tables_to_process
        ]

    async def _execute_item(self, request: DSARRequest, item: DSARRequestItem) -> ItemOutcome:
        options = DeletionOptions.from_dict(request.metadata.get("options"))
        deleted = await self._warehouse.delete_rows(
            item.table,
            item.columns,
            request.subject_type,
            request.subject_value,
            soft_delete=options.soft_delete,
            cascade=options.cascade_delete,
            backup=options.backup_before_delete,
        )
        return ItemOutcome(
            affected_rows=deleted,
            result_data={
                "deleted_rows": deleted,
                "deletion_type": "soft" if options.soft_delete else "hard",
            },
        )

    async def _summarize(
        self,
        request: DSARRequest,
        outcomes: list[tuple[DSARRequestItem, ItemOutcome | None]],
    ) -> dict[str, Any]:
        failed = [item for item, _ in outcomes if item.status == RequestStatus.FAILED]
        return {
            "deletion_summary": {
                "total_deleted_rows": sum(o.affected_rows for _, o in outcomes if o is not None),
                "completed_at": datetime.now(UTC).isoformat(),
                "failed_items": len(failed),
            }
        }
