"""Subject data export (right of access / portability).

Usage:
    service = ExportService(store, audit, pool, locator, warehouse, export_dir="./exports")
    request = await service.create_export_request(
        subject_type="email",
        subject_value="alice@example.com",
        requested_by="dpo@example.com",
    )
    report = await service.get_export_status(request.id)

Processing discovers the subject's tables at run time, extracts the rows
of each table through the warehouse connector and compiles them into one
artifact under export_dir. A table that fails to extract is recorded as a
failed item and left out of the artifact.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from subject_rights.connectors.warehouse import WarehouseConnector
from subject_rights.core.audit import AuditEventType, AuditTrail
from subject_rights.discovery.locator import DataLocator, DiscoveryPolicy
from subject_rights.errors import RequestValidationError
from subject_rights.infra.background_worker import BackgroundWorkerPool
from subject_rights.models.dsar_request import RequestKind
from subject_rights.services.export_format import (
    ExportedTable,
    ExportFormat,
    artifact_name,
    compile_export,
    write_artifact,
)
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
class ExportOptions:
    format: ExportFormat = ExportFormat.JSON
    include_metadata: bool = True
    compress: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ExportOptions:
        """Parse caller-supplied options.

        Raises:
            RequestValidationError: If the format is not supported
        """
        data = data or {}
        raw_format = str(data.get("format", ExportFormat.JSON.value)).lower()
        try:
            export_format = ExportFormat(raw_format)
        except ValueError:
            supported = ", ".join(f.value for f in ExportFormat)
            raise RequestValidationError(
                f"Unsupported export format: {raw_format} (supported: {supported})"
            ) from None
        return cls(
            format=export_format,
            include_metadata=bool(data.get("include_metadata", True)),
            compress=bool(data.get("compress", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format.value,
            "include_metadata": self.include_metadata,
            "compress": self.compress,
        }


class ExportService(RequestOrchestrator):
    """Lifecycle of export requests."""

    kind = RequestKind.EXPORT

    def __init__(
        self,
        store: RequestStore,
        audit: AuditTrail,
        pool: BackgroundWorkerPool,
        locator: DataLocator,
        warehouse: WarehouseConnector,
        *,
        export_dir: str | Path = "./exports",
    ) -> None:
        super().__init__(store, audit, pool)
        self._locator = locator
        self._warehouse = warehouse
        self._export_dir = Path(export_dir)

    async def create_export_request(
        self,
        subject_type: str,
        subject_value: str,
        requested_by: str,
        *,
        options: ExportOptions | dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> DSARRequest:
        """Create an export request and schedule it immediately.

        Raises:
            RequestValidationError: If the submission or options are invalid
        """
        validate_submission(subject_type, subject_value, requested_by)
        if not isinstance(options, ExportOptions):
            options = ExportOptions.from_dict(options)

        record = await self._store.create_request(
            kind=self.kind,
            subject_type=subject_type.strip(),
            subject_value=subject_value.strip(),
            requested_by=requested_by,
            reason=reason,
            metadata={"options": options.to_dict()},
        )
        await self._audit.record(
            record.id,
            AuditEventType.CREATED,
            actor=requested_by,
            details={"kind": self.kind.value, "subject_type": record.subject_type},
        )
        log.info(
            "dsar.export.created",
            request_id=record.id,
            subject_type=record.subject_type,
            subject_value=record.subject_value,
            export_format=options.format.value,
        )

        await self.schedule(record.id)
        return record_to_request(record)

    async def get_export_status(self, request_id: int) -> RequestStatusReport:
        return await self.get_status(request_id)

    async def cancel_export_request(
        self,
        request_id: int,
        cancelled_by: str | None = None,
    ) -> DSARRequest:
        return await self._cancel(request_id, self.kind, cancelled_by)

    # ------------------------------------------------------------------ #
    # Processing hooks
    # ------------------------------------------------------------------ #

    async def _build_items(self, request: DSARRequest) -> list[dict[str, Any]]:
        discovered = await self._locator.locate(
            request.subject_type,
            request.subject_value,
            policy=DiscoveryPolicy.RELEVANCE,
        )
        return [
            {
                "database_name": d.table.database_name,
                "schema_name": d.table.schema_name,
                "table_name": d.table.table_name,
                "columns": d.columns,
                "sequence": index,
            }
            for index, d in enumerate(discovered, start=1)
        ]

    async def _execute_item(self, request: DSARRequest, item: DSARRequestItem) -> ItemOutcome:
        rows = await self._warehouse.extract_rows(
            item.table,
            item.columns,
            request.subject_type,
            request.subject_value,
        )
        exported = ExportedTable(table=item.qualified_name, columns=item.columns, rows=rows)
        return ItemOutcome(
            affected_rows=len(rows),
            result_data={"row_count": len(rows)},
            payload=exported,
        )

    async def _summarize(
        self,
        request: DSARRequest,
        outcomes: list[tuple[DSARRequestItem, ItemOutcome | None]],
    ) -> dict[str, Any]:
        options = ExportOptions.from_dict(request.metadata.get("options"))
        tables = [o.payload for _, o in outcomes if o is not None]

        content = compile_export(tables, options.format, include_metadata=options.include_metadata)
        path = self._export_dir / artifact_name(
            request.id, options.format, compress=options.compress
        )
        size = await write_artifact(path, content, compress=options.compress)

        result = {
            "total_records": sum(len(t.rows) for t in tables),
            "exported_tables": [t.table for t in tables],
            "export_file_size": size,
            "export_format": options.format.value,
            "export_path": str(path),
            "completed_at": datetime.now(UTC).isoformat(),
        }
        log.info(
            "dsar.export.compiled",
            total_records=result["total_records"],
            tables=len(tables),
            export_file_size=size,
        )
        return {"export_result": result}
