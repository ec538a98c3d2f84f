"""Durable store for requests and their items.

Every mutation is a single-row statement scoped by id and committed in its
own short session. Status changes go through transition(), a
compare-and-set UPDATE guarded by the expected current status, so two
workers racing for the same request cannot both claim it.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subject_rights.models.dsar_request import (
    DSARRequestItemRecord,
    DSARRequestRecord,
    RequestKind,
    RequestStatus,
)

log = structlog.get_logger(__name__)

DEFAULT_LIST_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _column_values(model: type, values: dict[str, Any]) -> dict[Any, Any]:
    """Key update values by mapped attribute so renamed columns resolve."""
    return {getattr(model, name): value for name, value in values.items()}


class RequestStore:
    """Persistence for DSARRequestRecord / DSARRequestItemRecord rows.

    Usage:
        store = RequestStore(session_factory)
        record = await store.create_request(kind=RequestKind.EXPORT, ...)
        claimed = await store.transition(
            record.id, [RequestStatus.PENDING], RequestStatus.PROCESSING
        )
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    async def create_request(
        self,
        *,
        kind: RequestKind,
        subject_type: str,
        subject_value: str,
        requested_by: str,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DSARRequestRecord:
        now = _utcnow()
        record = DSARRequestRecord(
            kind=kind.value,
            subject_type=subject_type,
            subject_value=subject_value,
            status=RequestStatus.PENDING.value,
            requested_by=requested_by,
            reason=reason,
            request_metadata=dict(metadata or {}),
            version=1,
            requested_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    async def get_request(
        self,
        request_id: int,
        kind: RequestKind | None = None,
    ) -> DSARRequestRecord | None:
        stmt = select(DSARRequestRecord).where(DSARRequestRecord.id == request_id)
        if kind is not None:
            stmt = stmt.where(DSARRequestRecord.kind == kind.value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def transition(
        self,
        request_id: int,
        from_statuses: Iterable[RequestStatus],
        to_status: RequestStatus,
        **values: Any,
    ) -> bool:
        """Compare-and-set the request status.

        Applies *to_status* (and any extra column values) only if the row is
        currently in one of *from_statuses*. Bumps version on success.

        Returns:
            True if this call performed the transition
        """
        expected = [s.value for s in from_statuses]
        column_values = _column_values(DSARRequestRecord, values)
        column_values.update(
            {
                DSARRequestRecord.status: to_status.value,
                DSARRequestRecord.version: DSARRequestRecord.version + 1,
                DSARRequestRecord.updated_at: _utcnow(),
            }
        )
        stmt = (
            update(DSARRequestRecord)
            .where(DSARRequestRecord.id == request_id)
            .where(DSARRequestRecord.status.in_(expected))
            .values(column_values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        applied = result.rowcount == 1
        if not applied:
            log.debug(
                "store.transition_skipped",
                request_id=request_id,
                expected=expected,
                target=to_status.value,
            )
        return applied

    async def update_request(self, request_id: int, **values: Any) -> None:
        """Write non-status columns of a request."""
        column_values = _column_values(DSARRequestRecord, values)
        column_values[DSARRequestRecord.updated_at] = _utcnow()
        stmt = (
            update(DSARRequestRecord)
            .where(DSARRequestRecord.id == request_id)
            .values(column_values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def mark_scheduled(self, request_id: int) -> None:
        """Record the intent to process before the request is enqueued."""
        await self.update_request(request_id, scheduled_at=_utcnow())

    async def find_scheduled_pending(self, limit: int = 100) -> list[DSARRequestRecord]:
        """Requests whose processing was scheduled but never started."""
        stmt = (
            select(DSARRequestRecord)
            .where(DSARRequestRecord.status == RequestStatus.PENDING.value)
            .where(DSARRequestRecord.scheduled_at.is_not(None))
            .order_by(DSARRequestRecord.scheduled_at, DSARRequestRecord.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_requests(
        self,
        *,
        kind: RequestKind | None = None,
        status: RequestStatus | None = None,
        subject_type: str | None = None,
        requested_by: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[DSARRequestRecord]:
        """Return requests newest first, optionally filtered."""
        stmt = select(DSARRequestRecord)
        if kind is not None:
            stmt = stmt.where(DSARRequestRecord.kind == kind.value)
        if status is not None:
            stmt = stmt.where(DSARRequestRecord.status == status.value)
        if subject_type is not None:
            stmt = stmt.where(DSARRequestRecord.subject_type == subject_type)
        if requested_by is not None:
            stmt = stmt.where(DSARRequestRecord.requested_by == requested_by)
        stmt = stmt.order_by(
            DSARRequestRecord.requested_at.desc(),
            DSARRequestRecord.id.desc(),
        ).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #

    async def create_items(
        self,
        request_id: int,
        items: Sequence[dict[str, Any]],
    ) -> list[DSARRequestItemRecord]:
        """Insert the per-table items of a request in one transaction.

        Each dict carries database_name, schema_name, table_name, columns,
        sequence and optionally affected_rows (an estimate).
        """
        now = _utcnow()
        records = [
            DSARRequestItemRecord(
                request_id=request_id,
                database_name=item["database_name"],
                schema_name=item["schema_name"],
                table_name=item["table_name"],
                columns=list(dict.fromkeys(item.get("columns", []))),
                sequence=item.get("sequence", index),
                status=RequestStatus.PENDING.value,
                affected_rows=item.get("affected_rows"),
                created_at=now,
                updated_at=now,
            )
            for index, item in enumerate(items, start=1)
        ]
        async with self._session_factory() as session:
            session.add_all(records)
            await session.commit()
        return sorted(records, key=lambda r: (r.sequence, r.id))

    async def list_items(self, request_id: int) -> list[DSARRequestItemRecord]:
        stmt = (
            select(DSARRequestItemRecord)
            .where(DSARRequestItemRecord.request_id == request_id)
            .order_by(DSARRequestItemRecord.sequence, DSARRequestItemRecord.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_item(self, item_id: int, **values: Any) -> None:
        column_values = _column_values(DSARRequestItemRecord, values)
        column_values[DSARRequestItemRecord.updated_at] = _utcnow()
        stmt = (
            update(DSARRequestItemRecord)
            .where(DSARRequestItemRecord.id == item_id)
            .values(column_values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def cancel_pending_items(self, request_id: int) -> int:
        """Cancel every still-pending item of a request. Returns the count."""
        stmt = (
            update(DSARRequestItemRecord)
            .where(DSARRequestItemRecord.request_id == request_id)
            .where(DSARRequestItemRecord.status == RequestStatus.PENDING.value)
            .values(
                {
                    DSARRequestItemRecord.status: RequestStatus.CANCELLED.value,
                    DSARRequestItemRecord.updated_at: _utcnow(),
                }
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount or 0
