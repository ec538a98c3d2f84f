"""Request lifecycle audit trail.

Every lifecycle transition of a data subject request (created, approved,
rejected, cancelled, processing started, completed, failed) is appended to
dsar_audit_events.

Design:
- Audit writes happen AFTER the business mutation, in their own session,
  so a failed audit write never rolls back or fails the operation. The
  failure is logged, not surfaced.
- Details carry ids, counts and reasons only. Subject values are never
  written to the trail.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subject_rights.models.audit import DSARAuditEvent

log = structlog.get_logger(__name__)

_REASON_MAX_CHARS = 1000


class AuditEventType(StrEnum):
    CREATED = "dsar.request.created"
    APPROVED = "dsar.request.approved"
    REJECTED = "dsar.request.rejected"
    CANCELLED = "dsar.request.cancelled"
    PROCESSING_STARTED = "dsar.request.processing_started"
    COMPLETED = "dsar.request.completed"
    FAILED = "dsar.request.failed"


def _truncate(text: str, max_chars: int = _REASON_MAX_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class AuditTrail:
    """Append-only writer for request lifecycle events.

    Usage:
        audit = AuditTrail(session_factory)
        await audit.record(request.id, AuditEventType.APPROVED, actor="dpo@corp")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        request_id: int,
        event_type: AuditEventType,
        *,
        actor: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> DSARAuditEvent | None:
        """Append one event. Returns None when the write failed."""
        payload = {
            key: _truncate(value) if isinstance(value, str) else value
            for key, value in (details or {}).items()
        }
        entry = DSARAuditEvent(
            request_id=request_id,
            event_type=event_type.value,
            actor=actor,
            details=payload,
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except Exception as exc:
            log.error(
                "audit.write_failed",
                request_id=request_id,
                event_type=event_type.value,
                error=str(exc),
            )
            # Do not re-raise - audit failure must not fail the request
            return None
        return entry

    async def list_events(self, request_id: int) -> list[DSARAuditEvent]:
        """Return a request's events, oldest first."""
        stmt = (
            select(DSARAuditEvent)
            .where(DSARAuditEvent.request_id == request_id)
            .order_by(DSARAuditEvent.created_at, DSARAuditEvent.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
