"""DSARAuditEvent model - append-only trail of request lifecycle events.

Design principles:
- Append-only: never update or delete audit rows
- No FK to dsar_requests so the trail survives request clean-up
- Details carry identifiers and counts only, never subject values
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from subject_rights.database import Base, JSONDocument


class DSARAuditEvent(Base):
    __tablename__ = "dsar_audit_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    request_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    # e.g. "dsar.request.created", "dsar.request.approved"
    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    actor: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Requester, approver or null for background transitions",
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<DSARAuditEvent request={self.request_id} event={self.event_type!r}>"
