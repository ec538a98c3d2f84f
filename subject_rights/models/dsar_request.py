"""SQLAlchemy ORM models for data subject request persistence.

A request (export or delete) owns one item per affected table. Both rows
are mutated only by the orchestrator and only through single-row updates,
so invariants are enforced in the service layer rather than by database
constraints. The one exception is the (request, table) uniqueness of items.

Status values are stored as VARCHAR rather than a PostgreSQL enum so new
statuses do not need an enum migration.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from subject_rights.database import Base, JSONDocument

# BIGSERIAL on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY
_IdType = BigInteger().with_variant(Integer(), "sqlite")


class RequestKind(StrEnum):
    """Data subject rights handled by the orchestrator."""

    EXPORT = "export"  # Right of access / portability
    DELETE = "delete"  # Right to erasure


class RequestStatus(StrEnum):
    """Lifecycle status shared by requests and their items."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.FAILED, RequestStatus.CANCELLED)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DSARRequestRecord(Base):
    """Persistent record of one data subject rights case."""

    __tablename__ = "dsar_requests"

    id: Mapped[int] = mapped_column(_IdType, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="export | delete",
    )
    subject_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Identifier discriminator, e.g. email or user_id",
    )
    subject_value: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="The identifying literal for the subject",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.PENDING.value,
        comment="pending | processing | completed | failed | cancelled",
    )
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Approver or rejecter of a deletion request",
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes, so the attribute is renamed
    request_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONDocument,
        nullable=False,
        default=dict,
        comment="Options, deletion plan, notes and result summary",
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Bumped by every compare-and-set status transition",
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Processing intent; set before the request is enqueued",
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        Index("ix_dsar_requests_status_kind", "status", "kind"),
        Index("ix_dsar_requests_subject", "subject_type", "subject_value"),
    )

    def __repr__(self) -> str:
        return (
            f"<DSARRequestRecord id={self.id} kind={self.kind!r} "
            f"status={self.status!r} version={self.version}>"
        )


class DSARRequestItemRecord(Base):
    """One table-scoped unit of work belonging to a request."""

    __tablename__ = "dsar_request_items"

    id: Mapped[int] = mapped_column(_IdType, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(
        _IdType,
        ForeignKey("dsar_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    database_name: Mapped[str] = mapped_column(String(255), nullable=False)
    schema_name: Mapped[str] = mapped_column(String(255), nullable=False)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    columns: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Processing rank within the request (deletion_order for deletes)",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.PENDING.value,
    )
    affected_rows: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Estimate before execution, actual afterwards",
    )
    result_data: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint(
            "request_id",
            "database_name",
            "schema_name",
            "table_name",
            name="uq_dsar_request_items_table",
        ),
    )

    @property
    def qualified_name(self) -> str:
        return f"{self.database_name}.{self.schema_name}.{self.table_name}"

    def __repr__(self) -> str:
        return (
            f"<DSARRequestItemRecord id={self.id} request={self.request_id} "
            f"table={self.qualified_name!r} status={self.status!r}>"
        )
