"""Create data subject request tables.

Revision ID: 001
Revises:
Create Date: 2026-10-16

Tables:
  dsar_requests
    - id             BIGSERIAL PK
    - kind           VARCHAR(20)   export | delete
    - subject_type   VARCHAR(100)
    - subject_value  TEXT
    - status         VARCHAR(20)   pending | processing | completed | failed | cancelled
    - requested_by   VARCHAR(255)
    - assigned_to    VARCHAR(255)  (nullable, approver / rejecter)
    - reason         TEXT          (nullable)
    - metadata       JSONB         options, deletion plan, notes, result summary
    - version        INTEGER       bumped by every compare-and-set transition
    - scheduled_at   TIMESTAMPTZ   (nullable, processing intent)
    - requested_at / completed_at / updated_at

  dsar_request_items
    - one row per (request, table); sequence is the processing rank

  dsar_audit_events
    - append-only lifecycle events; no FK so the trail outlives requests

Notes:
  - status stored as VARCHAR rather than a PostgreSQL enum for schema
    flexibility (avoids enum migration pain when adding new statuses).
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create request, item and audit tables with indexes."""

    op.create_table(
        "dsar_requests",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(20), nullable=False, comment="export | delete"),
        sa.Column(
            "subject_type",
            sa.String(100),
            nullable=False,
            comment="Identifier discriminator, e.g. email or user_id",
        ),
        sa.Column(
            "subject_value",
            sa.Text(),
            nullable=False,
            comment="The identifying literal for the subject",
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="pending",
            comment="pending | processing | completed | failed | cancelled",
        ),
        sa.Column("requested_by", sa.String(255), nullable=False),
        sa.Column(
            "assigned_to",
            sa.String(255),
            nullable=True,
            comment="Approver or rejecter of a deletion request",
        ),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            server_default="{}",
            comment="Options, deletion plan, notes and result summary",
        ),
        sa.Column(
            "version",
            sa.Integer(),
            nullable=False,
            server_default="1",
            comment="Bumped by every compare-and-set status transition",
        ),
        sa.Column(
            "scheduled_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Processing intent; set before the request is enqueued",
        ),
        sa.Column(
            "requested_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_dsar_requests_status_kind", "dsar_requests", ["status", "kind"])
    op.create_index(
        "ix_dsar_requests_subject", "dsar_requests", ["subject_type", "subject_value"]
    )

    op.create_table(
        "dsar_request_items",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "request_id",
            sa.BigInteger(),
            sa.ForeignKey("dsar_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("database_name", sa.String(255), nullable=False),
        sa.Column("schema_name", sa.String(255), nullable=False),
        sa.Column("table_name", sa.String(255), nullable=False),
        sa.Column("columns", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column(
            "sequence",
            sa.Integer(),
            nullable=False,
            server_default="0",
            comment="Processing rank within the request (deletion_order for deletes)",
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "affected_rows",
            sa.Integer(),
            nullable=True,
            comment="Estimate before execution, actual afterwards",
        ),
        sa.Column("result_data", postgresql.JSONB, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "request_id",
            "database_name",
            "schema_name",
            "table_name",
            name="uq_dsar_request_items_table",
        ),
    )
    op.create_index(
        "ix_dsar_request_items_request_id", "dsar_request_items", ["request_id"]
    )

    op.create_table(
        "dsar_audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("request_id", sa.BigInteger(), nullable=False),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column(
            "actor",
            sa.String(255),
            nullable=True,
            comment="Requester, approver or null for background transitions",
        ),
        sa.Column("details", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_dsar_audit_events_request_id", "dsar_audit_events", ["request_id"])
    op.create_index("ix_dsar_audit_events_event_type", "dsar_audit_events", ["event_type"])
    op.create_index("ix_dsar_audit_events_created_at", "dsar_audit_events", ["created_at"])


def downgrade() -> None:
    """Drop audit, item and request tables."""
    op.drop_table("dsar_audit_events")
    op.drop_table("dsar_request_items")
    op.drop_table("dsar_requests")
