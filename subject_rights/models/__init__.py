"""ORM models package.

Import all models here so that SQLAlchemy's metadata is fully populated
when Alembic runs autogenerate.
"""

from subject_rights.models.audit import DSARAuditEvent
from subject_rights.models.dsar_request import (
    DSARRequestItemRecord,
    DSARRequestRecord,
    RequestKind,
    RequestStatus,
)

__all__ = [
    "DSARAuditEvent",
    "DSARRequestItemRecord",
    "DSARRequestRecord",
    "RequestKind",
    "RequestStatus",
]
