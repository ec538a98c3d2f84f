"""Deletion risk assessment.

Deletion is irreversible, so a plan is held for human approval whenever any
one of these independent rules fires:

- the plan estimates more rows than the approval threshold
- some table references another table (referential side effects)
- some table name looks business-critical (billing, audit, config, ...)

Each fired rule contributes one warning. A plan with no warnings may run
without approval, subject to the request's verification option.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

DEFAULT_APPROVAL_ROW_THRESHOLD = 10_000

CRITICAL_TABLE_PATTERNS: tuple[str, ...] = (
    "payment",
    "billing",
    "invoice",
    "financial",
    "audit",
    "compliance",
    "legal",
    "system",
    "config",
    "admin",
)

DEPENDENCIES_WARNING = "Some tables have referential dependencies"
CRITICAL_TABLES_WARNING = "Critical business tables will be affected"


def large_volume_warning(threshold: int) -> str:
    return f"Large number of records to be deleted (>{threshold:,})"


class AssessedTable(Protocol):
    table_name: str
    estimated_rows: int
    dependencies: list[str]


@dataclass
class RiskAssessment:
    """Outcome of assessing one deletion plan."""

    requires_approval: bool
    warnings: list[str] = field(default_factory=list)


def is_critical_table(table_name: str) -> bool:
    lowered = table_name.lower()
    return any(pattern in lowered for pattern in CRITICAL_TABLE_PATTERNS)


def assess_deletion_risk(
    tables: Sequence[AssessedTable],
    *,
    row_threshold: int = DEFAULT_APPROVAL_ROW_THRESHOLD,
) -> RiskAssessment:
    """Decide whether a deletion plan needs approval and say why."""
    warnings: list[str] = []

    total_rows = sum(t.estimated_rows for t in tables)
    if total_rows > row_threshold:
        warnings.append(large_volume_warning(row_threshold))

    if any(t.dependencies for t in tables):
        warnings.append(DEPENDENCIES_WARNING)

    if any(is_critical_table(t.table_name) for t in tables):
        warnings.append(CRITICAL_TABLES_WARNING)

    return RiskAssessment(requires_approval=bool(warnings), warnings=warnings)
