"""Deletion plan generation.

A plan is computed once, when the deletion request is submitted, and stored
on the request. Processing later replays the stored plan rather than
re-discovering, so what an approver signed off is exactly what runs.

Steps:
1. Discover base tables holding at least one of the subject's rows
2. Read each table's foreign-key references from the catalog
3. Sequence tables so referencing tables are deleted first
4. Assess risk to decide whether approval is required
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from subject_rights.connectors.catalog import CatalogReader, CatalogTable
from subject_rights.discovery.locator import DataLocator, DiscoveryPolicy
from subject_rights.errors import CatalogError
from subject_rights.planning.risk import (
    DEFAULT_APPROVAL_ROW_THRESHOLD,
    assess_deletion_risk,
)
from subject_rights.planning.sequencer import DependencyGraph, GraphNode

log = structlog.get_logger(__name__)


@dataclass
class PlannedTable:
    """One table in a deletion plan."""

    database_name: str
    schema_name: str
    table_name: str
    columns: list[str]
    estimated_rows: int
    dependencies: list[str] = field(default_factory=list)
    deletion_order: int = 0

    @property
    def table(self) -> CatalogTable:
        return CatalogTable(self.database_name, self.schema_name, self.table_name)

    @property
    def qualified_name(self) -> str:
        return self.table.qualified_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "database_name": self.database_name,
            "schema_name": self.schema_name,
            "table_name": self.table_name,
            "columns": list(self.columns),
            "estimated_rows": self.estimated_rows,
            "dependencies": list(self.dependencies),
            "deletion_order": self.deletion_order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlannedTable:
        return cls(
            database_name=data["database_name"],
            schema_name=data["schema_name"],
            table_name=data["table_name"],
            columns=list(data.get("columns", [])),
            estimated_rows=int(data.get("estimated_rows", 0)),
            dependencies=list(data.get("dependencies", [])),
            deletion_order=int(data.get("deletion_order", 0)),
        )


@dataclass
class DeletionPlan:
    """Ordered tables plus the risk verdict for one subject."""

    tables_to_process: list[PlannedTable] = field(default_factory=list)
    total_estimated_rows: int = 0
    warnings: list[str] = field(default_factory=list)
    requires_approval: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tables_to_process": [t.to_dict() for t in self.tables_to_process],
            "total_estimated_rows": self.total_estimated_rows,
            "warnings": list(self.warnings),
            "requires_approval": self.requires_approval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeletionPlan:
        return cls(
            tables_to_process=[
                PlannedTable.from_dict(t) for t in data.get("tables_to_process", [])
            ],
            total_estimated_rows=int(data.get("total_estimated_rows", 0)),
            warnings=list(data.get("warnings", [])),
            requires_approval=bool(data.get("requires_approval", False)),
        )


class DeletionPlanner:
    """Build deletion plans from the catalog and warehouse row counts.

    Usage:
        planner = DeletionPlanner(locator, catalog)
        plan = await planner.generate_plan("email", "alice@example.com")
    """

    def __init__(
        self,
        locator: DataLocator,
        catalog: CatalogReader,
        *,
        approval_row_threshold: int = DEFAULT_APPROVAL_ROW_THRESHOLD,
    ) -> None:
        self._locator = locator
        self._catalog = catalog
        self._approval_row_threshold = approval_row_threshold

    async def generate_plan(self, subject_type: str, subject_value: str) -> DeletionPlan:
        discovered = await self._locator.locate(
            subject_type,
            subject_value,
            policy=DiscoveryPolicy.ESTIMATED_ROWS,
        )

        nodes: list[GraphNode] = []
        for candidate in discovered:
            references = await self._references(candidate.table)
            nodes.append(GraphNode(table=candidate.table, references=references))

        graph = DependencyGraph(nodes)
        ranks = graph.ranks()

        planned = [
            PlannedTable(
                database_name=c.table.database_name,
                schema_name=c.table.schema_name,
                table_name=c.table.table_name,
                columns=list(c.columns),
                estimated_rows=c.estimated_rows or 0,
                dependencies=graph.references(c.table),
                deletion_order=ranks[c.table],
            )
            for c in discovered
        ]
        planned.sort(key=lambda t: t.deletion_order)

        assessment = assess_deletion_risk(planned, row_threshold=self._approval_row_threshold)
        plan = DeletionPlan(
            tables_to_process=planned,
            total_estimated_rows=sum(t.estimated_rows for t in planned),
            warnings=assessment.warnings,
            requires_approval=assessment.requires_approval,
        )

        log.info(
            "planning.plan_generated",
            subject_type=subject_type,
            tables=len(planned),
            total_estimated_rows=plan.total_estimated_rows,
            requires_approval=plan.requires_approval,
        )
        return plan

    async def _references(self, table: CatalogTable) -> list[str]:
        try:
            return await self._catalog.list_foreign_keys(table)
        except CatalogError as exc:
            log.warning(
                "planning.foreign_keys_unavailable",
                table=table.qualified_name,
                error=str(exc),
            )
            return []
