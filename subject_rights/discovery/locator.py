"""Data location discovery.

Walks the metadata catalog, matches each table's columns against the
subject type and keeps the tables that look like they hold the subject's
data. Two keep-policies exist because export and deletion ask different
questions:

- RELEVANCE (export): keep tables whose confidence reaches the configured
  threshold. Nothing is read from the warehouse during discovery.
- ESTIMATED_ROWS (deletion): only base tables are considered, and a table
  is kept when the warehouse reports at least one matching row. The count
  becomes the plan's row estimate.

Discovery is best effort. A table whose columns or row count cannot be read,
or whose catalog metadata is malformed, is logged and skipped; the rest of
the catalog is still searched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from subject_rights.connectors.catalog import CatalogColumn, CatalogReader, CatalogTable
from subject_rights.connectors.warehouse import WarehouseConnector
from subject_rights.discovery.matcher import ColumnMatch, match_columns
from subject_rights.discovery.scorer import score_table
from subject_rights.errors import CatalogError

log = structlog.get_logger(__name__)

DEFAULT_RELEVANCE_THRESHOLD = 0.3


class DiscoveryPolicy(StrEnum):
    """Which tables discovery keeps."""

    RELEVANCE = "relevance"
    ESTIMATED_ROWS = "estimated_rows"


@dataclass
class DiscoveredTable:
    """A table judged to hold data about the subject."""

    table: CatalogTable
    columns: list[str]
    confidence: float
    matches: list[ColumnMatch] = field(default_factory=list)
    estimated_rows: int | None = None

    @property
    def qualified_name(self) -> str:
        return self.table.qualified_name


class DataLocator:
    """Find the tables holding a subject's personal data.

    Usage:
        locator = DataLocator(catalog, warehouse, relevance_threshold=0.3)
        tables = await locator.locate("email", "alice@example.com")
    """

    def __init__(
        self,
        catalog: CatalogReader,
        warehouse: WarehouseConnector | None = None,
        *,
        relevance_threshold: float = DEFAULT_RELEVANCE_THRESHOLD,
    ) -> None:
        self._catalog = catalog
        self._warehouse = warehouse
        self._relevance_threshold = relevance_threshold

    async def locate(
        self,
        subject_type: str,
        subject_value: str,
        *,
        policy: DiscoveryPolicy = DiscoveryPolicy.RELEVANCE,
    ) -> list[DiscoveredTable]:
        """Return the subject's tables in catalog order.

        Raises:
            ValueError: If ESTIMATED_ROWS is requested without a warehouse
        """
        if policy == DiscoveryPolicy.ESTIMATED_ROWS and self._warehouse is None:
            raise ValueError("Row-estimate discovery requires a warehouse connector")

        try:
            tables = await self._catalog.list_tables(
                base_tables_only=policy == DiscoveryPolicy.ESTIMATED_ROWS
            )
        except CatalogError as exc:
            log.error("discovery.list_tables_failed", error=str(exc))
            return []

        found: list[DiscoveredTable] = []
        for table in tables:
            candidate = await self._inspect(table, subject_type, subject_value, policy)
            if candidate is not None:
                found.append(candidate)

        log.info(
            "discovery.completed",
            subject_type=subject_type,
            policy=policy.value,
            tables_scanned=len(tables),
            tables_found=len(found),
        )
        return found

    async def _inspect(
        self,
        table: CatalogTable,
        subject_type: str,
        subject_value: str,
        policy: DiscoveryPolicy,
    ) -> DiscoveredTable | None:
        # Any failure here skips this one table, never the whole discovery
        stage = "list_columns"
        try:
            columns = await self._catalog.list_columns(table)

            stage = "match_columns"
            candidate = self._match(table, columns, subject_type)
            if candidate is None:
                return None
            if policy == DiscoveryPolicy.RELEVANCE:
                return candidate if candidate.confidence >= self._relevance_threshold else None

            stage = "count_rows"
            assert self._warehouse is not None
            estimated = await self._warehouse.count_rows(
                table, candidate.columns, subject_type, subject_value
            )
            if estimated <= 0:
                return None
        except Exception as exc:
            log.warning(
                "discovery.table_skipped",
                table=table.qualified_name,
                stage=stage,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        candidate.estimated_rows = estimated
        return candidate

    def _match(
        self,
        table: CatalogTable,
        columns: list[CatalogColumn],
        subject_type: str,
    ) -> DiscoveredTable | None:
        matches = match_columns(subject_type, ((c.column_name, c.data_type) for c in columns))
        if not matches:
            return None
        return DiscoveredTable(
            table=table,
            columns=[m.column_name for m in matches],
            confidence=score_table(matches, table.table_name, table.schema_name),
            matches=matches,
        )
