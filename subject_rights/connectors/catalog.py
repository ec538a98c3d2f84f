"""Metadata catalog reader.

The catalog is a previously crawled inventory of tables, columns and
foreign-key edges. It is read-only, eventually consistent and
non-authoritative: discovery quality depends entirely on how fresh the
crawl is.

The crawler writes three tables which SqlCatalogReader queries:

    catalog_tables        (database_name, schema_name, table_name, table_type)
    catalog_columns       (database_name, schema_name, table_name, column_name, data_type)
    catalog_foreign_keys  (database_name, schema_name, table_name, referenced_table_name)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subject_rights.errors import CatalogError

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CatalogTable:
    """A table descriptor: the full identity of one table."""

    database_name: str
    schema_name: str
    table_name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.database_name}.{self.schema_name}.{self.table_name}"


@dataclass(frozen=True)
class CatalogColumn:
    column_name: str
    data_type: str


class CatalogReader(ABC):
    """Read-only view over the crawled catalog."""

    @abstractmethod
    async def list_tables(self, *, base_tables_only: bool = False) -> list[CatalogTable]:
        """Return every catalogued table, ordered by database, schema, table."""

    @abstractmethod
    async def list_columns(self, table: CatalogTable) -> list[CatalogColumn]:
        """Return the columns of one table."""

    @abstractmethod
    async def list_foreign_keys(self, table: CatalogTable) -> list[str]:
        """Return the names of the tables *table* references."""


class SqlCatalogReader(CatalogReader):
    """CatalogReader backed by the crawler's catalog_* tables.

    Usage:
        reader = SqlCatalogReader(session_factory)
        tables = await reader.list_tables()
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_tables(self, *, base_tables_only: bool = False) -> list[CatalogTable]:
        query = "SELECT DISTINCT database_name, schema_name, table_name FROM catalog_tables"
        if base_tables_only:
            query += " WHERE table_type = 'BASE TABLE'"
        query += " ORDER BY database_name, schema_name, table_name"

        rows = await self._fetch(query, {})
        return [CatalogTable(row[0], row[1], row[2]) for row in rows]

    async def list_columns(self, table: CatalogTable) -> list[CatalogColumn]:
        rows = await self._fetch(
            """
            SELECT column_name, data_type
            FROM catalog_columns
            WHERE database_name = :database_name
              AND schema_name = :schema_name
              AND table_name = :table_name
            ORDER BY column_name
            """,
            _table_params(table),
        )
        return [CatalogColumn(column_name=row[0], data_type=row[1]) for row in rows]

    async def list_foreign_keys(self, table: CatalogTable) -> list[str]:
        rows = await self._fetch(
            """
            SELECT DISTINCT referenced_table_name
            FROM catalog_foreign_keys
            WHERE database_name = :database_name
              AND schema_name = :schema_name
              AND table_name = :table_name
            ORDER BY referenced_table_name
            """,
            _table_params(table),
        )
        return [row[0] for row in rows]

    async def _fetch(self, query: str, params: dict[str, str]) -> list[tuple]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(text(query), params)
                return [tuple(row) for row in result.all()]
        except SQLAlchemyError as exc:
            log.error("catalog.query_failed", error=str(exc))
            raise CatalogError(f"Catalog query failed: {exc}") from exc


def _table_params(table: CatalogTable) -> dict[str, str]:
    return {
        "database_name": table.database_name,
        "schema_name": table.schema_name,
        "table_name": table.table_name,
    }
