"""Tests for SqlCatalogReader against crawler tables in SQLite."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import text

from subject_rights.connectors.catalog import CatalogColumn, CatalogTable, SqlCatalogReader
from subject_rights.errors import CatalogError

CATALOG_DDL = [
    """
    CREATE TABLE catalog_tables (
        database_name TEXT, schema_name TEXT, table_name TEXT, table_type TEXT
    )
    """,
    """
    CREATE TABLE catalog_columns (
        database_name TEXT, schema_name TEXT, table_name TEXT,
        column_name TEXT, data_type TEXT
    )
    """,
    """
    CREATE TABLE catalog_foreign_keys (
        database_name TEXT, schema_name TEXT, table_name TEXT, referenced_table_name TEXT
    )
    """,
]

USERS = CatalogTable("analytics", "public", "users")
ORDERS = CatalogTable("analytics", "public", "orders")


@pytest_asyncio.fixture
async def crawled_catalog(engine) -> None:
    async with engine.begin() as conn:
        for ddl in CATALOG_DDL:
            await conn.execute(text(ddl))
        await conn.execute(
            text("INSERT INTO catalog_tables VALUES (:d, :s, :t, :k)"),
            [
                {"d": "analytics", "s": "public", "t": "users", "k": "BASE TABLE"},
                {"d": "analytics", "s": "public", "t": "orders", "k": "BASE TABLE"},
                {"d": "analytics", "s": "public", "t": "active_users", "k": "VIEW"},
                {"d": "analytics", "s": "crm", "t": "contacts", "k": "BASE TABLE"},
                # crawled twice
                {"d": "analytics", "s": "public", "t": "users", "k": "BASE TABLE"},
            ],
        )
        await conn.execute(
            text("INSERT INTO catalog_columns VALUES (:d, :s, :t, :c, :ty)"),
            [
                {"d": "analytics", "s": "public", "t": "users", "c": "name", "ty": "varchar"},
                {"d": "analytics", "s": "public", "t": "users", "c": "email", "ty": "varchar"},
                {"d": "analytics", "s": "public", "t": "orders", "c": "total", "ty": "numeric"},
            ],
        )
        await conn.execute(
            text("INSERT INTO catalog_foreign_keys VALUES (:d, :s, :t, :r)"),
            [
                {"d": "analytics", "s": "public", "t": "orders", "r": "users"},
                {"d": "analytics", "s": "public", "t": "orders", "r": "users"},
                {"d": "analytics", "s": "public", "t": "orders", "r": "products"},
            ],
        )


class TestSqlCatalogReader:
    """Tests for reading the crawled catalog."""

    @pytest.mark.asyncio
    async def test_list_tables_sorted_and_distinct(self, session_factory, crawled_catalog) -> None:
        tables = await SqlCatalogReader(session_factory).list_tables()

        assert [t.qualified_name for t in tables] == [
            "analytics.crm.contacts",
            "analytics.public.active_users",
            "analytics.public.orders",
            "analytics.public.users",
        ]

    @pytest.mark.asyncio
    async def test_list_base_tables_only(self, session_factory, crawled_catalog) -> None:
        tables = await SqlCatalogReader(session_factory).list_tables(base_tables_only=True)

        assert CatalogTable("analytics", "public", "active_users") not in tables
        assert len(tables) == 3

    @pytest.mark.asyncio
    async def test_list_columns(self, session_factory, crawled_catalog) -> None:
        columns = await SqlCatalogReader(session_factory).list_columns(USERS)

        assert columns == [CatalogColumn("email", "varchar"), CatalogColumn("name", "varchar")]

    @pytest.mark.asyncio
    async def test_list_columns_unknown_table(self, session_factory, crawled_catalog) -> None:
        missing = CatalogTable("analytics", "public", "missing")

        assert await SqlCatalogReader(session_factory).list_columns(missing) == []

    @pytest.mark.asyncio
    async def test_list_foreign_keys_distinct(self, session_factory, crawled_catalog) -> None:
        reader = SqlCatalogReader(session_factory)

        assert await reader.list_foreign_keys(ORDERS) == ["products", "users"]
        assert await reader.list_foreign_keys(USERS) == []

    @pytest.mark.asyncio
    async def test_missing_catalog_raises_catalog_error(self, session_factory) -> None:
        """Test that a database without crawler tables surfaces as CatalogError."""
        with pytest.raises(CatalogError):
            await SqlCatalogReader(session_factory).list_tables()
