"""Tests for DataLocator catalog discovery."""

from __future__ import annotations

import pytest

from subject_rights.discovery.locator import DataLocator, DiscoveryPolicy


class TestRelevanceDiscovery:
    """Tests for discovery used by exports."""

    @pytest.mark.asyncio
    async def test_keeps_relevant_tables_in_catalog_order(self, catalog, warehouse) -> None:
        """Test that relevant tables come back in catalog order and unrelated ones are dropped."""
        catalog.add_table("analytics.public.users", [("email", "varchar"), ("name", "varchar")])
        catalog.add_table("analytics.public.metrics", [("value", "float")])
        catalog.add_table("analytics.crm.contacts", [("contact_email", "varchar")])

        locator = DataLocator(catalog, warehouse)
        found = await locator.locate("email", "alice@example.com")

        assert [d.qualified_name for d in found] == [
            "analytics.public.users",
            "analytics.crm.contacts",
        ]
        assert found[0].columns == ["email"]
        assert found[0].confidence == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_never_reads_the_warehouse(self, catalog, warehouse) -> None:
        catalog.add_table("analytics.public.users", [("email", "varchar")])

        await DataLocator(catalog, warehouse).locate("email", "alice@example.com")

        assert warehouse.calls == []

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self, catalog) -> None:
        """Test that a table scoring exactly the threshold is kept."""
        # exact column match, no name bonus: 0.6
        catalog.add_table("analytics.public.events", [("email", "varchar")])

        kept = await DataLocator(catalog, relevance_threshold=0.6).locate("email", "a@b.com")
        dropped = await DataLocator(catalog, relevance_threshold=0.61).locate("email", "a@b.com")

        assert len(kept) == 1
        assert dropped == []

    @pytest.mark.asyncio
    async def test_views_are_included(self, catalog) -> None:
        catalog.add_table("analytics.public.user_view", [("email", "varchar")], table_type="VIEW")

        found = await DataLocator(catalog).locate("email", "a@b.com")

        assert [d.table.table_name for d in found] == ["user_view"]

    @pytest.mark.asyncio
    async def test_unreadable_columns_skip_one_table(self, catalog) -> None:
        catalog.add_table("analytics.public.users", [("email", "varchar")])
        catalog.add_table("analytics.public.accounts", [("email", "varchar")])
        catalog.failing_columns.add("analytics.public.users")

        found = await DataLocator(catalog).locate("email", "a@b.com")

        assert [d.qualified_name for d in found] == ["analytics.public.accounts"]

    @pytest.mark.asyncio
    async def test_malformed_column_metadata_skips_one_table(self, catalog) -> None:
        """Test that a column with no name skips its table, not the whole discovery."""
        catalog.add_table("analytics.public.broken", [(None, "varchar"), ("email", "varchar")])
        catalog.add_table("analytics.public.users", [("email", "varchar")])

        found = await DataLocator(catalog).locate("email", "a@b.com")

        assert [d.qualified_name for d in found] == ["analytics.public.users"]

    @pytest.mark.asyncio
    async def test_unreadable_catalog_returns_empty(self, catalog) -> None:
        catalog.add_table("analytics.public.users", [("email", "varchar")])
        catalog.fail_list_tables = True

        assert await DataLocator(catalog).locate("email", "a@b.com") == []


class TestEstimatedRowsDiscovery:
    """Tests for discovery used by deletion planning."""

    @pytest.mark.asyncio
    async def test_keeps_tables_with_rows(self, catalog, warehouse) -> None:
        """Test that only tables the warehouse reports rows for are kept, with the count."""
        catalog.add_table("analytics.public.users", [("email", "varchar")])
        catalog.add_table("analytics.public.accounts", [("email", "varchar")])
        warehouse.set_count("analytics.public.users", 3)
        warehouse.set_count("analytics.public.accounts", 0)

        found = await DataLocator(catalog, warehouse).locate(
            "email", "a@b.com", policy=DiscoveryPolicy.ESTIMATED_ROWS
        )

        assert [d.qualified_name for d in found] == ["analytics.public.users"]
        assert found[0].estimated_rows == 3

    @pytest.mark.asyncio
    async def test_low_confidence_table_kept_when_rows_exist(self, catalog, warehouse) -> None:
        """Test that the relevance threshold does not apply to row-estimate discovery."""
        catalog.add_table("analytics.public.events", [("backup_email_2", "varchar")])
        warehouse.set_count("analytics.public.events", 2)

        locator = DataLocator(catalog, warehouse, relevance_threshold=0.99)
        found = await locator.locate("email", "a@b.com", policy=DiscoveryPolicy.ESTIMATED_ROWS)

        assert len(found) == 1

    @pytest.mark.asyncio
    async def test_views_are_excluded(self, catalog, warehouse) -> None:
        catalog.add_table("analytics.public.user_view", [("email", "varchar")], table_type="VIEW")
        warehouse.set_count("analytics.public.user_view", 5)

        found = await DataLocator(catalog, warehouse).locate(
            "email", "a@b.com", policy=DiscoveryPolicy.ESTIMATED_ROWS
        )

        assert found == []
        assert warehouse.calls == []

    @pytest.mark.asyncio
    async def test_count_failure_skips_table(self, catalog, warehouse) -> None:
        catalog.add_table("analytics.public.users", [("email", "varchar")])
        catalog.add_table("analytics.public.accounts", [("email", "varchar")])
        warehouse.set_count("analytics.public.users", 1)
        warehouse.set_count("analytics.public.accounts", 1)
        warehouse.fail("count", "analytics.public.users")

        found = await DataLocator(catalog, warehouse).locate(
            "email", "a@b.com", policy=DiscoveryPolicy.ESTIMATED_ROWS
        )

        assert [d.qualified_name for d in found] == ["analytics.public.accounts"]

    @pytest.mark.asyncio
    async def test_counts_only_matched_columns(self, catalog, warehouse) -> None:
        catalog.add_table(
            "analytics.public.users",
            [("email", "varchar"), ("created_at", "timestamp"), ("email_verified", "bool")],
        )
        warehouse.set_count("analytics.public.users", 1)

        await DataLocator(catalog, warehouse).locate(
            "email", "a@b.com", policy=DiscoveryPolicy.ESTIMATED_ROWS
        )

        assert warehouse.calls[0][2]["columns"] == ["email", "email_verified"]

    @pytest.mark.asyncio
    async def test_requires_warehouse(self, catalog) -> None:
        with pytest.raises(ValueError, match="warehouse"):
            await DataLocator(catalog).locate(
                "email", "a@b.com", policy=DiscoveryPolicy.ESTIMATED_ROWS
            )

    @pytest.mark.asyncio
    async def test_unexpected_count_value_skips_table(self, catalog, warehouse) -> None:
        """Test that a count the locator cannot compare skips that table only."""
        catalog.add_table("analytics.public.users", [("email", "varchar")])
        catalog.add_table("analytics.public.accounts", [("email", "varchar")])
        warehouse.set_count("analytics.public.users", None)
        warehouse.set_count("analytics.public.accounts", 2)

        found = await DataLocator(catalog, warehouse).locate(
            "email", "a@b.com", policy=DiscoveryPolicy.ESTIMATED_ROWS
        )

        assert [d.qualified_name for d in found] == ["analytics.public.accounts"]
        assert found[0].estimated_rows == 2
