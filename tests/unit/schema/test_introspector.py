"""
Unit tests for SchemaIntrospector.

Tests cover domain classification, schema descriptions, JSONB key
sampling and the per-tenant TTL cache.
"""

import pytest

from data_agent.connectors.base import ColumnRecord, ForeignKeyRecord, SchemaError
from data_agent.schema.introspector import (
    SchemaIntrospector,
    classify_domain,
    get_available_domains,
    get_schema_description,
    get_tables_for_domain,
)

COLUMNS = [
    ColumnRecord(
        table_name="ecom_customers", column_name="id", data_type="uuid", is_nullable=False
    ),
    ColumnRecord(table_name="ecom_customers", column_name="org_id", data_type="text"),
    ColumnRecord(table_name="ecom_customers", column_name="email", data_type="text"),
    ColumnRecord(table_name="ecom_customers", column_name="default_address", data_type="jsonb"),
    ColumnRecord(table_name="ecom_orders", column_name="id", data_type="uuid"),
    ColumnRecord(table_name="ecom_orders", column_name="org_id", data_type="text"),
    ColumnRecord(table_name="ecom_orders", column_name="customer_id", data_type="uuid"),
    ColumnRecord(table_name="schema_migrations", column_name="version", data_type="text"),
    ColumnRecord(table_name="schema_migrations", column_name="meta", data_type="jsonb"),
]

FOREIGN_KEYS = [
    ForeignKeyRecord(
        source_table="ecom_orders",
        source_column="customer_id",
        target_table="ecom_customers",
        target_column="id",
        constraint_name="ecom_orders_customer_id_fkey",
    )
]


@pytest.fixture
def connector(mock_postgres_connector):
    mock_postgres_connector.fetch_columns.return_value = COLUMNS
    mock_postgres_connector.fetch_foreign_keys.return_value = FOREIGN_KEYS
    mock_postgres_connector.sample_jsonb_keys.return_value = ["city", "zip"]
    return mock_postgres_connector


@pytest.fixture
def introspector(connector, manual_clock):
    return SchemaIntrospector(connector, ttl_seconds=300, clock=manual_clock)


# ============================================================================
# Helpers
# ============================================================================


class TestClassifyDomain:
    @pytest.mark.parametrize(
        "table,domain",
        [
            ("ecom_orders", "ecommerce"),
            ("crm_deals", "crm"),
            ("email_campaigns", "campaigns"),
            ("campaign_strategy_groups", "campaigns"),
            ("segment_members", "behavioral"),
            ("customer_identity_links", "identity"),
            ("query_history", "internal"),
        ],
    )
    def test_prefixes_and_known_tables(self, table, domain):
        assert classify_domain(table) == domain


class TestSchemaHelpers:
    """Test helpers over an introspected SchemaMap."""

    def test_available_domains_exclude_internal(self, sample_schema_map):
        assert get_available_domains(sample_schema_map) == ["ecommerce", "crm", "behavioral"]

    def test_tables_for_domain(self, sample_schema_map):
        tables = get_tables_for_domain(sample_schema_map, "ecommerce")
        assert [table.name for table in tables] == ["ecom_customers", "ecom_orders"]

    def test_description_skips_internal_tables(self, sample_schema_map):
        description = get_schema_description(sample_schema_map)

        assert "query_history" not in description
        assert len(description.split("\n")) == 4

    def test_description_for_selected_tables(self, sample_schema_map):
        description = get_schema_description(sample_schema_map, ["crm_deals"])
        assert description.startswith("Table: crm_deals | Domain: crm | Columns: id (uuid)")


# ============================================================================
# Introspection
# ============================================================================


class TestIntrospect:
    """Test building a SchemaMap from connector metadata."""

    @pytest.mark.asyncio
    async def test_builds_tables(self, introspector, manual_clock):
        schema_map = await introspector.get_schema_map("org-acme")

        assert set(schema_map.tables) == {"ecom_customers", "ecom_orders", "schema_migrations"}
        assert schema_map.indexed_at == manual_clock.now()

        customers = schema_map.get("ecom_customers")
        assert customers.domain == "ecommerce"
        assert customers.column("id").nullable is False
        assert customers.column("default_address").jsonb_keys == ["city", "zip"]
        assert customers.description == (
            "Table: ecom_customers | Domain: ecommerce | Columns: id (uuid), org_id (text), "
            "email (text), default_address (jsonb, keys: city, zip)"
        )

        orders = schema_map.get("ecom_orders")
        assert orders.relationships[0].target_table == "ecom_customers"
        assert orders.relationships[0].source_column == "customer_id"
        assert schema_map.get("schema_migrations").domain == "internal"

    @pytest.mark.asyncio
    async def test_jsonb_sampling_is_tenant_scoped_when_possible(self, introspector, connector):
        await introspector.get_schema_map("org-acme")

        calls = {call.args[:2]: call.kwargs for call in connector.sample_jsonb_keys.call_args_list}
        assert calls[("ecom_customers", "default_address")]["org_id"] == "org-acme"
        # No org_id column, so the sample cannot be filtered by tenant
        assert calls[("schema_migrations", "meta")]["org_id"] is None

    @pytest.mark.asyncio
    async def test_unsampleable_jsonb_column_is_kept(self, introspector, connector):
        connector.sample_jsonb_keys.side_effect = SchemaError("permission denied")

        schema_map = await introspector.get_schema_map("org-acme")

        column = schema_map.get("ecom_customers").column("default_address")
        assert column.jsonb_keys is None
        assert "default_address (jsonb)" in schema_map.get("ecom_customers").description

    @pytest.mark.asyncio
    async def test_metadata_failure_propagates(self, introspector, connector):
        connector.fetch_columns.side_effect = SchemaError("Schema introspection failed: boom")

        with pytest.raises(SchemaError, match="boom"):
            await introspector.get_schema_map("org-acme")


class TestSchemaCache:
    """Schemas are cached per tenant for the TTL."""

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, introspector, connector, manual_clock):
        first = await introspector.get_schema_map("org-acme")
        manual_clock.advance(299)
        second = await introspector.get_schema_map("org-acme")

        assert second is first
        assert connector.fetch_columns.await_count == 1

    @pytest.mark.asyncio
    async def test_refreshed_after_ttl(self, introspector, connector, manual_clock):
        first = await introspector.get_schema_map("org-acme")
        manual_clock.advance(300)
        second = await introspector.get_schema_map("org-acme")

        assert second is not first
        assert connector.fetch_columns.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_is_per_tenant(self, introspector, connector):
        await introspector.get_schema_map("org-acme")
        await introspector.get_schema_map("org-globex")
        assert connector.fetch_columns.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, introspector, connector):
        await introspector.get_schema_map("org-acme")
        introspector.invalidate("org-acme")
        introspector.invalidate("org-unknown")
        await introspector.get_schema_map("org-acme")
        assert connector.fetch_columns.await_count == 2
