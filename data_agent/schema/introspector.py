"""Live schema introspection with a per-tenant TTL cache."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable

from data_agent.connectors.base import BaseConnector, ColumnRecord, ConnectorError
from data_agent.models.schema import (
    ColumnSchema,
    DomainType,
    RelationshipSchema,
    SchemaMap,
    TableSchema,
)
from data_agent.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300
JSONB_SAMPLE_BATCH_SIZE = 5

BEHAVIORAL_TABLES = frozenset({"customer_behavioral_profiles", "segments", "segment_members"})
IDENTITY_TABLES = frozenset({"customer_identity_links"})


def classify_domain(table_name: str) -> DomainType:
    """Assign a business domain from table naming conventions."""
    if table_name.startswith("ecom_"):
        return "ecommerce"
    if table_name.startswith("crm_"):
        return "crm"
    if table_name.startswith(("email_", "campaign_")):
        return "campaigns"
    if table_name in BEHAVIORAL_TABLES:
        return "behavioral"
    if table_name in IDENTITY_TABLES:
        return "identity"
    return "internal"


def describe_table(table_name: str, columns: Iterable[ColumnSchema], domain: str) -> str:
    parts = []
    for column in columns:
        text = f"{column.name} ({column.type}"
        if column.jsonb_keys:
            text += f", keys: {', '.join(column.jsonb_keys)}"
        parts.append(text + ")")
    return f"Table: {table_name} | Domain: {domain} | Columns: {', '.join(parts)}"


def get_available_domains(schema_map: SchemaMap) -> list[str]:
    """Domains that have at least one table, in first-seen order. Internal is excluded."""
    domains: list[str] = []
    for table in schema_map.tables.values():
        if table.domain != "internal" and table.domain not in domains:
            domains.append(table.domain)
    return domains


def get_tables_for_domain(schema_map: SchemaMap, domain: str) -> list[TableSchema]:
    return [table for table in schema_map.tables.values() if table.domain == domain]


def get_schema_description(schema_map: SchemaMap, tables: Iterable[str] | None = None) -> str:
    """One description line per table. Internal tables are never described."""
    wanted = set(tables) if tables is not None else None
    lines = [
        table.description
        for table in schema_map.user_tables()
        if wanted is None or table.name in wanted
    ]
    return "\n".join(lines)


class SchemaIntrospector:
    """
    Builds SchemaMaps from information_schema and caches them per tenant.

    Usage:
        introspector = SchemaIntrospector(connector, ttl_seconds=300)
        schema_map = await introspector.get_schema_map("org-1")
    """

    def __init__(
        self,
        connector: BaseConnector,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Clock | None = None,
        schema_name: str = "public",
        jsonb_sample_limit: int = 50,
    ) -> None:
        self.connector = connector
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SystemClock()
        self.schema_name = schema_name
        self.jsonb_sample_limit = jsonb_sample_limit
        self._cache: dict[str, SchemaMap] = {}

    async def get_schema_map(self, org_id: str) -> SchemaMap:
        """
        Return the tenant's schema, introspecting only when the cached copy is missing or stale.

        Raises:
            SchemaError: If the column or foreign key metadata cannot be read
        """
        cached = self._cache.get(org_id)
        if cached and not cached.is_expired(self.clock.now(), self.ttl_seconds):
            return cached

        schema_map = await self.introspect(org_id)
        self._cache[org_id] = schema_map
        return schema_map

    def invalidate(self, org_id: str) -> None:
        self._cache.pop(org_id, None)

    async def introspect(self, org_id: str) -> SchemaMap:
        columns = await self.connector.fetch_columns(self.schema_name)
        foreign_keys = await self.connector.fetch_foreign_keys(self.schema_name)

        columns_by_table: dict[str, list[ColumnSchema]] = defaultdict(list)
        for record in columns:
            columns_by_table[record.table_name].append(_to_column(record))

        relationships_by_table: dict[str, list[RelationshipSchema]] = defaultdict(list)
        for fk in foreign_keys:
            relationships_by_table[fk.source_table].append(
                RelationshipSchema(
                    target_table=fk.target_table,
                    source_column=fk.source_column,
                    target_column=fk.target_column,
                    constraint_name=fk.constraint_name,
                )
            )

        jsonb_keys = await self._sample_jsonb_columns(org_id, columns_by_table)

        tables: dict[str, TableSchema] = {}
        for table_name, table_columns in columns_by_table.items():
            for column in table_columns:
                keys = jsonb_keys.get((table_name, column.name))
                if keys:
                    column.jsonb_keys = keys
            domain = classify_domain(table_name)
            tables[table_name] = TableSchema(
                name=table_name,
                columns=table_columns,
                relationships=relationships_by_table.get(table_name, []),
                description=describe_table(table_name, table_columns, domain),
                domain=domain,
            )

        logger.info(
            f"Introspected {len(tables)} tables for org {org_id} "
            f"({len(jsonb_keys)} JSONB columns sampled)",
            extra={"org_id": org_id, "tables": len(tables)},
        )
        return SchemaMap(tables=tables, indexed_at=self.clock.now())

    async def _sample_jsonb_columns(
        self, org_id: str, columns_by_table: dict[str, list[ColumnSchema]]
    ) -> dict[tuple[str, str], list[str]]:
        targets: list[tuple[str, str, bool]] = []
        for table_name, table_columns in columns_by_table.items():
            has_tenant_column = any(column.name == "org_id" for column in table_columns)
            for column in table_columns:
                if column.is_jsonb:
                    targets.append((table_name, column.name, has_tenant_column))

        sampled: dict[tuple[str, str], list[str]] = {}
        for start in range(0, len(targets), JSONB_SAMPLE_BATCH_SIZE):
            batch = targets[start : start + JSONB_SAMPLE_BATCH_SIZE]
            results = await asyncio.gather(
                *(self._sample(org_id, table, column, tenant) for table, column, tenant in batch)
            )
            for (table, column, _), keys in zip(batch, results):
                if keys:
                    sampled[(table, column)] = keys
        return sampled

    async def _sample(self, org_id: str, table: str, column: str, tenant_scoped: bool) -> list[str]:
        try:
            return await self.connector.sample_jsonb_keys(
                table,
                column,
                org_id=org_id if tenant_scoped else None,
                limit=self.jsonb_sample_limit,
            )
        except ConnectorError as e:
            # Key lists are advisory; a column we cannot sample is described without them.
            logger.debug(f"Skipping JSONB key sampling for {table}.{column}: {e}")
            return []


def _to_column(record: ColumnRecord) -> ColumnSchema:
    return ColumnSchema(
        name=record.column_name,
        type=record.data_type,
        nullable=record.is_nullable,
        default_value=record.column_default,
    )
