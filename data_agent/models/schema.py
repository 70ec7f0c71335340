"""
Schema Models

Tenant-visible database metadata as produced by the schema introspector.
"""

from typing import Literal

from pydantic import BaseModel, Field

DomainType = Literal["ecommerce", "crm", "campaigns", "behavioral", "identity", "internal"]


class ColumnSchema(BaseModel):
    """One column of a table."""

    name: str
    type: str = Field(..., description="PostgreSQL data type (text, uuid, jsonb, numeric, ...)")
    nullable: bool = True
    default_value: str | None = None
    jsonb_keys: list[str] | None = Field(
        None, description="Top-level keys sampled from live data (JSONB columns only)"
    )
    description: str | None = None

    @property
    def is_jsonb(self) -> bool:
        return self.type.lower() in {"jsonb", "json"}


class RelationshipSchema(BaseModel):
    """Foreign key from this table to another."""

    target_table: str
    source_column: str
    target_column: str
    constraint_name: str | None = None


class TableSchema(BaseModel):
    """A table with its columns, foreign keys, and business domain."""

    name: str
    columns: list[ColumnSchema] = Field(default_factory=list)
    relationships: list[RelationshipSchema] = Field(default_factory=list)
    description: str = ""
    domain: DomainType = "internal"

    def column(self, name: str) -> ColumnSchema | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class SchemaMap(BaseModel):
    """Snapshot of a tenant's tables, stamped with the time it was introspected."""

    tables: dict[str, TableSchema] = Field(default_factory=dict)
    indexed_at: float = Field(..., description="UNIX timestamp (seconds) of introspection")

    def get(self, name: str) -> TableSchema | None:
        return self.tables.get(name)

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.indexed_at >= ttl_seconds

    def user_tables(self) -> list[TableSchema]:
        """Tables outside the internal (infrastructure) domain."""
        return [table for table in self.tables.values() if table.domain != "internal"]
