"""
Semantic Layer Models

Static business vocabulary shipped with the code base: domains, term
synonyms, metrics, directed join paths, JSONB access patterns, null
fallbacks, and per-table data confidence.
"""

from pydantic import BaseModel, ConfigDict, Field

from data_agent.models.result import DataConfidence


class DomainConfig(BaseModel):
    tables: list[str]
    description: str
    primary_table: str

    model_config = ConfigDict(frozen=True)


class TermMapping(BaseModel):
    """Business phrases that translate to one SQL condition."""

    terms: list[str] = Field(..., min_length=1)
    sql_condition: str = Field(..., description="May contain a {term} placeholder")
    table: str
    description: str

    model_config = ConfigDict(frozen=True)


class MetricDefinition(BaseModel):
    name: str
    aliases: list[str]
    sql_expression: str
    table: str
    description: str

    model_config = ConfigDict(frozen=True)


class RelationshipPath(BaseModel):
    """A directed join edge. No reverse edge is implied."""

    from_table: str
    to_table: str
    join_sql: str
    description: str

    model_config = ConfigDict(frozen=True)


class JsonbPattern(BaseModel):
    table: str
    column: str
    keys: list[str]
    access_pattern: str = Field(..., description="Uses KEY as the key placeholder")
    description: str

    model_config = ConfigDict(frozen=True)


class FallbackPath(BaseModel):
    """Where to look when a primary column is null."""

    primary_table: str
    primary_column: str
    fallback_table: str
    fallback_column: str
    fallback_join: str
    coalesce_pattern: str = Field(..., description="COALESCE template with a KEY placeholder")
    description: str

    model_config = ConfigDict(frozen=True)


class TableConfidenceConfig(BaseModel):
    """Confidence for a whole table, or only for the listed fields."""

    table: str
    confidence: DataConfidence
    description: str
    fields: list[str] | None = None

    model_config = ConfigDict(frozen=True)


class SemanticLayerData(BaseModel):
    domains: dict[str, DomainConfig]
    terms: list[TermMapping]
    metrics: list[MetricDefinition]
    relationships: list[RelationshipPath]
    jsonb_patterns: list[JsonbPattern]
    fallbacks: list[FallbackPath] = Field(default_factory=list)
    confidence_registry: list[TableConfidenceConfig] = Field(default_factory=list)
    domain_keywords: dict[str, list[str]] = Field(default_factory=dict)
