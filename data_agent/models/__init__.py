"""
Data Agent Models Module

Pydantic models for type-safe data flow through the pipeline.

Available Models:
    Agent Models:
        - AgentInput / AgentOutput / AgentMetadata
        - AgentError, ValidationError, LLMError, DatabaseError,
          RetrievalError, SQLGenerationError, SQLSafetyError

    Pipeline Models:
        - SchemaMap, TableSchema, ColumnSchema, RelationshipSchema
        - QueryPlan, DecomposedPlan, SubQuery, StructuredClarification
        - RetrievalContext, SemanticMatch, PastQuery, SearchChunk
        - QueryResult, VisualizationSpec, FieldConfidence, StageTimings
        - DataAgentSession, QueryTurn
        - Row (ordered, typed result record)

Usage:
    from data_agent.models import QueryPlan, QueryResult, Row
"""

from data_agent.models.agent import (
    AgentError,
    AgentInput,
    AgentMetadata,
    AgentOutput,
    DatabaseError,
    LLMError,
    RetrievalError,
    SQLGenerationError,
    SQLSafetyError,
    ValidationError,
)
from data_agent.models.context import PastQuery, RetrievalContext, SearchChunk, SemanticMatch
from data_agent.models.plan import (
    ClarificationOption,
    DecomposedPlan,
    QueryPlan,
    StructuredClarification,
    SubQuery,
)
from data_agent.models.result import (
    FieldConfidence,
    MetricCard,
    ProfileField,
    ProfileSection,
    QueryResult,
    StageTimings,
    VisualizationSpec,
)
from data_agent.models.rows import Row, RowValue, ValueKind
from data_agent.models.schema import ColumnSchema, RelationshipSchema, SchemaMap, TableSchema
from data_agent.models.session import DataAgentSession, QueryTurn

__all__ = [
    # Agent models
    "AgentInput",
    "AgentOutput",
    "AgentMetadata",
    "AgentError",
    "ValidationError",
    "LLMError",
    "DatabaseError",
    "RetrievalError",
    "SQLGenerationError",
    "SQLSafetyError",
    # Schema
    "ColumnSchema",
    "RelationshipSchema",
    "TableSchema",
    "SchemaMap",
    # Planning
    "QueryPlan",
    "SubQuery",
    "DecomposedPlan",
    "ClarificationOption",
    "StructuredClarification",
    # Context
    "RetrievalContext",
    "SemanticMatch",
    "PastQuery",
    "SearchChunk",
    # Results
    "QueryResult",
    "VisualizationSpec",
    "FieldConfidence",
    "MetricCard",
    "ProfileField",
    "ProfileSection",
    "StageTimings",
    "Row",
    "RowValue",
    "ValueKind",
    # Session
    "DataAgentSession",
    "QueryTurn",
]
