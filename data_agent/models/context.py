"""
Retrieval Context Models

Everything the SQL generator is given besides the plan itself.
"""

from pydantic import BaseModel, Field


class SemanticMatch(BaseModel):
    """A business term or JSONB pattern found in the question."""

    term: str
    sql_condition: str
    table: str | None = None
    description: str | None = None


class PastQuery(BaseModel):
    """A verified historical query used as a few-shot example."""

    question: str
    sql: str
    tables: list[str] = Field(default_factory=list)
    similarity: float = Field(..., ge=0.0)


class SearchChunk(BaseModel):
    """One hit from schema search."""

    source_id: str
    content: str
    score: float = 0.0
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)


class RetrievalContext(BaseModel):
    """Assembled generation context."""

    schema_context: str = ""
    semantic_matches: list[SemanticMatch] = Field(default_factory=list)
    similar_queries: list[PastQuery] = Field(default_factory=list)
    session_context: str | None = None
    join_paths: list[str] = Field(default_factory=list)
