"""
Session Models

Per-conversation state used to resolve follow-ups ("their orders",
"those zip codes") and to summarise recent turns for SQL generation.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class QueryTurn(BaseModel):
    """One completed question/answer exchange."""

    question: str
    sql: str
    tables: list[str] = Field(default_factory=list)
    domain: str = "all"
    entity_ids: list[str] = Field(default_factory=list)
    result_values: dict[str, list[Any]] = Field(
        default_factory=dict, description="Column -> values a later turn may refer back to"
    )
    result_summary: str = ""
    timestamp: float

    model_config = ConfigDict(frozen=True)


class DataAgentSession(BaseModel):
    """State for one (org, conversation) pair."""

    session_id: str
    org_id: str
    current_domain: str | None = None
    active_entity_type: str | None = None
    active_entity_ids: list[str] = Field(default_factory=list)
    queries: list[QueryTurn] = Field(default_factory=list)
    last_activity: float

    @property
    def key(self) -> str:
        return session_key(self.org_id, self.session_id)

    @property
    def last_turn(self) -> QueryTurn | None:
        return self.queries[-1] if self.queries else None


def session_key(org_id: str, session_id: str) -> str:
    return f"{org_id}:{session_id}"
