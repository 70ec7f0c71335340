"""
Agent I/O Models

Pydantic models for agent inputs, outputs, and error handling.
All agents in the pipeline use these base models to ensure type safety
and consistent data structures throughout the system.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from data_agent.models.context import RetrievalContext
from data_agent.models.plan import DecomposedPlan, QueryPlan, SubQuery
from data_agent.models.result import QueryResult
from data_agent.models.schema import SchemaMap
from data_agent.models.session import DataAgentSession


class AgentMetadata(BaseModel):
    """Metadata about agent execution."""

    agent_name: str
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None
    duration_ms: float | None = None
    llm_calls: int = 0
    tokens_used: int | None = None
    error: str | None = None

    model_config = ConfigDict(frozen=False)

    def mark_complete(self) -> None:
        """Mark execution as complete and calculate duration."""
        self.completed_at = datetime.utcnow()
        if self.started_at:
            delta = self.completed_at - self.started_at
            self.duration_ms = delta.total_seconds() * 1000


class AgentInput(BaseModel):
    """
    Base input model for all agents.

    Each agent extends this with its specific input fields.
    """

    query: str = Field(..., description="User's natural language question (or sub-query intent)")
    org_id: str = Field(..., min_length=1, description="Tenant the question is scoped to")
    context: dict[str, Any] = Field(
        default_factory=dict, description="Additional context passed between agents"
    )


class AgentOutput(BaseModel):
    """
    Base output model for all agents.

    The metadata field tracks execution details for observability.
    """

    success: bool = Field(..., description="Whether the agent executed successfully")
    data: dict[str, Any] = Field(default_factory=dict, description="Agent-specific output data")
    metadata: AgentMetadata = Field(..., description="Execution metadata")
    next_agent: str | None = Field(
        None, description="Name of next agent to execute (for pipeline routing)"
    )


class AgentError(Exception):
    """
    Custom exception for agent execution errors.

    Attributes:
        agent: Name of the agent that raised the error
        message: Error description
        recoverable: Whether the pipeline can retry or continue
        context: Additional context for debugging
    """

    def __init__(
        self,
        agent: str,
        message: str,
        recoverable: bool = True,
        context: dict[str, Any] | None = None,
    ):
        self.agent = agent
        self.message = message
        self.recoverable = recoverable
        self.context = context or {}
        super().__init__(f"[{agent}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "agent": self.agent,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
            "type": self.__class__.__name__,
        }


class ValidationError(AgentError):
    """Error during data validation (usually not recoverable)."""

    def __init__(self, agent: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(agent, message, recoverable=False, context=context)


class LLMError(AgentError):
    """Error during LLM API call (usually recoverable with retry)."""

    def __init__(self, agent: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(agent, message, recoverable=True, context=context)


class DatabaseError(AgentError):
    """Error during database operation (may or may not be recoverable)."""

    def __init__(
        self,
        agent: str,
        message: str,
        recoverable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(agent, message, recoverable=recoverable, context=context)


class RetrievalError(AgentError):
    """Error during context retrieval (usually recoverable)."""

    def __init__(self, agent: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(agent, message, recoverable=True, context=context)


class SQLGenerationError(AgentError):
    """Error during SQL generation."""

    def __init__(
        self,
        agent: str,
        message: str,
        recoverable: bool = True,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(agent, message, recoverable=recoverable, context=context)


class SQLSafetyError(SQLGenerationError):
    """Generated SQL is not a single read-only statement. Never retried, never executed."""

    def __init__(self, agent: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(agent, message, recoverable=False, context=context)


# ============================================================================
# PlannerAgent Models
# ============================================================================


class PlannerAgentInput(AgentInput):
    """Question plus the session and schema it is planned against."""

    session: DataAgentSession
    schema_map: SchemaMap


class PlannerAgentOutput(AgentOutput):
    plan: QueryPlan


# ============================================================================
# DecomposerAgent Models
# ============================================================================


class DecomposerAgentInput(AgentInput):
    plan: QueryPlan
    schema_map: SchemaMap


class DecomposerAgentOutput(AgentOutput):
    decomposed: DecomposedPlan | None = Field(
        None, description="None means the question is answered by a single query"
    )


# ============================================================================
# RetrieverAgent Models
# ============================================================================


class RetrieverAgentInput(AgentInput):
    plan: QueryPlan
    session: DataAgentSession
    schema_map: SchemaMap
    preloaded_schema_context: str | None = Field(
        None, description="Schema context fetched concurrently with planning"
    )


class RetrieverAgentOutput(AgentOutput):
    retrieval_context: RetrievalContext


# ============================================================================
# GeneratorAgent Models
# ============================================================================


class GeneratorAgentInput(AgentInput):
    plan: QueryPlan
    retrieval_context: RetrievalContext
    sub_query: SubQuery | None = None
    entity_id_cache: dict[str, list[str]] = Field(
        default_factory=dict, description="Sub-query id -> entity ids it produced"
    )


class GeneratorAgentOutput(AgentOutput):
    sql: str = Field(..., min_length=1)
    mode: Literal["fresh", "edit"]
    model_tier: Literal["main", "mini"]


# ============================================================================
# CorrectorAgent Models
# ============================================================================


class CorrectorAgentInput(AgentInput):
    sql: str = Field(..., min_length=1)
    session_id: str
    plan: QueryPlan
    retrieval_context: RetrievalContext
    schema_map: SchemaMap


class CorrectorAgentOutput(AgentOutput):
    result: QueryResult
    attempts: int = Field(default=1, ge=1)


# ============================================================================
# PresenterAgent Models
# ============================================================================


class PresentationOutcome(BaseModel):
    """Whether the row-count contract was violated, and how to fix it."""

    needs_retry: bool = False
    reason: str | None = None


class PresenterAgentInput(AgentInput):
    result: QueryResult
    plan: QueryPlan
    schema_map: SchemaMap


class PresenterAgentOutput(AgentOutput):
    result: QueryResult
    outcome: PresentationOutcome
