"""
Result Models

QueryResult is what the pipeline returns for every question, along with
the presentation artefacts the presenter attaches to it.
"""

from typing import Literal

from pydantic import BaseModel, Field

from data_agent.models.rows import Row

DataConfidence = Literal["verified", "ai_inferred", "computed"]
ChartType = Literal["bar", "line", "pie", "area"]
VisualizationType = Literal["chart", "table", "profile", "metric"]


class ProfileField(BaseModel):
    label: str
    value: str
    confidence: DataConfidence = "verified"


class ProfileSection(BaseModel):
    """A titled group of fields in a single-entity profile card."""

    title: str
    fields: list[ProfileField] = Field(default_factory=list)


class MetricCard(BaseModel):
    """A headline number."""

    label: str
    value: str
    change: str | None = None
    confidence: DataConfidence = "verified"


class VisualizationSpec(BaseModel):
    """Rendering instructions derived deterministically from result shape."""

    type: VisualizationType
    title: str
    chart_type: ChartType | None = None
    chart_data: list[dict] | None = None
    x_key: str | None = None
    y_keys: list[str] | None = None
    colors: list[str] | None = None
    table_headers: list[str] | None = None
    table_rows: list[list[str]] | None = None
    table_footer: str | None = None
    profile_sections: list[ProfileSection] | None = None
    metric_cards: list[MetricCard] | None = None


class FieldConfidence(BaseModel):
    """How trustworthy a result column is."""

    field: str
    confidence: DataConfidence
    source_table: str | None = None
    description: str | None = None


class StageTimings(BaseModel):
    """Per-stage latency breakdown in milliseconds."""

    schema_ms: float = 0.0
    plan_ms: float = 0.0
    decompose_ms: float | None = None
    retrieve_ms: float = 0.0
    generate_ms: float = 0.0
    correct_ms: float = 0.0
    stitch_ms: float | None = None
    present_ms: float = 0.0
    total_ms: float = 0.0


class QueryResult(BaseModel):
    """Outcome of answering one question (or one sub-query)."""

    success: bool
    sql: str = ""
    data: list[Row] = Field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0.0
    formatted_message: str = ""
    error: str | None = None
    needs_clarification: bool = False
    visualization: VisualizationSpec | None = None
    narrative_summary: str | None = None
    stage_timings: StageTimings | None = None
    field_confidence: list[FieldConfidence] | None = None
    sub_results: list["QueryResult"] | None = None
    stitch_key: str | None = None
    output_template: str | None = None

    @property
    def columns(self) -> list[str]:
        return self.data[0].columns if self.data else []

    @property
    def has_data(self) -> bool:
        return self.success and bool(self.data)

    @classmethod
    def failure(cls, message: str, error: str | None = None, sql: str = "") -> "QueryResult":
        return cls(success=False, sql=sql, formatted_message=message, error=error)
