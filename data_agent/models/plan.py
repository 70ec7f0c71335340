"""
Planning Models

QueryPlan is the planner's output and the contract every downstream stage
reads. DecomposedPlan describes a multi-query answer and how its results
are stitched back together.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TurnType = Literal["new", "follow_up", "pivot", "refinement"]
PresentationHint = Literal["chart", "table", "detail", "auto"]
OutputTemplate = Literal[
    "customer_profile",
    "ranked_list",
    "comparison_table",
    "metric_summary",
    "detail_card",
    "auto",
]
StitchStrategy = Literal["merge_columns", "nested", "append_rows"]
STITCH_STRATEGIES: tuple[str, ...] = ("merge_columns", "nested", "append_rows")


class SubQuery(BaseModel):
    """One step of a decomposed plan."""

    id: str = Field(..., min_length=1, description="Sub-query identifier, e.g. 'sq_1'")
    intent: str = Field(..., description="What this sub-query retrieves")
    domain: str = "all"
    tables_needed: list[str] = Field(default_factory=list)
    depends_on: list[str] | None = Field(
        None, description="Sub-query ids whose entity ids this one consumes"
    )
    join_key: str = Field(default="id", min_length=1, description="Column used to stitch results")
    resolved_references: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_anchor(self) -> bool:
        return not self.depends_on


class DecomposedPlan(BaseModel):
    """A question answered by several dependent sub-queries."""

    sub_queries: list[SubQuery] = Field(..., min_length=2, max_length=4)
    stitch_key: str = Field(default="id", min_length=1)
    stitch_strategy: StitchStrategy = "merge_columns"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "sub_queries": [
                    {
                        "id": "sq_1",
                        "intent": "Top 5 customers by total spend",
                        "domain": "ecommerce",
                        "tables_needed": ["ecom_customers"],
                        "join_key": "id",
                    },
                    {
                        "id": "sq_2",
                        "intent": "Products those customers ordered",
                        "domain": "ecommerce",
                        "tables_needed": ["ecom_orders"],
                        "depends_on": ["sq_1"],
                        "join_key": "customer_id",
                    },
                ],
                "stitch_key": "id",
                "stitch_strategy": "nested",
            }
        }
    )


class ClarificationOption(BaseModel):
    """A selectable answer to a clarification question."""

    label: str
    value: str
    description: str | None = None


class StructuredClarification(BaseModel):
    """A clarification question with options the user can pick from."""

    question: str
    options: list[ClarificationOption] = Field(default_factory=list)
    allow_freeform: bool = True
    reason: Literal["multi_part", "domain_ambiguous", "term_ambiguous"]


class QueryPlan(BaseModel):
    """Planner output for one question."""

    turn_type: TurnType = "new"
    intent: str
    domain: str = "all"
    ambiguous: bool = False
    candidate_domains: list[str] = Field(default_factory=list)
    tables_needed: list[str] = Field(default_factory=list)
    resolved_references: dict[str, Any] = Field(
        default_factory=dict, description="Symbolic reference -> concrete values"
    )
    edit_instruction: str | None = None
    previous_sql: str | None = None
    needs_clarification: str | None = Field(
        None, description="Clarifying question to return instead of data"
    )
    expected_count: int | None = Field(None, ge=1)
    presentation_hint: PresentationHint | None = None
    decomposed: DecomposedPlan | None = None
    structured_clarification: StructuredClarification | None = None
    output_template: OutputTemplate | None = None

    @property
    def requests_clarification(self) -> bool:
        return self.ambiguous or bool(self.needs_clarification)
