"""
Unit tests for PresenterAgent.

The presenter makes no LLM calls: row-count validation, visualization,
narrative and output templates are all derived from the rows.
"""

import pytest

from data_agent.agents.presenter import PresenterAgent, validate_row_count
from data_agent.models.agent import PresenterAgentInput
from data_agent.models.plan import QueryPlan
from data_agent.models.result import FieldConfidence, QueryResult
from data_agent.models.rows import Row

TOP_CUSTOMERS = [
    {"first_name": "Ada", "total_spent": 812.5},
    {"first_name": "Grace", "total_spent": 640.0},
    {"first_name": "Linus", "total_spent": 512.25},
]


def make_result(records: list[dict], sql: str = "SELECT 1 LIMIT 100", **extra) -> QueryResult:
    rows = [Row.from_mapping(record) for record in records]
    return QueryResult(success=True, sql=sql, data=rows, row_count=len(rows), **extra)


@pytest.fixture
def presenter():
    return PresenterAgent()


# ============================================================================
# Row-count Contract
# ============================================================================


class TestValidateRowCount:
    """A short result is a defect only when the SQL LIMIT caused it."""

    def test_limit_below_request_needs_retry(self):
        result = make_result(TOP_CUSTOMERS, sql="SELECT * FROM ecom_customers LIMIT 3")
        plan = QueryPlan(intent="top 5 customers", expected_count=5)

        outcome = validate_row_count(result, plan)

        assert outcome.needs_retry
        assert outcome.reason == (
            "User asked for 5 results but SQL has LIMIT 3. Change LIMIT to 5."
        )

    def test_matching_limit_with_fewer_rows_is_fine(self):
        result = make_result(TOP_CUSTOMERS, sql="SELECT * FROM ecom_customers LIMIT 5")
        plan = QueryPlan(intent="top 5 customers", expected_count=5)
        assert not validate_row_count(result, plan).needs_retry

    def test_no_expected_count(self):
        result = make_result(TOP_CUSTOMERS, sql="SELECT * FROM ecom_customers LIMIT 1")
        assert not validate_row_count(result, QueryPlan(intent="customers")).needs_retry

    def test_enough_rows(self):
        result = make_result(TOP_CUSTOMERS, sql="SELECT * FROM ecom_customers LIMIT 3")
        plan = QueryPlan(intent="top 3 customers", expected_count=3)
        assert not validate_row_count(result, plan).needs_retry


# ============================================================================
# Presentation
# ============================================================================


class TestPresent:
    """Test the artefacts attached to a result."""

    def test_violation_attaches_nothing(self, presenter):
        result = make_result(TOP_CUSTOMERS, sql="SELECT * FROM ecom_customers LIMIT 3")
        plan = QueryPlan(intent="top 5 customers by spend", expected_count=5)

        outcome = presenter.present(result, plan)

        assert outcome.needs_retry
        assert result.visualization is None
        assert result.narrative_summary is None

    def test_violation_presented_when_not_enforced(self, presenter):
        result = make_result(TOP_CUSTOMERS, sql="SELECT * FROM ecom_customers LIMIT 3")
        plan = QueryPlan(intent="top 5 customers by spend", expected_count=5)

        outcome = presenter.present(result, plan, enforce_row_count=False)

        assert not outcome.needs_retry
        assert result.visualization is not None

    def test_ranking_question_gets_ranked_list(self, presenter):
        result = make_result(TOP_CUSTOMERS)
        plan = QueryPlan(intent="top customers by spend")

        presenter.present(result, plan)

        assert result.output_template == "ranked_list"
        spec = result.visualization
        assert spec.type == "chart"
        assert spec.chart_type == "bar"
        assert spec.x_key == "first_name"
        assert spec.y_keys == ["total_spent"]
        assert [point["first_name"] for point in spec.chart_data] == ["Ada", "Grace", "Linus"]
        assert result.narrative_summary.startswith("**Top customers by spend** (3 results):")
        assert "1. **Ada** - Total Spent: $812.50" in result.narrative_summary

    def test_single_customer_gets_profile_with_confidence(self, presenter):
        result = make_result(
            [
                {
                    "id": "0b6f0f5e-2c1d-4a7e-9d3b-6a0f1e2d3c4b",
                    "first_name": "Ada",
                    "last_name": "Lovelace",
                    "total_spent": 812.5,
                    "lifecycle_stage": "champion",
                }
            ],
            field_confidence=[
                FieldConfidence(
                    field="lifecycle_stage",
                    confidence="ai_inferred",
                    source_table="customer_behavioral_profiles",
                )
            ],
        )
        plan = QueryPlan(intent="tell me about Ada", presentation_hint="detail")

        presenter.present(result, plan)

        assert result.output_template == "customer_profile"
        spec = result.visualization
        assert spec.type == "profile"
        assert spec.title == "Ada Lovelace"
        sections = {section.title: section for section in spec.profile_sections}
        assert list(sections) == ["Overview", "Purchase History", "Behavioral Profile"]
        lifecycle = sections["Behavioral Profile"].fields[0]
        assert lifecycle.label == "Lifecycle Stage"
        assert lifecycle.confidence == "ai_inferred"
        assert "**Lifecycle Stage**: champion _(AI-inferred)_" in result.narrative_summary
        assert "_Note: Lifecycle Stage is AI-generated" in result.narrative_summary
        assert "Id" not in result.narrative_summary

    def test_many_rows_get_table(self, presenter):
        records = [{"email": f"user{i}@acme.test", "orders_count": i} for i in range(20)]
        result = make_result(records)

        presenter.present(result, QueryPlan(intent="customer emails"))

        assert result.visualization.type == "table"
        assert result.visualization.table_footer == "20 results"
        assert result.output_template is None

    def test_failed_result_untouched(self, presenter):
        result = QueryResult.failure("It broke", error="boom")

        outcome = presenter.present(result, QueryPlan(intent="anything", expected_count=5))

        assert not outcome.needs_retry
        assert result.visualization is None

    @pytest.mark.asyncio
    async def test_execute_returns_outcome(self, presenter, sample_schema_map):
        result = make_result(TOP_CUSTOMERS, sql="SELECT * FROM ecom_customers LIMIT 2")

        output = await presenter(
            PresenterAgentInput(
                query="top 4 customers",
                org_id="org-acme",
                result=result,
                plan=QueryPlan(intent="top 4 customers", expected_count=4),
                schema_map=sample_schema_map,
            )
        )

        assert output.success
        assert output.outcome.needs_retry
        assert "Change LIMIT to 4." in output.outcome.reason
