"""
Unit tests for the result stitcher.

Tests cover the three stitch strategies, partial and total sub-query
failure, and the single-result pass-through.
"""

import pytest

from data_agent.models.plan import SubQuery
from data_agent.models.result import QueryResult
from data_agent.models.rows import Row
from data_agent.pipeline.stitcher import SOURCE_COLUMN, SubQueryResult, nested_label, stitch


def sub_result(
    sub_query_id: str,
    records: list[dict],
    join_key: str = "id",
    depends_on: list[str] | None = None,
    execution_time_ms: float = 5.0,
) -> SubQueryResult:
    rows = [Row.from_mapping(record) for record in records]
    return SubQueryResult(
        id=sub_query_id,
        result=QueryResult(
            success=True,
            sql=f"SELECT {sub_query_id}",
            data=rows,
            row_count=len(rows),
            execution_time_ms=execution_time_ms,
        ),
        sub_query=SubQuery(
            id=sub_query_id, intent=sub_query_id, join_key=join_key, depends_on=depends_on
        ),
    )


def failed_sub_result(sub_query_id: str, error: str) -> SubQueryResult:
    return SubQueryResult(
        id=sub_query_id,
        result=QueryResult.failure("failed", error=error),
        sub_query=SubQuery(id=sub_query_id, intent=sub_query_id),
    )


@pytest.fixture
def customers():
    return sub_result(
        "sq_1",
        [
            {"id": "c1", "first_name": "Ada", "total_spent": 812.5},
            {"id": "c2", "first_name": "Grace", "total_spent": 640.0},
        ],
    )


@pytest.fixture
def orders():
    return sub_result(
        "sq_2",
        [
            {"customer_id": "c1", "product": "Ribeye", "quantity": 2},
            {"customer_id": "c1", "product": "Salmon", "quantity": 1},
            {"customer_id": "c9", "product": "Lobster", "quantity": 1},
        ],
        join_key="customer_id",
        depends_on=["sq_1"],
    )


# ============================================================================
# Strategies
# ============================================================================


class TestMergeColumns:
    """Left join on the stitch key."""

    def test_matching_rows_gain_columns(self, customers):
        segments = sub_result(
            "sq_2",
            [{"id": "c1", "segment": "VIP", "first_name": "IGNORED"}],
            depends_on=["sq_1"],
        )

        result = stitch([customers, segments], "merge_columns", "id")

        assert result.success
        assert result.row_count == 2
        assert result.data[0].to_dict() == {
            "id": "c1",
            "first_name": "Ada",
            "total_spent": 812.5,
            "segment": "VIP",
        }
        # Unmatched anchor rows simply lack the extra columns
        assert result.data[1].to_dict() == {"id": "c2", "first_name": "Grace", "total_spent": 640.0}
        assert result.stitch_key == "id"
        assert result.execution_time_ms == 10.0
        assert result.sql == "-- sq_1\nSELECT sq_1\n\n-- sq_2\nSELECT sq_2"
        assert len(result.sub_results) == 2

    def test_join_key_of_child_used(self, customers, orders):
        result = stitch([customers, orders], "merge_columns", "id")
        assert result.data[0].get("product") == "Salmon"


class TestNested:
    """Anchor rows get an array of their child rows."""

    def test_children_grouped_under_anchor(self, customers, orders):
        result = stitch([customers, orders], "nested", "id")

        label = nested_label("sq_2")
        assert label == "_sq_2_data"
        first, second = result.data
        assert first.get(label) == [
            {"product": "Ribeye", "quantity": 2},
            {"product": "Salmon", "quantity": 1},
        ]
        assert second.get(label) == []
        assert result.row_count == 2

    def test_empty_anchor_returns_anchor_result(self, orders):
        empty_anchor = sub_result("sq_1", [])

        result = stitch([empty_anchor, orders], "nested", "id")

        assert result.success
        assert result.row_count == 0
        assert result.stitch_key == "id"
        assert len(result.sub_results) == 2


class TestAppendRows:
    """Concatenation tagged with the source sub-query."""

    def test_rows_tagged_with_source(self, customers, orders):
        result = stitch([customers, orders], "append_rows")

        assert result.row_count == 5
        assert [row.get(SOURCE_COLUMN) for row in result.data] == [
            "sq_1",
            "sq_1",
            "sq_2",
            "sq_2",
            "sq_2",
        ]
        assert result.stitch_key is None


# ============================================================================
# Failures and Edge Cases
# ============================================================================


class TestStitchEdgeCases:
    """Test failures and degenerate input."""

    def test_single_result_passes_through(self, customers):
        assert stitch([customers]) is customers.result

    def test_no_results(self):
        result = stitch([])
        assert not result.success
        assert result.error == "No sub-query results to stitch"

    def test_failed_sub_results_kept_for_audit(self, customers):
        result = stitch([customers, failed_sub_result("sq_2", "timeout")], "nested")

        assert result.success
        assert result.row_count == 2
        assert nested_label("sq_2") not in result.data[0]
        assert [r.success for r in result.sub_results] == [True, False]
        assert result.sub_results[1].error == "timeout"
        assert "-- sq_2 (failed)" in result.sql

    def test_failed_sub_result_without_error_is_marked(self, customers):
        silent = SubQueryResult(
            id="sq_2",
            result=QueryResult(success=False),
            sub_query=SubQuery(id="sq_2", intent="sq_2"),
        )

        result = stitch([customers, silent], "merge_columns")

        assert result.sub_results[1].error == "Sub-query sq_2 failed"
        assert silent.result.error is None

    def test_failed_anchor_reanchors_on_dependent_join_key(self, orders):
        addresses = sub_result(
            "sq_3",
            [{"customer_id": "c1", "city": "Austin"}],
            join_key="customer_id",
            depends_on=["sq_1"],
        )

        result = stitch(
            [failed_sub_result("sq_1", "bad column"), orders, addresses], "nested", "id"
        )

        assert result.success
        assert result.row_count == 3
        label = nested_label("sq_3")
        assert [row.get(label) for row in result.data] == [
            [{"city": "Austin"}],
            [{"city": "Austin"}],
            [],
        ]
        assert len(result.sub_results) == 3
        assert not result.sub_results[0].success

    def test_failed_anchor_merge_uses_dependent_join_key(self, orders):
        addresses = sub_result(
            "sq_3",
            [{"customer_id": "c9", "city": "Boston"}],
            join_key="customer_id",
            depends_on=["sq_1"],
        )

        result = stitch(
            [failed_sub_result("sq_1", "bad column"), orders, addresses], "merge_columns", "id"
        )

        assert [row.get("city") for row in result.data] == [None, None, "Boston"]

    def test_all_failed(self):
        result = stitch(
            [failed_sub_result("sq_1", "bad column"), failed_sub_result("sq_2", "timeout")]
        )

        assert not result.success
        assert result.error == "All sub-queries failed: sq_1: bad column; sq_2: timeout"
        assert result.formatted_message.startswith("Unable to complete analysis")
