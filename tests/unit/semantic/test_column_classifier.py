"""
Unit tests for the column-name classifier.
"""

import pytest

from data_agent.models.rows import Row
from data_agent.semantic.classifier import (
    ColumnClassifier,
    NameRule,
    SemanticKind,
    default_classifier,
    is_numeric_value,
)


@pytest.fixture
def classifier() -> ColumnClassifier:
    return default_classifier()


class TestDefaultRules:
    """Test the shipped name heuristics."""

    @pytest.mark.parametrize(
        "column,expected",
        [
            ("total_spent", True),
            ("total_price", True),
            ("avg_order_value", True),
            ("total", True),
            ("lifetime_total_value", True),
            ("total_customers", False),
            ("orders_count", False),
            ("email", False),
        ],
    )
    def test_money(self, classifier, column, expected):
        assert classifier.is_money(column) is expected

    @pytest.mark.parametrize(
        "column,kind",
        [
            ("orders_count", SemanticKind.COUNT),
            ("num_contacts", SemanticKind.COUNT),
            ("created_at", SemanticKind.DATE),
            ("order_month", SemanticKind.DATE),
            ("first_name", SemanticKind.LABEL),
            ("stage", SemanticKind.LABEL),
            ("customer_id", SemanticKind.IDENTIFIER),
            ("org_id", SemanticKind.IDENTIFIER),
            ("zip", SemanticKind.EXTRACTABLE),
            ("email", SemanticKind.EXTRACTABLE),
        ],
    )
    def test_kinds(self, classifier, column, kind):
        assert kind in classifier.kinds(column)

    def test_identifiers_are_not_labels(self, classifier):
        assert not classifier.is_kind("customer_id", SemanticKind.LABEL)
        assert not classifier.is_kind("id", SemanticKind.LABEL)
        assert classifier.label_columns(["id", "customer_id", "customer_name"]) == [
            "customer_name"
        ]

    def test_date_columns_keep_order(self, classifier):
        columns = ["first_name", "updated_at", "signup_date", "total_spent"]
        assert classifier.date_columns(columns) == ["updated_at", "signup_date"]

    def test_entity_id_columns(self, classifier):
        assert classifier.entity_id_columns[0] == "id"
        assert "deal_id" in classifier.entity_id_columns


class TestValues:
    """Test value-based helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [(3, True), (2.5, True), ("812.50", True), ("", False), ("abc", False), (True, False)],
    )
    def test_is_numeric_value(self, value, expected):
        assert is_numeric_value(value) is expected

    def test_numeric_columns_from_first_row(self, classifier):
        rows = [
            Row.from_mapping({"first_name": "Ada", "total_spent": "812.5", "orders_count": 3}),
            Row.from_mapping({"first_name": "Bo", "total_spent": None, "orders_count": 1}),
        ]
        assert classifier.numeric_columns(rows) == ["total_spent", "orders_count"]
        assert classifier.numeric_columns([]) == []

    def test_is_hidden(self, classifier):
        assert classifier.is_hidden("id", "c1")
        assert classifier.is_hidden("external_ref", "0b6f0f5e-2c1d-4a7e-9d3b-6a0f1e2d3c4b")
        assert not classifier.is_hidden("first_name", "Ada")


class TestCustomRules:
    """The rule table is data and can be swapped."""

    def test_replacement_rules(self):
        classifier = ColumnClassifier(rules=[NameRule(SemanticKind.MONEY, exact=("mrr",))])

        assert classifier.is_money("MRR")
        assert not classifier.is_money("total_spent")

    def test_rule_requires_and_excludes(self):
        rule = NameRule(
            SemanticKind.MONEY, contains=("total",), requires=("value",), excludes=("count",)
        )

        assert rule.matches("total_value")
        assert not rule.matches("total")
        assert not rule.matches("total_value_count")
