"""
Unit tests for result rows and value normalisation.
"""

import datetime as dt
import uuid
from decimal import Decimal

import pytest

from data_agent.models.result import QueryResult
from data_agent.models.rows import Row, ValueKind, coerce_value, rows_from_records, value_kind

CUSTOMER_ID = "0b6f0f5e-2c1d-4a7e-9d3b-6a0f1e2d3c4b"


class TestCoerceValue:
    """Driver values are normalised to a closed set of kinds."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (Decimal("812.50"), 812.5),
            (Decimal("42"), 42),
            (dt.date(2024, 1, 5), "2024-01-05"),
            (dt.datetime(2024, 1, 5, 10, 30), "2024-01-05T10:30:00"),
            (uuid.UUID(CUSTOMER_ID), CUSTOMER_ID),
            (b"raw", "raw"),
            (("a", "b"), ["a", "b"]),
            ({"total": Decimal("1.5")}, {"total": 1.5}),
            (None, None),
            (True, True),
        ],
    )
    def test_coerce(self, raw, expected):
        assert coerce_value(raw) == expected

    def test_integral_decimal_becomes_int(self):
        assert isinstance(coerce_value(Decimal("42")), int)

    @pytest.mark.parametrize(
        "value,kind",
        [
            ("Ada", ValueKind.STRING),
            (3, ValueKind.NUMBER),
            (2.5, ValueKind.NUMBER),
            (False, ValueKind.BOOLEAN),
            (None, ValueKind.NULL),
            ({"city": "Austin"}, ValueKind.OBJECT),
            (["vip"], ValueKind.ARRAY),
        ],
    )
    def test_value_kind(self, value, kind):
        assert value_kind(value) == kind


class TestRow:
    """Test ordered (column, value) rows."""

    def test_column_order_preserved(self):
        row = Row.from_mapping({"last_name": "Lovelace", "first_name": "Ada", "id": "c1"})
        assert row.columns == ["last_name", "first_name", "id"]
        assert list(row) == [("last_name", "Lovelace"), ("first_name", "Ada"), ("id", "c1")]

    def test_duplicate_column_replaces_in_place(self):
        row = Row([("id", "c1"), ("total", 1), ("id", "c2")])
        assert row.items() == [("id", "c2"), ("total", 1)]

    def test_lookup(self):
        row = Row.from_mapping({"total_spent": Decimal("812.50")})

        assert row.get("total_spent") == 812.5
        assert row["total_spent"] == 812.5
        assert row.get("missing") is None
        assert row.get("missing", "-") == "-"
        assert "total_spent" in row
        assert row.kind("total_spent") == ValueKind.NUMBER
        with pytest.raises(KeyError):
            row["missing"]

    def test_with_columns_keeps_existing_values(self):
        row = Row.from_mapping({"id": "c1", "first_name": "Ada"})

        merged = row.with_columns([("first_name", "IGNORED"), ("segment", "VIP")])

        assert merged.to_dict() == {"id": "c1", "first_name": "Ada", "segment": "VIP"}
        assert row.columns == ["id", "first_name"]

    def test_with_value_replaces(self):
        row = Row.from_mapping({"id": "c1", "stage": "open"})
        updated = row.with_value("stage", "won")

        assert updated.to_dict() == {"id": "c1", "stage": "won"}
        assert row.get("stage") == "open"

    def test_without(self):
        row = Row.from_mapping({"customer_id": "c1", "product": "Ribeye", "quantity": 2})
        assert row.without("customer_id").columns == ["product", "quantity"]

    def test_equality(self):
        assert Row.from_mapping({"a": 1, "b": 2}) == Row([("a", 1), ("b", 2)])
        assert Row.from_mapping({"a": 1, "b": 2}) != Row([("b", 2), ("a", 1)])

    def test_rows_from_records(self):
        rows = rows_from_records([{"id": "c1"}, {"id": "c2"}])
        assert [row.get("id") for row in rows] == ["c1", "c2"]


class TestPydanticIntegration:
    """Rows validate from mappings or pairs and serialise as dicts."""

    def test_result_accepts_mappings_and_pairs(self):
        result = QueryResult(
            success=True,
            data=[{"id": "c1", "total": Decimal("2.50")}, [("id", "c2"), ("total", 3)]],
        )

        assert all(isinstance(row, Row) for row in result.data)
        assert result.data[0].get("total") == 2.5
        assert result.columns == ["id", "total"]

    def test_dump_as_dicts(self):
        result = QueryResult(success=True, data=[Row.from_mapping({"id": "c1", "tags": ["vip"]})])
        assert result.model_dump()["data"] == [{"id": "c1", "tags": ["vip"]}]

    def test_invalid_row(self):
        with pytest.raises(ValueError):
            QueryResult(success=True, data=["not a row"])
