"""
Result Rows

Query results are ordered (column, value) pairs rather than free-form
dicts. Values are normalised on the way in to a closed set of kinds
(string, number, boolean, null, object, array) so formatting code can
dispatch on ValueKind exhaustively.
"""

import datetime as dt
import uuid
from collections.abc import Iterable, Iterator, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from pydantic_core import core_schema

RowValue = Union[str, int, float, bool, None, dict[str, Any], list[Any]]


class ValueKind(str, Enum):
    """Closed set of value kinds a row cell can hold."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    OBJECT = "object"
    ARRAY = "array"


def coerce_value(value: Any) -> RowValue:
    """Normalise a driver value (Decimal, datetime, UUID, ...) into a RowValue."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value
    if isinstance(value, Decimal):
        if value.is_finite() and value.as_tuple().exponent >= 0:
            return int(value)
        return float(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): coerce_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [coerce_value(v) for v in value]
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def value_kind(value: RowValue) -> ValueKind:
    """Classify a normalised value."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, dict):
        return ValueKind.OBJECT
    if isinstance(value, list):
        return ValueKind.ARRAY
    raise TypeError(f"Unsupported row value type: {type(value).__name__}")


class Row:
    """
    One result record: an ordered sequence of (column, value) pairs.

    Column names are unique; assigning an existing column replaces its value
    in place and keeps the original position. Rows are treated as immutable:
    every transform returns a new Row.

    Usage:
        row = Row.from_mapping({"id": "c1", "total_spent": Decimal("812.50")})
        row.get("total_spent")          # 812.5
        row.with_columns([("city", "NYC")]).columns  # ["id", "total_spent", "city"]
    """

    __slots__ = ("_pairs", "_index")

    def __init__(self, pairs: Iterable[tuple[str, Any]] = ()):
        self._pairs: list[tuple[str, RowValue]] = []
        self._index: dict[str, int] = {}
        for column, value in pairs:
            self._set(str(column), coerce_value(value))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "Row":
        return cls(mapping.items())

    def _set(self, column: str, value: RowValue) -> None:
        position = self._index.get(column)
        if position is None:
            self._index[column] = len(self._pairs)
            self._pairs.append((column, value))
        else:
            self._pairs[position] = (column, value)

    @property
    def columns(self) -> list[str]:
        return [column for column, _ in self._pairs]

    def items(self) -> list[tuple[str, RowValue]]:
        return list(self._pairs)

    def values(self) -> list[RowValue]:
        return [value for _, value in self._pairs]

    def get(self, column: str, default: RowValue = None) -> RowValue:
        position = self._index.get(column)
        if position is None:
            return default
        return self._pairs[position][1]

    def kind(self, column: str) -> ValueKind:
        return value_kind(self.get(column))

    def with_columns(self, pairs: Iterable[tuple[str, Any]]) -> "Row":
        """Return a copy with new columns appended; existing columns are left untouched."""
        merged = Row(self._pairs)
        for column, value in pairs:
            if column not in merged:
                merged._set(column, coerce_value(value))
        return merged

    def with_value(self, column: str, value: Any) -> "Row":
        """Return a copy with ``column`` set (replacing any existing value)."""
        updated = Row(self._pairs)
        updated._set(column, coerce_value(value))
        return updated

    def without(self, *columns: str) -> "Row":
        dropped = set(columns)
        return Row((c, v) for c, v in self._pairs if c not in dropped)

    def to_dict(self) -> dict[str, RowValue]:
        return dict(self._pairs)

    def __contains__(self, column: object) -> bool:
        return column in self._index

    def __getitem__(self, column: str) -> RowValue:
        position = self._index.get(column)
        if position is None:
            raise KeyError(column)
        return self._pairs[position][1]

    def __iter__(self) -> Iterator[tuple[str, RowValue]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Row):
            return self._pairs == other._pairs
        return NotImplemented

    def __repr__(self) -> str:
        return f"Row({self._pairs!r})"

    # Pydantic integration: accept Row, mappings, or pair lists; dump as dict.
    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda row: row.to_dict()
            ),
        )

    @classmethod
    def _validate(cls, value: Any) -> "Row":
        if isinstance(value, Row):
            return value
        if isinstance(value, Mapping):
            return cls.from_mapping(value)
        if isinstance(value, (list, tuple)):
            return cls(value)
        raise ValueError(f"Cannot build a Row from {type(value).__name__}")


def rows_from_records(records: Iterable[Mapping[str, Any]]) -> list[Row]:
    """Convert driver records (asyncpg.Record, dicts) to Rows, keeping column order."""
    return [Row.from_mapping(record) for record in records]
