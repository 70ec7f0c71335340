"""
Result Formatter

Renders query rows as the human-readable ``formatted_message``: key/value
lines for a single row, a markdown table (prefixed with an inline-table
marker the chat UI picks up) for several. Column types from the schema
snapshot drive formatting; computed columns (SUM, COUNT, ...) fall back
to name heuristics from the column classifier.
"""

import datetime as dt
import json
import re
from collections.abc import Sequence
from dataclasses import dataclass

from data_agent.models.rows import Row, RowValue, ValueKind, value_kind
from data_agent.models.schema import ColumnSchema, SchemaMap
from data_agent.semantic.classifier import ColumnClassifier, SemanticKind, default_classifier

NO_RESULTS = "No results found."
INLINE_TABLE_MARKER = "<!--INLINE_TABLE:{count}-->"
MAX_CELL_WIDTH = 40
SUMMARY_PREVIEW_ROWS = 3
SUMMARY_VALUE_WIDTH = 50

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
NUMERIC_TYPES = ("numeric", "integer", "bigint", "double", "real", "smallint", "decimal")
_ACRONYMS = (
    (re.compile(r"\bId\b"), "ID"),
    (re.compile(r"\bUrl\b"), "URL"),
    (re.compile(r"\bSql\b"), "SQL"),
)


@dataclass(frozen=True)
class ColumnFormat:
    is_currency: bool = False
    is_date: bool = False
    is_jsonb: bool = False
    is_uuid: bool = False
    is_boolean: bool = False
    is_numeric: bool = False


def column_format(column: ColumnSchema, classifier: ColumnClassifier) -> ColumnFormat:
    """Formatting flags for a column known to the schema."""
    column_type = column.type.lower()
    is_numeric = any(t in column_type for t in NUMERIC_TYPES)
    return ColumnFormat(
        is_currency=is_numeric and classifier.is_money(column.name),
        is_date="timestamp" in column_type or "date" in column_type or "time" in column_type,
        is_jsonb=column.is_jsonb,
        is_uuid=column_type == "uuid",
        is_boolean=column_type == "boolean",
        is_numeric=is_numeric,
    )


def infer_format(column: str, value: RowValue, classifier: ColumnClassifier) -> ColumnFormat:
    """Formatting flags for a computed column, inferred from its name and value."""
    kind = value_kind(value)
    is_number = kind == ValueKind.NUMBER
    return ColumnFormat(
        is_currency=is_number and classifier.is_money(column),
        is_date=kind == ValueKind.STRING and classifier.is_kind(column, SemanticKind.DATE),
        is_jsonb=kind in (ValueKind.OBJECT, ValueKind.ARRAY),
        is_uuid=kind == ValueKind.STRING and bool(UUID_PATTERN.match(value)),
        is_boolean=kind == ValueKind.BOOLEAN,
        is_numeric=is_number,
    )


def build_column_formats(
    schema_map: SchemaMap, tables: Sequence[str], classifier: ColumnClassifier
) -> dict[str, ColumnFormat]:
    formats: dict[str, ColumnFormat] = {}
    for name in tables:
        table = schema_map.get(name)
        if table is None:
            continue
        for column in table.columns:
            formats[column.name] = column_format(column, classifier)
    return formats


def format_column_name(column: str) -> str:
    """``total_spent`` -> ``Total Spent``, ``customer_id`` -> ``Customer ID``."""
    title = re.sub(r"\b\w", lambda m: m.group(0).upper(), column.replace("_", " "))
    for pattern, replacement in _ACRONYMS:
        title = pattern.sub(replacement, title)
    return title


def format_currency(value: float) -> str:
    return f"${value:,.2f}"


def format_number(value: float) -> str:
    if isinstance(value, float):
        if value.is_integer():
            return f"{int(value):,}"
        return f"{round(value, 3):,}"
    return f"{value:,}"


def to_number(value: RowValue) -> float | None:
    """A number from a numeric value or numeric string; None otherwise."""
    kind = value_kind(value)
    if kind == ValueKind.NUMBER:
        return value
    if kind == ValueKind.STRING and value.strip():
        try:
            return float(value)
        except ValueError:
            return None
    return None


def format_date(value: str) -> str:
    """ISO timestamps as ``Jan 5, 2024``; anything unparseable unchanged."""
    try:
        parsed = dt.datetime.fromisoformat(value)
    except ValueError:
        return value
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def format_jsonb(value: RowValue) -> str:
    if isinstance(value, list):
        if not value:
            return "[]"
        if not isinstance(value[0], (dict, list)):
            return ", ".join(str(item) for item in value)
        return f"[{len(value)} items]"
    if isinstance(value, dict):
        parts = [f"{k}: {v}" for k, v in value.items() if v is not None and v != ""]
        return ", ".join(parts) or "{}"
    return str(value)


def format_value(
    column: str,
    value: RowValue,
    formats: dict[str, ColumnFormat],
    classifier: ColumnClassifier | None = None,
) -> str:
    """Render one cell for the formatted message."""
    classifier = classifier or default_classifier()
    kind = value_kind(value)
    if kind == ValueKind.NULL:
        return "-"

    info = formats.get(column) or infer_format(column, value, classifier)

    if kind == ValueKind.NUMBER:
        if info.is_currency or classifier.is_money(column):
            return format_currency(value)
        return format_number(value)
    if kind == ValueKind.STRING and info.is_date:
        return format_date(value)
    if kind in (ValueKind.OBJECT, ValueKind.ARRAY):
        return format_jsonb(value)
    if kind == ValueKind.STRING and (info.is_uuid or UUID_PATTERN.match(value)):
        return value[:8] + "..."
    if kind == ValueKind.BOOLEAN:
        return "Yes" if value else "No"
    return str(value)


def format_single_row(
    row: Row, formats: dict[str, ColumnFormat], classifier: ColumnClassifier
) -> str:
    lines = []
    for column, value in row:
        if value is None:
            continue
        formatted = format_value(column, value, formats, classifier)
        lines.append(f"**{format_column_name(column)}**: {formatted}")
    return "\n".join(lines)


def format_table(
    rows: Sequence[Row], formats: dict[str, ColumnFormat], classifier: ColumnClassifier
) -> str:
    columns = rows[0].columns
    headers = [format_column_name(column) for column in columns]
    cells = [[format_value(c, row.get(c), formats, classifier) for c in columns] for row in rows]

    widths = [
        min(max(len(header), *(len(line[i]) for line in cells)), MAX_CELL_WIDTH)
        for i, header in enumerate(headers)
    ]

    parts = [
        "| " + " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)) + " |",
        "| " + " | ".join("-" * w for w in widths) + " |",
    ]
    for line in cells:
        parts.append(
            "| "
            + " | ".join(cell[:MAX_CELL_WIDTH].ljust(widths[i]) for i, cell in enumerate(line))
            + " |"
        )

    table = "\n".join(parts)
    return f"{INLINE_TABLE_MARKER.format(count=len(rows))}\n{table}"


def format_results(
    rows: Sequence[Row],
    schema_map: SchemaMap,
    tables: Sequence[str],
    classifier: ColumnClassifier | None = None,
) -> str:
    """
    Format query rows for display.

    Args:
        rows: Result rows
        schema_map: Schema snapshot used for column types
        tables: Tables the query read from
        classifier: Column-name heuristics (default rule table when omitted)

    Returns:
        Key/value lines for one row, a marked markdown table for several
    """
    if not rows:
        return NO_RESULTS
    classifier = classifier or default_classifier()
    formats = build_column_formats(schema_map, tables, classifier)
    if len(rows) == 1:
        return format_single_row(rows[0], formats, classifier)
    return format_table(rows, formats, classifier)


def _summary_value(value: RowValue) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value)[:SUMMARY_VALUE_WIDTH]
    return str(value)[:SUMMARY_VALUE_WIDTH] or None


def generate_result_summary(rows: Sequence[Row], question: str) -> str:
    """Compact text summary of a result, stored on the session turn."""
    if not rows:
        return f"No results found for: {question}"

    columns = rows[0].columns
    summary = [
        f"Query: {question}",
        f"Results: {len(rows)} row(s)",
        f"Columns: {', '.join(columns)}",
    ]
    for index, row in enumerate(rows[:SUMMARY_PREVIEW_ROWS], start=1):
        values = [v for v in (_summary_value(row.get(c)) for c in columns) if v]
        summary.append(f"Row {index}: {' | '.join(values)}")
    if len(rows) > SUMMARY_PREVIEW_ROWS:
        summary.append(f"... and {len(rows) - SUMMARY_PREVIEW_ROWS} more rows")
    return "\n".join(summary)
