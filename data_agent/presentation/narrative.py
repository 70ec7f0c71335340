"""
Narrative Summaries

Pre-rendered, factual text built directly from result rows. A downstream
language model paraphrases this text instead of reading numbers off a
table, so every name and figure it repeats was produced here.
"""

import json
import re
from collections.abc import Sequence

from data_agent.models.result import FieldConfidence
from data_agent.models.rows import Row, RowValue, ValueKind, value_kind
from data_agent.presentation.formatter import (
    NO_RESULTS,
    format_column_name,
    format_currency,
    format_number,
    to_number,
)
from data_agent.semantic.classifier import ColumnClassifier, default_classifier

MAX_NARRATIVE_VALUE = 80
MAX_EXTRA_METRICS = 2
MAX_LABEL_DETAILS = 3

CONFIDENCE_MARKERS = {
    "ai_inferred": "AI-inferred",
    "computed": "computed",
}


def capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


def format_narrative_value(
    column: str, value: RowValue, classifier: ColumnClassifier | None = None
) -> str:
    """Type-aware rendering of one value for narrative text."""
    classifier = classifier or default_classifier()
    kind = value_kind(value)
    if kind == ValueKind.NULL:
        return "N/A"
    if kind == ValueKind.BOOLEAN:
        return "Yes" if value else "No"

    number = to_number(value)
    if number is not None:
        if classifier.is_money(column):
            return format_currency(number)
        return format_number(number)

    if kind == ValueKind.ARRAY:
        return f"{len(value)} items"
    if kind == ValueKind.OBJECT:
        return json.dumps(value)[:MAX_NARRATIVE_VALUE]

    text = str(value)
    if len(text) > MAX_NARRATIVE_VALUE:
        return text[: MAX_NARRATIVE_VALUE - 3] + "..."
    return text


def primary_label_column(rows: Sequence[Row], classifier: ColumnClassifier) -> str:
    """The column that names each row: a label column, else the first non-id column."""
    columns = rows[0].columns
    labels = classifier.label_columns(columns)
    if labels:
        return labels[0]
    for column in columns:
        if not classifier.is_identifier(column):
            return column
    return columns[0]


def build_detail_narrative(row: Row, classifier: ColumnClassifier | None = None) -> str:
    """Key/value bullet list for a single row, identifiers left out."""
    classifier = classifier or default_classifier()
    lines = []
    for column, value in row:
        if value is None or classifier.is_hidden(column, value):
            continue
        lines.append(
            f"- **{format_column_name(column)}**: "
            f"{format_narrative_value(column, value, classifier)}"
        )
    return "\n".join(lines)


def build_narrative_summary(
    rows: Sequence[Row], intent: str, classifier: ColumnClassifier | None = None
) -> str:
    """
    Factual summary of a result.

    One row gives a key/value list. Several rows give a numbered list, one
    line per row, led by the row's label and its primary metric.
    """
    if not rows:
        return NO_RESULTS
    classifier = classifier or default_classifier()

    if len(rows) == 1:
        return build_detail_narrative(rows[0], classifier)

    columns = rows[0].columns
    label_column = primary_label_column(rows, classifier)
    numeric_columns = classifier.numeric_columns(rows)
    value_column = numeric_columns[0] if numeric_columns else None

    lines = [f"**{capitalize(intent)}** ({len(rows)} results):\n"]
    for position, row in enumerate(rows, start=1):
        label = format_narrative_value(label_column, row.get(label_column), classifier)

        if value_column:
            value = format_narrative_value(value_column, row.get(value_column), classifier)
            extras = ", ".join(
                f"{format_column_name(c)}: {format_narrative_value(c, row.get(c), classifier)}"
                for c in numeric_columns[1 : 1 + MAX_EXTRA_METRICS]
            )
            suffix = f" ({extras})" if extras else ""
            lines.append(
                f"{position}. **{label}** - {format_column_name(value_column)}: {value}{suffix}"
            )
        else:
            details = ", ".join(
                f"{format_column_name(c)}: {format_narrative_value(c, row.get(c), classifier)}"
                for c in [c for c in columns if c != label_column][:MAX_LABEL_DETAILS]
            )
            lines.append(f"{position}. **{label}**" + (f" - {details}" if details else ""))

    return "\n".join(lines)


def annotate_confidence(narrative: str, field_confidence: Sequence[FieldConfidence]) -> str:
    """
    Mark non-verified fields inline and add a footnote naming them.

    A field's ``**Header**: value`` occurrences get an ``_(AI-inferred)_``
    or ``_(computed)_`` marker appended.
    """
    if not narrative:
        return ""

    flagged = [fc for fc in field_confidence if fc.confidence in CONFIDENCE_MARKERS]
    if not flagged:
        return narrative

    annotated = narrative
    seen: set[str] = set()
    for fc in flagged:
        if fc.field in seen:
            continue
        seen.add(fc.field)
        header = re.escape(format_column_name(fc.field))
        marker = CONFIDENCE_MARKERS[fc.confidence]
        annotated = re.sub(
            rf"(\*\*{header}\*\*:[ \t]*[^\n]+)", rf"\1 _({marker})_", annotated
        )

    notes = []
    inferred = _unique_headers(fc for fc in flagged if fc.confidence == "ai_inferred")
    computed = _unique_headers(fc for fc in flagged if fc.confidence == "computed")
    if inferred:
        verb = "is" if len(inferred) == 1 else "are"
        notes.append(
            f"_Note: {', '.join(inferred)} {verb} AI-generated and may not be 100% accurate._"
        )
    if computed:
        verb = "is" if len(computed) == 1 else "are"
        notes.append(f"_Note: {', '.join(computed)} {verb} computed from other data._")

    return annotated + "\n\n" + "\n".join(notes)


def _unique_headers(entries) -> list[str]:
    return list(dict.fromkeys(format_column_name(fc.field) for fc in entries))
