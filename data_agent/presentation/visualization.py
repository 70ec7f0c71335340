"""
Visualization

Deterministic presentation decisions. Chart versus table versus detail
is decided from row count and column shape, never by a model:

- 1 row: detail
- an explicit presentation hint wins (chart / table / detail)
- more than 15 rows: table
- a date column and a number with at least 3 rows: line chart
- 2-15 rows with a label column and a number: bar chart
- anything else: table

A second, more specific pass may replace the generic spec with an output
template (ranked list, comparison table, metric cards, profile cards).
"""

import json
from collections.abc import Sequence
from enum import StrEnum

from data_agent.models.plan import QueryPlan
from data_agent.models.result import (
    FieldConfidence,
    MetricCard,
    ProfileField,
    ProfileSection,
    VisualizationSpec,
)
from data_agent.models.rows import Row, RowValue, ValueKind, value_kind
from data_agent.presentation.formatter import format_column_name, format_number, to_number
from data_agent.presentation.narrative import capitalize, format_narrative_value
from data_agent.semantic.classifier import UUID_PREFIX, ColumnClassifier, default_classifier

CHART_COLORS = [
    "#4F46E5",  # indigo
    "#0EA5E9",  # sky
    "#10B981",  # emerald
    "#F59E0B",  # amber
    "#EF4444",  # red
    "#8B5CF6",  # violet
    "#EC4899",  # pink
    "#06B6D4",  # cyan
]

MAX_TITLE_LENGTH = 60
MAX_CELL_LENGTH = 50
MAX_Y_KEYS = 3
MAX_CHART_ROWS = 15
MIN_LINE_ROWS = 3
MAX_PIE_ROWS = 5
MAX_RANKED_ROWS = 20
MAX_COMPARISON_ROWS = 5
MAX_METRIC_ROWS = 3

RANKING_WORDS = ("top", "best", "worst", "highest", "lowest", "most", "least", "rank")
COMPARISON_WORDS = ("compare", "versus", "vs", "difference", "side by side")
AGGREGATE_WORDS = ("total", "average", "count", "sum", "how many", "how much")
CUSTOMER_COLUMN_WORDS = ("first_name", "last_name", "email", "customer")

# Profile card sections, matched in order against lower-cased column names
PROFILE_SECTIONS: tuple[tuple[str, tuple[str, ...], str], ...] = (
    (
        "Overview",
        (
            "first_name",
            "last_name",
            "email",
            "phone",
            "city",
            "state",
            "province",
            "zip",
            "country",
            "address",
            "tags",
            "created_at",
        ),
        "verified",
    ),
    (
        "Purchase History",
        ("order", "spent", "total", "revenue", "purchase", "avg_order"),
        "verified",
    ),
    (
        "Behavioral Profile",
        (
            "lifecycle",
            "communication",
            "engagement",
            "risk",
            "affinity",
            "behavioral",
            "segment",
            "score",
            "preference",
        ),
        "ai_inferred",
    ),
)
ADDITIONAL_SECTION = "Additional Details"


class PresentationType(StrEnum):
    BAR_CHART = "bar_chart"
    LINE_CHART = "line_chart"
    PIE_CHART = "pie_chart"
    TABLE = "table"
    DETAIL = "detail"


CHART_TYPES = {
    PresentationType.BAR_CHART: "bar",
    PresentationType.LINE_CHART: "line",
    PresentationType.PIE_CHART: "pie",
}


def build_title(intent: str) -> str:
    title = capitalize(intent)
    if len(title) > MAX_TITLE_LENGTH:
        return title[: MAX_TITLE_LENGTH - 3] + "..."
    return title


def format_cell_value(value: RowValue) -> str:
    """Compact rendering of one cell for table and profile specs."""
    kind = value_kind(value)
    if kind == ValueKind.NULL:
        return "-"
    if kind == ValueKind.BOOLEAN:
        return "Yes" if value else "No"
    if kind == ValueKind.NUMBER:
        if abs(value) >= 1 and not float(value).is_integer():
            return f"{value:,.2f}"
        return format_number(value)
    if kind == ValueKind.ARRAY:
        return f"[{len(value)} items]"
    if kind == ValueKind.OBJECT:
        return json.dumps(value)[:MAX_CELL_LENGTH]
    if len(value) > MAX_CELL_LENGTH:
        return value[: MAX_CELL_LENGTH - 3] + "..."
    return value


def _mentions(text: str, words: Sequence[str]) -> bool:
    return any(word in text for word in words)


# ============================================================================
# Classification
# ============================================================================


def classify_presentation(
    plan: QueryPlan, rows: Sequence[Row], classifier: ColumnClassifier | None = None
) -> PresentationType:
    classifier = classifier or default_classifier()
    if len(rows) == 1:
        return PresentationType.DETAIL

    hint = plan.presentation_hint or "auto"
    if hint == "detail":
        return PresentationType.DETAIL
    if hint == "table":
        return PresentationType.TABLE
    if hint == "chart":
        return pick_chart_type(rows, classifier)
    return auto_classify(rows, classifier)


def auto_classify(
    rows: Sequence[Row], classifier: ColumnClassifier | None = None
) -> PresentationType:
    classifier = classifier or default_classifier()
    columns = rows[0].columns if rows else []
    numeric = classifier.numeric_columns(rows)
    dates = classifier.date_columns(columns)
    labels = classifier.label_columns(columns)

    if not numeric or len(rows) > MAX_CHART_ROWS:
        return PresentationType.TABLE
    if dates and len(rows) >= MIN_LINE_ROWS:
        return PresentationType.LINE_CHART
    # Ranking questions ("top 5 by spend") and plain label + number shapes both chart as bars
    if len(rows) >= 2 and labels:
        return PresentationType.BAR_CHART
    return PresentationType.TABLE


def pick_chart_type(
    rows: Sequence[Row], classifier: ColumnClassifier | None = None
) -> PresentationType:
    classifier = classifier or default_classifier()
    columns = rows[0].columns if rows else []
    numeric = classifier.numeric_columns(rows)
    if classifier.date_columns(columns) and numeric:
        return PresentationType.LINE_CHART
    if len(rows) <= MAX_PIE_ROWS and len(numeric) == 1:
        return PresentationType.PIE_CHART
    return PresentationType.BAR_CHART


# ============================================================================
# Generic specs
# ============================================================================


def build_chart_spec(
    presentation: PresentationType,
    rows: Sequence[Row],
    intent: str,
    classifier: ColumnClassifier | None = None,
) -> VisualizationSpec | None:
    classifier = classifier or default_classifier()
    columns = rows[0].columns
    numeric = classifier.numeric_columns(rows)
    if not numeric:
        return None

    dates = classifier.date_columns(columns)
    labels = classifier.label_columns(columns)
    if presentation == PresentationType.LINE_CHART and dates:
        x_key = dates[0]
    elif labels:
        x_key = labels[0]
    else:
        others = [column for column in columns if column not in numeric]
        if not others:
            return None
        x_key = others[0]

    y_keys = numeric[:MAX_Y_KEYS]

    # Numeric strings become numbers so chart renderers can plot them
    chart_data = []
    for row in rows:
        point = row.to_dict()
        for key in y_keys:
            number = to_number(point.get(key))
            if number is not None:
                point[key] = number
        chart_data.append(point)

    return VisualizationSpec(
        type="chart",
        chart_type=CHART_TYPES[presentation],
        title=build_title(intent),
        chart_data=chart_data,
        x_key=x_key,
        y_keys=y_keys,
        colors=CHART_COLORS[: len(y_keys)],
    )


def display_columns(rows: Sequence[Row], classifier: ColumnClassifier) -> list[str]:
    """Columns worth showing in a table: not ``id``/``org_id``, not UUID-valued."""
    first = rows[0]
    return [
        column
        for column in first.columns
        if column.lower() not in ("id", "org_id") and not _is_uuid(first[column])
    ]


def build_table_spec(
    rows: Sequence[Row],
    intent: str,
    classifier: ColumnClassifier | None = None,
    footer: str | None = None,
) -> VisualizationSpec:
    classifier = classifier or default_classifier()
    columns = display_columns(rows, classifier)
    if footer is None:
        footer = f"{len(rows)} result{'s' if len(rows) != 1 else ''}"
    return VisualizationSpec(
        type="table",
        title=build_title(intent),
        table_headers=[format_column_name(column) for column in columns],
        table_rows=[[format_cell_value(row.get(column)) for column in columns] for row in rows],
        table_footer=footer,
    )


def build_visualization(
    presentation: PresentationType,
    rows: Sequence[Row],
    intent: str,
    classifier: ColumnClassifier | None = None,
) -> VisualizationSpec | None:
    """Generic spec for a presentation type; detail views have none."""
    if presentation in CHART_TYPES:
        return build_chart_spec(presentation, rows, intent, classifier)
    if presentation == PresentationType.TABLE:
        return build_table_spec(rows, intent, classifier)
    return None


# ============================================================================
# Output templates
# ============================================================================


def select_template(
    plan: QueryPlan, rows: Sequence[Row], classifier: ColumnClassifier | None = None
) -> str:
    """
    Pick a specialised layout, or "auto" to keep the generic spec.

    Aggregate questions are checked before single-row ones: "how many
    orders" returns one row but reads best as a metric card.
    """
    if plan.output_template and plan.output_template != "auto":
        return plan.output_template

    classifier = classifier or default_classifier()
    intent = plan.intent.lower()
    columns = rows[0].columns if rows else []
    numeric = classifier.numeric_columns(rows)

    if len(rows) <= MAX_METRIC_ROWS and numeric and _mentions(intent, AGGREGATE_WORDS):
        return "metric_summary"

    if len(rows) == 1:
        lowered = [column.lower() for column in columns]
        if any(_mentions(column, CUSTOMER_COLUMN_WORDS) for column in lowered):
            return "customer_profile"
        return "detail_card"

    if 2 <= len(rows) <= MAX_RANKED_ROWS and numeric and _mentions(intent, RANKING_WORDS):
        return "ranked_list"

    if (
        2 <= len(rows) <= MAX_COMPARISON_ROWS
        and len(numeric) >= 2
        and _mentions(intent, COMPARISON_WORDS)
    ):
        return "comparison_table"

    return "auto"


def confidence_map(field_confidence: Sequence[FieldConfidence] | None) -> dict[str, str]:
    return {fc.field: fc.confidence for fc in field_confidence or []}


def build_customer_profile(
    rows: Sequence[Row],
    intent: str,
    field_confidence: Sequence[FieldConfidence] | None = None,
    classifier: ColumnClassifier | None = None,
) -> VisualizationSpec | None:
    """Single-entity card with Overview / Purchase History / Behavioral Profile sections."""
    if not rows:
        return None
    classifier = classifier or default_classifier()
    row = rows[0]
    confidences = confidence_map(field_confidence)

    grouped: dict[str, list[ProfileField]] = {}
    for column, value in row:
        if classifier.is_hidden(column, value):
            continue
        lowered = column.lower()
        title, default = ADDITIONAL_SECTION, "verified"
        for section, words, section_default in PROFILE_SECTIONS:
            if _mentions(lowered, words):
                title, default = section, section_default
                break
        grouped.setdefault(title, []).append(
            ProfileField(
                label=format_column_name(column),
                value=format_cell_value(value),
                confidence=confidences.get(column, default),
            )
        )

    order = [section for section, _, _ in PROFILE_SECTIONS] + [ADDITIONAL_SECTION]
    sections = [
        ProfileSection(title=title, fields=grouped[title]) for title in order if title in grouped
    ]
    if not sections:
        return None

    first_name = row.get("first_name") or row.get("name")
    last_name = row.get("last_name")
    if first_name:
        title = f"{first_name} {last_name}" if last_name else str(first_name)
    else:
        title = build_title(intent)

    return VisualizationSpec(type="profile", title=title, profile_sections=sections)


def build_ranked_list(
    rows: Sequence[Row], intent: str, classifier: ColumnClassifier | None = None
) -> VisualizationSpec | None:
    """A bar chart in the SQL's own ORDER BY order."""
    classifier = classifier or default_classifier()
    columns = rows[0].columns if rows else []
    if not classifier.numeric_columns(rows) or not classifier.label_columns(columns):
        return None
    return build_chart_spec(PresentationType.BAR_CHART, rows, intent, classifier)


def build_comparison_table(
    rows: Sequence[Row], intent: str, classifier: ColumnClassifier | None = None
) -> VisualizationSpec:
    return build_table_spec(rows, intent, classifier, footer=f"Comparing {len(rows)} items")


def build_metric_summary(
    rows: Sequence[Row],
    intent: str,
    field_confidence: Sequence[FieldConfidence] | None = None,
    classifier: ColumnClassifier | None = None,
) -> VisualizationSpec | None:
    """
    Headline numbers.

    One row: a card per numeric column. Several rows: a card per numeric
    column holding its total, marked as computed.
    """
    classifier = classifier or default_classifier()
    numeric = classifier.numeric_columns(rows)
    if not numeric:
        return None
    confidences = confidence_map(field_confidence)

    cards: list[MetricCard] = []
    if len(rows) == 1:
        row = rows[0]
        for column in numeric:
            cards.append(
                MetricCard(
                    label=format_column_name(column),
                    value=format_narrative_value(column, row.get(column), classifier),
                    confidence=confidences.get(column, "verified"),
                )
            )
    else:
        for column in numeric:
            values = [n for n in (to_number(row.get(column)) for row in rows) if n is not None]
            if not values:
                continue
            cards.append(
                MetricCard(
                    label=f"Total {format_column_name(column)}",
                    value=format_narrative_value(column, sum(values), classifier),
                    confidence=confidences.get(column, "computed"),
                )
            )

    if not cards:
        return None
    return VisualizationSpec(type="metric", title=build_title(intent), metric_cards=cards)


def build_detail_card(
    rows: Sequence[Row],
    intent: str,
    field_confidence: Sequence[FieldConfidence] | None = None,
    classifier: ColumnClassifier | None = None,
) -> VisualizationSpec | None:
    if not rows:
        return None
    classifier = classifier or default_classifier()
    confidences = confidence_map(field_confidence)
    fields = [
        ProfileField(
            label=format_column_name(column),
            value=format_cell_value(value),
            confidence=confidences.get(column, "verified"),
        )
        for column, value in rows[0]
        if value is not None and not classifier.is_hidden(column, value)
    ]
    if not fields:
        return None
    return VisualizationSpec(
        type="profile",
        title=build_title(intent),
        profile_sections=[ProfileSection(title="Details", fields=fields)],
    )


def build_template_output(
    template: str,
    rows: Sequence[Row],
    intent: str,
    field_confidence: Sequence[FieldConfidence] | None = None,
    classifier: ColumnClassifier | None = None,
) -> VisualizationSpec | None:
    """Specialised spec for a template; None when the data does not fit it."""
    if template == "customer_profile":
        return build_customer_profile(rows, intent, field_confidence, classifier)
    if template == "ranked_list":
        return build_ranked_list(rows, intent, classifier)
    if template == "comparison_table":
        return build_comparison_table(rows, intent, classifier)
    if template == "metric_summary":
        return build_metric_summary(rows, intent, field_confidence, classifier)
    if template == "detail_card":
        return build_detail_card(rows, intent, field_confidence, classifier)
    return None


def _is_uuid(value: RowValue) -> bool:
    return isinstance(value, str) and bool(UUID_PREFIX.match(value))
