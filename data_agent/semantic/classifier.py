"""
Column Classifier

Every column-name heuristic in the pipeline lives here: which columns hold
money, counts, dates, display labels, entity identifiers, or values a
later turn may refer back to ("those zip codes").

The rule table is plain data. Swap it out (or pass a different
ColumnClassifier to the presenter and corrector) to change the heuristics
without touching formatting code.

Usage:
    classifier = default_classifier()
    classifier.is_kind("total_spent", SemanticKind.MONEY)      # True
    classifier.is_kind("total_customers", SemanticKind.MONEY)  # False
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache

from data_agent.models.rows import Row, RowValue

UUID_PREFIX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}", re.IGNORECASE)


class SemanticKind(StrEnum):
    MONEY = "money"
    COUNT = "count"
    DATE = "date"
    LABEL = "label"
    IDENTIFIER = "identifier"
    EXTRACTABLE = "extractable"


@dataclass(frozen=True)
class NameRule:
    """
    One name-pattern rule.

    A lower-cased column name matches when it equals one of ``exact``, ends
    with one of ``suffixes``, or contains one of ``contains``; and, in
    addition, contains at least one of ``requires`` (when given) and none
    of ``excludes``.
    """

    kind: SemanticKind
    contains: tuple[str, ...] = ()
    exact: tuple[str, ...] = ()
    suffixes: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    exclude_exact: tuple[str, ...] = ()
    exclude_suffixes: tuple[str, ...] = ()

    def matches(self, name: str) -> bool:
        lowered = name.lower()
        if lowered in self.exclude_exact:
            return False
        if any(lowered.endswith(s) for s in self.exclude_suffixes):
            return False
        if any(word in lowered for word in self.excludes):
            return False
        hit = (
            lowered in self.exact
            or any(lowered.endswith(s) for s in self.suffixes)
            or any(word in lowered for word in self.contains)
        )
        if not hit:
            return False
        if self.requires and not any(word in lowered for word in self.requires):
            return False
        return True


MONEY_WORDS = ("price", "spent", "revenue", "amount", "cost", "subtotal", "avg_order")
COUNT_WORDS = (
    "count",
    "customers",
    "orders",
    "products",
    "people",
    "records",
    "items",
    "num_",
    "number",
)

DEFAULT_RULES: tuple[NameRule, ...] = (
    # "total_spent" is money, "total_customers" is a count
    NameRule(SemanticKind.MONEY, contains=MONEY_WORDS, excludes=COUNT_WORDS),
    NameRule(SemanticKind.MONEY, exact=("total",)),
    NameRule(SemanticKind.MONEY, contains=("total",), requires=("value",), excludes=COUNT_WORDS),
    NameRule(SemanticKind.COUNT, contains=COUNT_WORDS),
    NameRule(
        SemanticKind.DATE,
        contains=(
            "date",
            "created_at",
            "updated_at",
            "ordered_at",
            "month",
            "year",
            "week",
            "day",
            "period",
            "quarter",
            "_at",
            "timestamp",
        ),
    ),
    NameRule(
        SemanticKind.LABEL,
        contains=(
            "name",
            "title",
            "label",
            "email",
            "customer",
            "product",
            "category",
            "type",
            "status",
            "stage",
            "city",
            "state",
            "province",
            "country",
            "region",
        ),
        exclude_exact=("id",),
        exclude_suffixes=("_id",),
    ),
    NameRule(SemanticKind.IDENTIFIER, exact=("id", "org_id"), suffixes=("_id",)),
    NameRule(
        SemanticKind.EXTRACTABLE,
        contains=(
            "zip",
            "city",
            "province",
            "state",
            "country",
            "email",
            "name",
            "stage",
            "status",
            "type",
            "category",
        ),
    ),
)

# Columns checked, in order, for the entity id of each result row
ENTITY_ID_COLUMNS: tuple[str, ...] = ("id", "customer_id", "contact_id", "company_id", "deal_id")


@dataclass
class ColumnClassifier:
    """Name-pattern -> SemanticKind lookup over an ordered rule table."""

    rules: Sequence[NameRule] = field(default_factory=lambda: DEFAULT_RULES)
    entity_id_columns: Sequence[str] = ENTITY_ID_COLUMNS

    def kinds(self, column: str) -> set[SemanticKind]:
        """Every kind whose rule matches the column name."""
        return {rule.kind for rule in self.rules if rule.matches(column)}

    def is_kind(self, column: str, kind: SemanticKind) -> bool:
        return any(rule.kind == kind and rule.matches(column) for rule in self.rules)

    def columns_of_kind(self, columns: Iterable[str], kind: SemanticKind) -> list[str]:
        return [column for column in columns if self.is_kind(column, kind)]

    # Shortcuts used throughout the presenter

    def is_money(self, column: str) -> bool:
        return self.is_kind(column, SemanticKind.MONEY)

    def date_columns(self, columns: Iterable[str]) -> list[str]:
        return self.columns_of_kind(columns, SemanticKind.DATE)

    def label_columns(self, columns: Iterable[str]) -> list[str]:
        return self.columns_of_kind(columns, SemanticKind.LABEL)

    def is_identifier(self, column: str) -> bool:
        return self.is_kind(column, SemanticKind.IDENTIFIER)

    def numeric_columns(self, rows: Sequence[Row]) -> list[str]:
        """Columns whose first-row value is a number or a numeric string."""
        if not rows:
            return []
        first = rows[0]
        return [column for column, value in first if is_numeric_value(value)]

    def is_hidden(self, column: str, value: RowValue) -> bool:
        """Identifier columns and UUID-looking values are left out of displays."""
        if self.is_identifier(column):
            return True
        return isinstance(value, str) and bool(UUID_PREFIX.match(value))


def is_numeric_value(value: RowValue) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str) and value.strip():
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


@lru_cache
def default_classifier() -> ColumnClassifier:
    return ColumnClassifier()
