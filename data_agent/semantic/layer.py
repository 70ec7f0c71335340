"""
Semantic Layer

Lookups over the semantic catalogue: business term and metric matching,
directed join-path discovery, question-to-domain scoring, JSONB access
patterns, null fallbacks and per-field data confidence.

Relationships are held in a NetworkX DiGraph. Edges are directed: a path
from A to B says nothing about a path from B to A.

Usage:
    layer = load_semantic_layer()
    layer.find_join_path("ecom_customers", "segments")
    # ["JOIN segment_members sm ON ...", "JOIN segments s ON ..."]
    layer.get_domain_for_question("Which deals are in negotiation?")
    # "crm"
"""

import logging
from functools import lru_cache

import networkx as nx

from data_agent.models.context import SemanticMatch
from data_agent.models.result import FieldConfidence
from data_agent.models.semantic import (
    FallbackPath,
    JsonbPattern,
    RelationshipPath,
    SemanticLayerData,
)
from data_agent.semantic.catalog import build_catalog

logger = logging.getLogger(__name__)

ALL_DOMAINS = "all"


class SemanticLayer:
    """Read-only view over a SemanticLayerData catalogue."""

    def __init__(self, data: SemanticLayerData, ambiguity_margin: int = 1):
        self.data = data
        self.ambiguity_margin = ambiguity_margin
        self.graph = nx.DiGraph()
        for rel in data.relationships:
            # First definition of an edge wins
            if not self.graph.has_edge(rel.from_table, rel.to_table):
                self.graph.add_edge(rel.from_table, rel.to_table, relationship=rel)

        self._table_domains: dict[str, str] = {}
        for domain, config in data.domains.items():
            for table in config.tables:
                self._table_domains.setdefault(table, domain)

        logger.debug(
            f"SemanticLayer loaded: {len(data.terms)} terms, {len(data.metrics)} metrics, "
            f"{self.graph.number_of_edges()} relationships"
        )

    @property
    def domains(self):
        return self.data.domains

    @property
    def relationships(self) -> list[RelationshipPath]:
        return self.data.relationships

    @property
    def jsonb_patterns(self) -> list[JsonbPattern]:
        return self.data.jsonb_patterns

    # ------------------------------------------------------------------
    # Term matching
    # ------------------------------------------------------------------

    def find_term_matches(self, question: str) -> list[SemanticMatch]:
        """
        Find business terms and metric aliases mentioned in a question.

        Matching is case-insensitive substring containment. At most one term
        per mapping (and one alias per metric) is reported; a ``{term}``
        placeholder in the SQL condition is filled with the matched term.
        """
        lowered = question.lower()
        matches: list[SemanticMatch] = []

        for mapping in self.data.terms:
            for term in mapping.terms:
                if term.lower() in lowered:
                    matches.append(
                        SemanticMatch(
                            term=term,
                            sql_condition=mapping.sql_condition.replace("{term}", term.lower()),
                            table=mapping.table,
                            description=mapping.description,
                        )
                    )
                    break

        for metric in self.data.metrics:
            for alias in metric.aliases:
                if alias.lower() in lowered:
                    matches.append(
                        SemanticMatch(
                            term=alias,
                            sql_condition=metric.sql_expression,
                            table=metric.table,
                            description=metric.description,
                        )
                    )
                    break

        return matches

    # ------------------------------------------------------------------
    # Join paths
    # ------------------------------------------------------------------

    def get_relationship_path(self, from_table: str, to_table: str) -> str | None:
        """JOIN SQL for a direct edge, or None."""
        if not self.graph.has_edge(from_table, to_table):
            return None
        return self.graph.edges[from_table, to_table]["relationship"].join_sql

    def find_join_path(self, from_table: str, to_table: str) -> list[str]:
        """
        Shortest chain of JOIN clauses leading from one table to another.

        Returns an empty list when the tables are the same or no directed
        path exists; an empty path is a meaningful answer, not an error.
        """
        if from_table == to_table:
            return []

        direct = self.get_relationship_path(from_table, to_table)
        if direct:
            return [direct]

        if from_table not in self.graph or to_table not in self.graph:
            return []

        try:
            nodes = nx.shortest_path(self.graph, from_table, to_table)
        except nx.NetworkXNoPath:
            return []

        return [
            self.graph.edges[source, target]["relationship"].join_sql
            for source, target in zip(nodes, nodes[1:])
        ]

    def find_join_paths(self, tables: list[str]) -> list[str]:
        """Join paths between every ordered pair of the given tables, de-duplicated."""
        paths: list[str] = []
        for i, source in enumerate(tables):
            for target in tables[i + 1 :]:
                for candidate in self.find_join_path(source, target) or self.find_join_path(
                    target, source
                ):
                    if candidate not in paths:
                        paths.append(candidate)
        return paths

    # ------------------------------------------------------------------
    # Domain classification
    # ------------------------------------------------------------------

    def find_domain_for_table(self, table: str) -> str | None:
        return self._table_domains.get(table)

    def get_domain_keywords(self) -> dict[str, list[str]]:
        return self.data.domain_keywords

    def score_domains(self, question: str) -> list[tuple[str, int]]:
        """
        Score each domain against a question, highest first.

        One point per matched term whose table belongs to the domain, plus
        one point per domain keyword found in the question.
        """
        lowered = question.lower()
        scores: dict[str, int] = {}

        for match in self.find_term_matches(question):
            domain = self.find_domain_for_table(match.table) if match.table else None
            if domain:
                scores[domain] = scores.get(domain, 0) + 1

        for domain, keywords in self.data.domain_keywords.items():
            for keyword in keywords:
                if keyword in lowered:
                    scores[domain] = scores.get(domain, 0) + 1

        return sorted(scores.items(), key=lambda item: item[1], reverse=True)

    def get_domain_for_question(self, question: str) -> str:
        """
        Most likely domain for a question, or "all".

        "all" is returned when nothing scores, or when the top two domains
        are within ``ambiguity_margin`` points of each other.
        """
        ranked = self.score_domains(question)
        if not ranked:
            return ALL_DOMAINS
        if len(ranked) == 1:
            return ranked[0][0]
        if ranked[0][1] - ranked[1][1] <= self.ambiguity_margin:
            return ALL_DOMAINS
        return ranked[0][0]

    def candidate_domains(self, question: str) -> list[str]:
        """Domains tied with the leader within the ambiguity margin."""
        ranked = self.score_domains(question)
        if not ranked:
            return []
        top = ranked[0][1]
        return [domain for domain, score in ranked if top - score <= self.ambiguity_margin]

    # ------------------------------------------------------------------
    # JSONB, fallbacks, confidence
    # ------------------------------------------------------------------

    def find_jsonb_patterns(self, question: str) -> list[JsonbPattern]:
        """JSONB patterns whose column name or documented keys appear in the question."""
        lowered = question.lower()
        relevant: list[JsonbPattern] = []
        for pattern in self.data.jsonb_patterns:
            mentioned = pattern.column.lower() in lowered or any(
                key.lower() in lowered for key in pattern.keys
            )
            if mentioned:
                relevant.append(pattern)
        return relevant

    def find_fallback_path(self, table: str, column: str) -> FallbackPath | None:
        for fallback in self.data.fallbacks:
            if fallback.primary_table == table and fallback.primary_column == column:
                return fallback
        return None

    def get_field_confidence(self, tables: list[str], columns: list[str]) -> list[FieldConfidence]:
        """
        Confidence annotations for result columns drawn from the given tables.

        Only non-verified confidence is reported. Tables that flag specific
        fields report those fields (filtered to ``columns`` when given);
        tables flagged as a whole report every requested column.
        """
        results: list[FieldConfidence] = []
        for config in self.data.confidence_registry:
            if config.table not in tables or config.confidence == "verified":
                continue

            if config.fields:
                flagged = [f for f in config.fields if not columns or f in columns]
            else:
                flagged = list(columns)

            for field in flagged:
                results.append(
                    FieldConfidence(
                        field=field,
                        confidence=config.confidence,
                        source_table=config.table,
                        description=config.description,
                    )
                )
        return results


@lru_cache
def load_semantic_layer(ambiguity_margin: int = 1) -> SemanticLayer:
    """Shared SemanticLayer over the shipped catalogue."""
    return SemanticLayer(build_catalog(), ambiguity_margin=ambiguity_margin)
