"""
Semantic layer: business vocabulary, join graph, confidence registry and
column-name heuristics.
"""

from data_agent.semantic.classifier import (
    ColumnClassifier,
    NameRule,
    SemanticKind,
    default_classifier,
)
from data_agent.semantic.layer import ALL_DOMAINS, SemanticLayer, load_semantic_layer

__all__ = [
    "ALL_DOMAINS",
    "ColumnClassifier",
    "NameRule",
    "SemanticKind",
    "SemanticLayer",
    "default_classifier",
    "load_semantic_layer",
]
