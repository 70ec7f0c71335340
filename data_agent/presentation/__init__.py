"""Deterministic rendering of query results: formatting, narratives and visualization specs."""

from data_agent.presentation.formatter import format_results, generate_result_summary
from data_agent.presentation.narrative import annotate_confidence, build_narrative_summary
from data_agent.presentation.visualization import (
    PresentationType,
    build_template_output,
    build_visualization,
    classify_presentation,
    select_template,
)

__all__ = [
    "PresentationType",
    "annotate_confidence",
    "build_narrative_summary",
    "build_template_output",
    "build_visualization",
    "classify_presentation",
    "format_results",
    "generate_result_summary",
    "select_template",
]
