"""
PresenterAgent: deterministic output layer, zero LLM calls.

Runs after execution and attaches presentation artefacts to the result:
1. Row-count contract: a "top 5" question answered by SQL with a smaller
   LIMIT is reported back for exactly one regeneration.
2. Presentation classification and a VisualizationSpec.
3. A factual narrative summary built from the rows, with non-verified
   fields marked and footnoted.
4. An optional specialised output template replacing the generic spec.
"""

import logging

from data_agent.agents.base import BaseAgent
from data_agent.agents.sql_safety import get_limit
from data_agent.models.agent import (
    PresentationOutcome,
    PresenterAgentInput,
    PresenterAgentOutput,
)
from data_agent.models.plan import QueryPlan
from data_agent.models.result import QueryResult
from data_agent.models.schema import SchemaMap
from data_agent.presentation.narrative import annotate_confidence, build_narrative_summary
from data_agent.presentation.visualization import (
    build_template_output,
    build_visualization,
    classify_presentation,
    select_template,
)
from data_agent.semantic.classifier import ColumnClassifier, default_classifier

logger = logging.getLogger(__name__)


def validate_row_count(result: QueryResult, plan: QueryPlan) -> PresentationOutcome:
    """
    Flag results that fall short of the requested count because of the LIMIT.

    Fewer rows under a LIMIT that already matches the request just means the
    data has fewer rows, which is not a defect.
    """
    expected = plan.expected_count
    if not expected or result.row_count >= expected:
        return PresentationOutcome()

    limit = get_limit(result.sql)
    if limit is not None and limit < expected:
        return PresentationOutcome(
            needs_retry=True,
            reason=(
                f"User asked for {expected} results but SQL has LIMIT {limit}. "
                f"Change LIMIT to {expected}."
            ),
        )
    return PresentationOutcome()


class PresenterAgent(BaseAgent):
    """Attaches visualization, narrative and template output to a result in place."""

    def __init__(self, classifier: ColumnClassifier | None = None):
        super().__init__(name="PresenterAgent", max_retries=0)
        self.classifier = classifier or default_classifier()

    async def execute(self, input: PresenterAgentInput) -> PresenterAgentOutput:
        outcome = self.present(input.result, input.plan, input.schema_map)
        return PresenterAgentOutput(
            success=True,
            result=input.result,
            outcome=outcome,
            metadata=self._create_metadata(),
        )

    def present(
        self,
        result: QueryResult,
        plan: QueryPlan,
        schema_map: SchemaMap | None = None,
        enforce_row_count: bool = True,
    ) -> PresentationOutcome:
        """
        Attach presentation artefacts to ``result``.

        When the row-count contract is violated and ``enforce_row_count`` is
        set, nothing is attached and the outcome asks for a retry. Callers
        that already spent their retry pass ``enforce_row_count=False`` so
        the short result is still presented.
        """
        if not result.success or not result.data:
            return PresentationOutcome()

        outcome = validate_row_count(result, plan)
        if outcome.needs_retry and enforce_row_count:
            logger.info(f"[{self.name}] Row-count contract violated: {outcome.reason}")
            return outcome

        rows = result.data
        presentation = classify_presentation(plan, rows, self.classifier)
        visualization = build_visualization(presentation, rows, plan.intent, self.classifier)
        if visualization is not None:
            result.visualization = visualization

        narrative = build_narrative_summary(rows, plan.intent, self.classifier)
        if result.field_confidence:
            narrative = annotate_confidence(narrative, result.field_confidence)
        result.narrative_summary = narrative

        template = select_template(plan, rows, self.classifier)
        if template != "auto":
            template_output = build_template_output(
                template, rows, plan.intent, result.field_confidence, self.classifier
            )
            if template_output is not None:
                result.visualization = template_output
                result.output_template = template

        logger.debug(
            f"[{self.name}] Presented {len(rows)} rows as {presentation} (template: {template})",
            extra={
                "agent": self.name,
                "presentation": str(presentation),
                "template": template,
                "visualization": result.visualization.type if result.visualization else None,
            },
        )
        return PresentationOutcome()
