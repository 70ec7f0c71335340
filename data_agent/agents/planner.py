"""
PlannerAgent: turn classification and query planning.

Turns a question into a QueryPlan:
- Turn type: new, follow_up, pivot, refinement
- Domain and the tables likely needed
- Ambiguity (with a clarifying question) when the question spans domains
- References ("their", "those zip codes") resolved against the session
- Expected row count and presentation hint, parsed from the question

Cheap deterministic classification runs first; the mini LLM is consulted
only when it cannot decide, and a deterministic fallback plan is used when
the LLM fails.
"""

import logging
import re

from data_agent.agents.base import BaseAgent, parse_json_object
from data_agent.config import get_settings
from data_agent.llm.base import BaseLLMProvider
from data_agent.llm.factory import LLMProviderFactory
from data_agent.models.agent import PlannerAgentInput, PlannerAgentOutput
from data_agent.models.plan import (
    ClarificationOption,
    DecomposedPlan,
    PresentationHint,
    QueryPlan,
    StructuredClarification,
)
from data_agent.models.schema import SchemaMap
from data_agent.models.session import DataAgentSession
from data_agent.prompts.loader import PromptLoader, get_prompt_loader
from data_agent.schema.introspector import get_available_domains, get_tables_for_domain
from data_agent.semantic.layer import ALL_DOMAINS, SemanticLayer, load_semantic_layer
from data_agent.session.context import (
    REFERENCE_WORDS,
    build_session_context,
    resolve_reference,
)

logger = logging.getLogger(__name__)

TURN_TYPES = ("new", "follow_up", "pivot", "refinement")
ACTIVE_ENTITIES_REFERENCE = "_active_entities"

REFINEMENT_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^sort\s+(by|it)\s+",
        r"^order\s+by\s+",
        r"^limit\s+to\s+",
        r"^only\s+(show|the)\s+(first|last|top)\s+",
        r"^show\s+(only|just)\s+",
        r"^filter\s+(by|for|to)\s+",
        r"^add\s+(a\s+)?column\s+",
        r"^include\s+",
        r"^exclude\s+",
        r"^remove\s+",
        r"^group\s+by\s+",
    )
]

FOLLOW_UP_PRONOUNS = re.compile(
    r"\b(their|them|those|these|they|same|its|his|her)\b", re.IGNORECASE
)

# Strong signals only: "customer" is deliberately absent because it fits
# both ecommerce and crm.
DOMAIN_PATTERNS: dict[str, list[re.Pattern]] = {
    "ecommerce": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(ecom(merce)?|shopify|b2c)\b",
            r"\border(s|ed)?\b",
            r"\b(total.?spend|total.?spent|spend(ing)?)\b",
            r"\bproducts?\b",
            r"\b(purchase[sd]?|bought)\b",
            r"\b(cart|shipping|fulfillment|refund(s|ed)?)\b",
            r"\b(aov|average.?order.?value)\b",
            r"\brevenue\b",
        )
    ],
    "crm": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(crm|hubspot|b2b)\b",
            r"\bdeals?\b",
            r"\bpipeline\b",
            r"\bcontacts?\b",
            r"\bcompan(y|ies)\b",
            r"\b(prospects?|leads?|opportunit(y|ies))\b",
        )
    ],
    "campaigns": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\bcampaigns?\b",
            r"\bemails?\s+(sent|send|opened|clicked|bounced)\b",
            r"\b(open.?rate|click.?rate|bounce.?rate)\b",
            r"\bnewsletters?\b",
        )
    ],
    "behavioral": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\bsegment(s|ation)?\b",
            r"\blifecycle\b",
            r"\brfm\b",
            r"\b(churn(ed|ing)?|at.?risk)\b",
            r"\bengagement.?score\b",
        )
    ],
}

COUNT_PATTERNS = [
    re.compile(r"\b(?:top|first|last|bottom|best|worst)\s+(\d+)\b"),
    re.compile(
        r"\b(\d+)\s+(?:customers?|orders?|deals?|contacts?|companies|company|products?"
        r"|campaigns?|people|results?)\b"
    ),
    re.compile(r"\b(?:show|give|list|find|get)\s+(?:me\s+)?(\d+)\b"),
]

CHART_KEYWORDS = ("chart", "graph", "plot", "visual")
COMPARE_KEYWORDS = (
    "compare",
    "comparison",
    "versus",
    " vs ",
    " vs.",
    "side by side",
    "side-by-side",
    "relative to",
)
TABLE_KEYWORDS = (
    "table",
    "spreadsheet",
    "grid",
    "list all",
    "show all",
    "breakdown",
    "break down",
    "itemize",
)
DETAIL_KEYWORDS = (
    "detail",
    "tell me about",
    "everything about",
    "profile",
    "deep dive",
    "drill into",
)

PRIORITY_WORDS = re.compile(
    r"\b(mainly|especially|primarily|focus on|most importantly|start with)\b", re.IGNORECASE
)


def extract_expected_count(question: str) -> int | None:
    """
    Row count the user asked for, if any.

    "top 5 customers" -> 5, "show me 10" -> 10, "customers by city" -> None
    """
    lowered = question.lower()
    for pattern in COUNT_PATTERNS:
        match = pattern.search(lowered)
        if match:
            count = int(match.group(1))
            return count if count > 0 else None
    return None


def extract_presentation_hint(question: str) -> PresentationHint:
    lowered = f" {question.lower()} "
    if any(keyword in lowered for keyword in CHART_KEYWORDS):
        return "chart"
    if any(keyword in lowered for keyword in COMPARE_KEYWORDS):
        return "chart"
    if any(keyword in lowered for keyword in TABLE_KEYWORDS):
        return "table"
    if any(keyword in lowered for keyword in DETAIL_KEYWORDS):
        return "detail"
    return "auto"


def score_domain_patterns(question: str) -> dict[str, int]:
    """Number of strong keyword patterns each domain matches (domains with zero are omitted)."""
    scores: dict[str, int] = {}
    for domain, patterns in DOMAIN_PATTERNS.items():
        count = sum(1 for pattern in patterns if pattern.search(question))
        if count:
            scores[domain] = count
    return scores


def top_domain(scores: dict[str, int], margin: int = 1) -> str | None:
    """Leading domain, or None when nothing matched or the top two are within ``margin``."""
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    if not ranked:
        return None
    if len(ranked) > 1 and ranked[0][1] - ranked[1][1] <= margin:
        return None
    return ranked[0][0]


def build_structured_clarification(
    question: str,
    plan: QueryPlan,
    semantic_layer: SemanticLayer,
    decomposed: DecomposedPlan | None = None,
) -> StructuredClarification | None:
    """
    Selectable clarification options, or None when none are needed.

    Domain ambiguity offers each candidate domain; a decomposition into
    three or more parts offers each part unless the user already said
    what to focus on. Both lists start with an "All of the above" option.
    """
    if plan.ambiguous and len(plan.candidate_domains) >= 2:
        options = [
            ClarificationOption(
                label="All of the above",
                value=ALL_DOMAINS,
                description="Search across all data domains",
            )
        ]
        for domain in plan.candidate_domains:
            config = semantic_layer.domains.get(domain)
            options.append(
                ClarificationOption(
                    label=domain.capitalize(),
                    value=domain,
                    description=config.description if config else f"Data from the {domain} domain",
                )
            )
        return StructuredClarification(
            question=plan.needs_clarification or "Which data area are you interested in?",
            options=options,
            reason="domain_ambiguous",
        )

    if decomposed and len(decomposed.sub_queries) >= 3:
        if PRIORITY_WORDS.search(question):
            return None
        options = [
            ClarificationOption(
                label="All of the above",
                value=ALL_DOMAINS,
                description="Get everything (may take a moment)",
            )
        ]
        for sub_query in decomposed.sub_queries:
            options.append(
                ClarificationOption(
                    label=sub_query.intent[:50],
                    value=sub_query.id,
                    description=f"Tables: {', '.join(sub_query.tables_needed)}",
                )
            )
        return StructuredClarification(
            question="This covers multiple data areas. Which should I focus on?",
            options=options,
            reason="multi_part",
        )

    return None


class PlannerAgent(BaseAgent):
    """
    Query planning agent.

    Uses the mini model, and only when the deterministic fast paths cannot
    classify the question.
    """

    def __init__(
        self,
        llm_provider: BaseLLMProvider | None = None,
        semantic_layer: SemanticLayer | None = None,
        prompts: PromptLoader | None = None,
    ):
        super().__init__(name="PlannerAgent", max_retries=0)

        if llm_provider is None:
            config = get_settings()
            self.llm = LLMProviderFactory.create_agent_provider(
                "planner", config.llm, model_type="mini"
            )
        else:
            self.llm = llm_provider
        self.semantic_layer = semantic_layer or load_semantic_layer()
        self.prompts = prompts or get_prompt_loader()

    async def execute(self, input: PlannerAgentInput) -> PlannerAgentOutput:
        plan = await self.plan(input.query, input.session, input.schema_map)
        logger.info(
            f"[{self.name}] Planned turn_type={plan.turn_type} domain={plan.domain} "
            f"ambiguous={plan.ambiguous} tables={plan.tables_needed}"
        )
        return PlannerAgentOutput(success=True, plan=plan, metadata=self._create_metadata())

    async def plan(
        self, question: str, session: DataAgentSession, schema_map: SchemaMap
    ) -> QueryPlan:
        expected_count = extract_expected_count(question)
        presentation_hint = extract_presentation_hint(question)

        plan = self.quick_classify(question, session, schema_map)
        if plan is None:
            try:
                plan = await self._classify_with_llm(question, session, schema_map)
            except Exception as e:
                logger.warning(f"[{self.name}] LLM classification failed, using fallback: {e}")
                plan = self.fallback_plan(question)

        plan = self._normalize(plan, question, session)
        plan.expected_count = expected_count
        plan.presentation_hint = presentation_hint
        plan.structured_clarification = build_structured_clarification(
            question, plan, self.semantic_layer
        )
        return plan

    # ------------------------------------------------------------------
    # Deterministic paths
    # ------------------------------------------------------------------

    def quick_classify(
        self, question: str, session: DataAgentSession, schema_map: SchemaMap | None = None
    ) -> QueryPlan | None:
        """
        Classify without an LLM call, or return None when undecided.

        1. Refinements ("sort by date") against the previous turn's SQL
        2. Follow-ups and pivots when a pronoun refers back to the last turn
        3. New questions whose strong keywords point at exactly one domain
        """
        stripped = question.strip()
        last_turn = session.last_turn
        margin = self.semantic_layer.ambiguity_margin

        if last_turn is not None:
            if any(pattern.search(stripped) for pattern in REFINEMENT_PATTERNS):
                return QueryPlan(
                    turn_type="refinement",
                    intent=question,
                    domain=last_turn.domain,
                    tables_needed=list(last_turn.tables),
                    edit_instruction=question,
                    previous_sql=last_turn.sql,
                )

            if FOLLOW_UP_PRONOUNS.search(stripped):
                leader = top_domain(score_domain_patterns(stripped), margin)
                is_pivot = leader is not None and leader != last_turn.domain
                tables = list(last_turn.tables)
                if is_pivot and schema_map is not None:
                    tables = [t.name for t in get_tables_for_domain(schema_map, leader)][:3]
                return QueryPlan(
                    turn_type="pivot" if is_pivot else "follow_up",
                    intent=question,
                    domain=leader if is_pivot else last_turn.domain,
                    tables_needed=tables,
                    edit_instruction=None if is_pivot else question,
                    previous_sql=None if is_pivot else last_turn.sql,
                )

        scores = score_domain_patterns(stripped)
        if len(scores) == 1:
            domain = next(iter(scores))
            config = self.semantic_layer.domains.get(domain)
            return QueryPlan(
                turn_type="new",
                intent=question,
                domain=domain,
                tables_needed=config.tables[:3] if config else [],
            )

        return None

    def fallback_plan(self, question: str) -> QueryPlan:
        """Plan from semantic scoring alone, used when the LLM is unavailable."""
        domain = self.semantic_layer.get_domain_for_question(question)
        candidates = self.semantic_layer.candidate_domains(question)
        ambiguous = domain == ALL_DOMAINS and len(candidates) >= 2
        config = self.semantic_layer.domains.get(domain)
        return QueryPlan(
            turn_type="new",
            intent=question,
            domain=domain,
            ambiguous=ambiguous,
            candidate_domains=candidates if ambiguous else [],
            tables_needed=config.tables[:3] if config else [],
            needs_clarification=(
                f"This could refer to {self._list_domains(candidates)} data. Which did you mean?"
                if ambiguous
                else None
            ),
        )

    # ------------------------------------------------------------------
    # LLM path
    # ------------------------------------------------------------------

    async def _classify_with_llm(
        self, question: str, session: DataAgentSession, schema_map: SchemaMap
    ) -> QueryPlan:
        system_prompt = self.prompts.render(
            "agents/planner.md",
            available_domains=get_available_domains(schema_map),
            semantic_matches=self.semantic_layer.find_term_matches(question),
            session_context=build_session_context(session),
        )
        content = await self._complete(self.llm, system_prompt, question, max_tokens=1024)
        data = parse_json_object(content)

        turn_type = data.get("turn_type")
        candidates = data.get("candidate_domains") or []
        tables = data.get("tables_needed") or []
        return QueryPlan(
            turn_type=turn_type if turn_type in TURN_TYPES else "new",
            intent=str(data.get("intent") or question),
            domain=str(data.get("domain") or self.semantic_layer.get_domain_for_question(question)),
            ambiguous=data.get("ambiguous") is True,
            candidate_domains=[str(c) for c in candidates if isinstance(c, str)],
            tables_needed=[str(t) for t in tables if isinstance(t, str)],
            edit_instruction=data.get("edit_instruction") or None,
            previous_sql=data.get("previous_sql") or None,
            needs_clarification=data.get("needs_clarification") or None,
        )

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def _normalize(self, plan: QueryPlan, question: str, session: DataAgentSession) -> QueryPlan:
        last_turn = session.last_turn

        # Without history there is nothing to follow up on or refine
        if last_turn is None and plan.turn_type != "new":
            plan.turn_type = "new"
            plan.edit_instruction = None
            plan.previous_sql = None

        if plan.turn_type == "refinement":
            plan.previous_sql = plan.previous_sql or last_turn.sql
            plan.edit_instruction = plan.edit_instruction or question

        if plan.turn_type in ("follow_up", "pivot") and last_turn is not None:
            plan.resolved_references = self.resolve_references(question, session)

        if plan.ambiguous and not plan.needs_clarification:
            plan.needs_clarification = (
                f"This could refer to {self._list_domains(plan.candidate_domains)} data. "
                "Which did you mean?"
                if plan.candidate_domains
                else "Could you say a bit more about what you're looking for?"
            )

        return plan

    def resolve_references(self, question: str, session: DataAgentSession) -> dict:
        """
        Map the first resolvable reference word to concrete values.

        Falls back to the active entity ids under ``_active_entities``;
        returns an empty mapping when nothing resolves.
        """
        lowered = question.lower()
        values = resolve_reference(session, question)
        if values:
            word = next(w for w in REFERENCE_WORDS if w in lowered)
            return {word: values}
        if session.active_entity_ids:
            return {ACTIVE_ENTITIES_REFERENCE: list(session.active_entity_ids)}
        return {}

    @staticmethod
    def _list_domains(domains: list[str]) -> str:
        if len(domains) <= 1:
            return "".join(domains) or "several"
        return f"{', '.join(domains[:-1])} or {domains[-1]}"
