"""
DecomposerAgent: split a question into dependent sub-queries.

Deterministic guards run first and return "no decomposition" without an
LLM call. Only when they pass does the mini model decide, and its answer
is validated and repaired before it is used:
- at most ``max_sub_queries`` sub-queries
- every sub-query has a join key (default "id")
- the first sub-query is the dependency-free anchor
- unknown stitch strategies become "merge_columns"
- fewer than two sub-queries means no decomposition
"""

import logging
from collections.abc import Sequence
from typing import Any

from data_agent.agents.base import BaseAgent, parse_json_object
from data_agent.config import get_settings
from data_agent.llm.base import BaseLLMProvider
from data_agent.llm.factory import LLMProviderFactory
from data_agent.models.agent import DecomposerAgentInput, DecomposerAgentOutput
from data_agent.models.plan import STITCH_STRATEGIES, DecomposedPlan, QueryPlan, SubQuery
from data_agent.models.schema import SchemaMap, TableSchema
from data_agent.prompts.loader import PromptLoader, get_prompt_loader
from data_agent.semantic.layer import SemanticLayer, load_semantic_layer

logger = logging.getLogger(__name__)

DEFAULT_ARRAY_HINTS = ("line_items", "items", "tags", "affinities", "elements", "entries")
DEFAULT_JOIN_KEY = "id"
DEFAULT_STITCH_STRATEGY = "merge_columns"
MAX_SUB_QUERIES = 4


def is_array_column(column_name: str, hints: Sequence[str] = DEFAULT_ARRAY_HINTS) -> bool:
    """JSONB is untyped, so array-ness is inferred from the column name."""
    return any(hint in column_name for hint in hints)


def has_jsonb_array_columns(table: TableSchema | None, hints: Sequence[str]) -> bool:
    if table is None:
        return False
    return any(column.is_jsonb and is_array_column(column.name, hints) for column in table.columns)


def format_table_for_prompt(table: TableSchema, hints: Sequence[str]) -> str:
    columns = []
    for column in table.columns:
        text = f"{column.name} ({column.type}"
        if column.jsonb_keys:
            text += f", keys: {', '.join(column.jsonb_keys)}"
        text += ")"
        if is_array_column(column.name, hints):
            text += " [JSONB ARRAY, needs unnesting]"
        columns.append(text)

    line = f"{table.name} [{table.domain}]: {', '.join(columns)}"
    foreign_keys = ", ".join(
        f"{rel.source_column}→{rel.target_table}.{rel.target_column}"
        for rel in table.relationships
    )
    if foreign_keys:
        line += f" | FKs: {foreign_keys}"
    return line


def build_decomposed_plan(
    data: dict[str, Any], plan: QueryPlan, max_sub_queries: int = MAX_SUB_QUERIES
) -> DecomposedPlan | None:
    """
    Validate and repair a raw decomposition.

    Returns None when the response does not describe at least two sub-queries.
    """
    raw_sub_queries = data.get("sub_queries")
    if data.get("decompose") is False or not isinstance(raw_sub_queries, list):
        return None

    raw_sub_queries = [raw for raw in raw_sub_queries if isinstance(raw, dict)]
    if len(raw_sub_queries) < 2:
        return None

    sub_queries: list[SubQuery] = []
    seen_ids: set[str] = set()
    for index, raw in enumerate(raw_sub_queries[:max_sub_queries]):
        sub_query_id = raw.get("id") if isinstance(raw.get("id"), str) and raw["id"] else None
        if sub_query_id is None or sub_query_id in seen_ids:
            sub_query_id = f"sq_{index + 1}"
        seen_ids.add(sub_query_id)

        is_anchor = index == 0
        tables = raw.get("tables_needed")
        join_key = raw.get("join_key")
        depends_on = None
        if not is_anchor:
            raw_depends = raw.get("depends_on")
            if not isinstance(raw_depends, list):
                raw_depends = []
            # Dependencies may only point at earlier sub-queries
            depends_on = [
                d for d in raw_depends if isinstance(d, str) and d in seen_ids and d != sub_query_id
            ]
            if not depends_on:
                depends_on = [sub_queries[0].id]

        sub_queries.append(
            SubQuery(
                id=sub_query_id,
                intent=str(raw.get("intent") or f"Sub-query {index + 1}"),
                domain=str(raw.get("domain") or plan.domain),
                tables_needed=(
                    [str(t) for t in tables if isinstance(t, str)]
                    if isinstance(tables, list)
                    else list(plan.tables_needed)
                ),
                depends_on=depends_on,
                join_key=join_key if isinstance(join_key, str) and join_key else DEFAULT_JOIN_KEY,
                resolved_references=dict(plan.resolved_references) if is_anchor else {},
            )
        )

    stitch_key = data.get("stitch_key")
    strategy = data.get("stitch_strategy")
    return DecomposedPlan(
        sub_queries=sub_queries,
        stitch_key=stitch_key if isinstance(stitch_key, str) and stitch_key else DEFAULT_JOIN_KEY,
        stitch_strategy=strategy if strategy in STITCH_STRATEGIES else DEFAULT_STITCH_STRATEGY,
    )


class DecomposerAgent(BaseAgent):
    """
    Multi-query decomposition agent.

    Decomposition failures are never surfaced: the question is answered
    with a single query instead.
    """

    def __init__(
        self,
        llm_provider: BaseLLMProvider | None = None,
        semantic_layer: SemanticLayer | None = None,
        prompts: PromptLoader | None = None,
        array_hints: Sequence[str] | None = None,
        max_sub_queries: int | None = None,
    ):
        super().__init__(name="DecomposerAgent", max_retries=0)

        if llm_provider is None or array_hints is None or max_sub_queries is None:
            config = get_settings()
            if llm_provider is None:
                llm_provider = LLMProviderFactory.create_agent_provider(
                    "decomposer", config.llm, model_type="mini"
                )
            array_hints = array_hints or config.pipeline.decomposition_array_hints
            max_sub_queries = max_sub_queries or config.pipeline.max_sub_queries

        self.llm = llm_provider
        self.array_hints = tuple(array_hints)
        self.max_sub_queries = min(max_sub_queries, MAX_SUB_QUERIES)
        self.semantic_layer = semantic_layer or load_semantic_layer()
        self.prompts = prompts or get_prompt_loader()

    async def execute(self, input: DecomposerAgentInput) -> DecomposerAgentOutput:
        decomposed = await self.try_decompose(input.query, input.plan, input.schema_map)
        return DecomposerAgentOutput(
            success=True, decomposed=decomposed, metadata=self._create_metadata()
        )

    def should_skip(self, plan: QueryPlan, schema_map: SchemaMap) -> bool:
        """True when a single query is certainly enough, so no LLM call is needed."""
        if plan.requests_clarification:
            return True
        # Refinements edit the previous SQL in place
        if plan.turn_type == "refinement" and plan.previous_sql:
            return True
        if len(plan.tables_needed) <= 1:
            table = schema_map.get(plan.tables_needed[0]) if plan.tables_needed else None
            return not has_jsonb_array_columns(table, self.array_hints)
        return False

    async def try_decompose(
        self, question: str, plan: QueryPlan, schema_map: SchemaMap
    ) -> DecomposedPlan | None:
        if self.should_skip(plan, schema_map):
            return None

        try:
            system_prompt = self.prompts.render(
                "agents/decomposer.md",
                schema_lines=[
                    format_table_for_prompt(table, self.array_hints)
                    for table in schema_map.user_tables()
                ],
                relationships=self.semantic_layer.relationships,
                jsonb_patterns=self.semantic_layer.jsonb_patterns,
                plan=plan,
                max_sub_queries=self.max_sub_queries,
            )
            content = await self._complete(self.llm, system_prompt, question, max_tokens=1024)
            decomposed = build_decomposed_plan(
                parse_json_object(content), plan, self.max_sub_queries
            )
        except Exception as e:
            logger.warning(f"[{self.name}] Decomposition failed, using a single query: {e}")
            return None

        if decomposed:
            logger.info(
                f"[{self.name}] Decomposed into {len(decomposed.sub_queries)} sub-queries "
                f"({decomposed.stitch_strategy} on {decomposed.stitch_key})"
            )
        return decomposed
