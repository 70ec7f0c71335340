"""
GeneratorAgent: produce one safe, tenant-scoped SELECT.

Two modes:
- fresh: the plan's intent plus the retrieval context. The main model is
  used when the query looks complex (more than two tables, "join" or
  "across" in the intent, or resolved references); the mini model
  otherwise.
- edit: refinement turns that carry previous SQL and an edit instruction.
  Always the mini model; existing JOINs, filters and grouping are kept.

Whatever the model returns, the SQL safety checks run before the SQL is
handed back: single read-only statement, tenant literal present, LIMIT
present.
"""

import logging
import re
from typing import Any

from data_agent.agents.base import BaseAgent
from data_agent.agents.sql_safety import DEFAULT_LIMIT, extract_sql, secure_sql
from data_agent.config import get_settings
from data_agent.llm.base import BaseLLMProvider, LLMRateLimitError
from data_agent.llm.factory import LLMProviderFactory
from data_agent.models.agent import (
    GeneratorAgentInput,
    GeneratorAgentOutput,
    LLMError,
    SQLGenerationError,
    ValidationError,
)
from data_agent.models.context import RetrievalContext
from data_agent.models.plan import QueryPlan, SubQuery
from data_agent.prompts.loader import PromptLoader, get_prompt_loader
from data_agent.semantic.layer import SemanticLayer, load_semantic_layer

logger = logging.getLogger(__name__)

ENTITY_IDS_REFERENCE = "_entity_ids"
REFERENCE_PREVIEW_SIZE = 10
COMPLEX_TABLE_COUNT = 2

LOCATION_WORDS = re.compile(
    r"\b(address|location|city|zip|state|province|country|where)\b", re.IGNORECASE
)
COMPLEXITY_WORDS = ("join", "across")


class ResolvedReference:
    """A resolved reference as shown in the prompt: a short preview of its values."""

    def __init__(self, name: str, values: Any):
        self.name = name
        items = values if isinstance(values, list) else [values]
        self.total = len(items)
        shown = items[:REFERENCE_PREVIEW_SIZE]
        self.shown = len(shown)
        self.preview = ", ".join(f'"{value}"' for value in shown)


def is_edit_mode(plan: QueryPlan) -> bool:
    return (
        plan.turn_type in ("refinement", "follow_up")
        and bool(plan.previous_sql)
        and bool(plan.edit_instruction)
    )


def select_model_tier(plan: QueryPlan) -> str:
    """"main" for complex fresh generations, "mini" for everything else."""
    if is_edit_mode(plan):
        return "mini"
    intent = plan.intent.lower()
    is_complex = (
        len(plan.tables_needed) > COMPLEX_TABLE_COUNT
        or any(word in intent for word in COMPLEXITY_WORDS)
        or bool(plan.resolved_references)
    )
    return "main" if is_complex else "mini"


def quote_literal(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def build_entity_constraint(plan: QueryPlan, join_key: str | None = None) -> str | None:
    """Instruction restricting a dependent sub-query to its anchor's entities."""
    entity_ids = plan.resolved_references.get(ENTITY_IDS_REFERENCE)
    if not entity_ids:
        return None
    column = join_key or "id"
    id_list = ", ".join(quote_literal(entity_id) for entity_id in entity_ids)
    return (
        f"Only return rows for these {len(entity_ids)} entities. "
        f"Filter with: {column} = ANY(ARRAY[{id_list}])"
    )


def build_sub_query_plan(
    sub_query: SubQuery, entity_id_cache: dict[str, list[str]], base: QueryPlan | None = None
) -> QueryPlan:
    """A fresh plan for one sub-query, with its dependencies' entity ids injected."""
    references = dict(sub_query.resolved_references)
    for dependency in sub_query.depends_on or []:
        entity_ids = entity_id_cache.get(dependency)
        if entity_ids:
            references[ENTITY_IDS_REFERENCE] = list(entity_ids)

    fields = {
        "turn_type": "new",
        "intent": sub_query.intent,
        "domain": sub_query.domain,
        "ambiguous": False,
        "tables_needed": list(sub_query.tables_needed),
        "resolved_references": references,
    }
    if base is not None:
        return base.model_copy(
            update={
                **fields,
                "previous_sql": None,
                "edit_instruction": None,
                "needs_clarification": None,
                "structured_clarification": None,
                "decomposed": None,
            }
        )
    return QueryPlan(**fields)


class GeneratorAgent(BaseAgent):
    """
    SQL generation agent.

    Only rate limits are retried (as LLMError). Safety violations raise
    SQLSafetyError, which is never retried and must never be executed.
    """

    def __init__(
        self,
        llm_provider: BaseLLMProvider | None = None,
        mini_llm_provider: BaseLLMProvider | None = None,
        semantic_layer: SemanticLayer | None = None,
        prompts: PromptLoader | None = None,
        row_limit: int | None = None,
        max_retries: int = 2,
    ):
        super().__init__(name="GeneratorAgent", max_retries=max_retries)

        if llm_provider is None or row_limit is None:
            config = get_settings()
            if llm_provider is None:
                llm_provider = LLMProviderFactory.create_agent_provider(
                    "sql", config.llm, model_type="main"
                )
                mini_llm_provider = mini_llm_provider or LLMProviderFactory.create_agent_provider(
                    "sql", config.llm, model_type="mini"
                )
            row_limit = row_limit or config.pipeline.default_row_limit

        self.llm = llm_provider
        self.mini_llm = mini_llm_provider or llm_provider
        self.row_limit = row_limit or DEFAULT_LIMIT
        self.semantic_layer = semantic_layer or load_semantic_layer()
        self.prompts = prompts or get_prompt_loader()

    async def execute(self, input: GeneratorAgentInput) -> GeneratorAgentOutput:
        if input.sub_query is not None:
            plan = build_sub_query_plan(input.sub_query, input.entity_id_cache, input.plan)
            join_key = input.sub_query.join_key
        else:
            plan = input.plan
            join_key = None

        mode = "edit" if is_edit_mode(plan) else "fresh"
        tier = select_model_tier(plan)
        sql = await self.generate_sql(plan, input.retrieval_context, input.org_id, join_key)
        if sql is None:
            raise ValidationError(self.name, "Plan needs clarification before SQL can be generated")

        return GeneratorAgentOutput(
            success=True,
            sql=sql,
            mode=mode,
            model_tier=tier,
            metadata=self._create_metadata(),
        )

    async def generate_sql(
        self,
        plan: QueryPlan,
        context: RetrievalContext,
        org_id: str,
        join_key: str | None = None,
    ) -> str | None:
        """
        Generate SQL for a plan, in edit mode when the plan carries previous SQL.

        Plans that still need clarification get None, without an LLM call.

        Raises:
            LLMError: If the provider is rate limiting (recoverable)
            SQLGenerationError: If the model returned no SQL
            SQLSafetyError: If the SQL is not a single read-only statement
        """
        if plan.requests_clarification:
            logger.warning(f"[{self.name}] Refusing to generate SQL for an ambiguous plan")
            return None

        if is_edit_mode(plan):
            system_prompt = self.build_edit_prompt(plan, context, org_id)
            user_prompt = (
                f"Edit instruction: {plan.edit_instruction}\n\nPrevious SQL:\n{plan.previous_sql}"
            )
            mode = "edit"
        else:
            system_prompt = self.build_fresh_prompt(plan, context, org_id, join_key)
            user_prompt = plan.intent
            mode = "fresh"

        tier = select_model_tier(plan)
        llm = self.llm if tier == "main" else self.mini_llm

        try:
            content = await self._complete(llm, system_prompt, user_prompt, temperature=0)
        except LLMRateLimitError as e:
            raise LLMError(self.name, f"Rate limited during SQL generation: {e}") from e

        sql = extract_sql(content)
        if not sql:
            raise SQLGenerationError(self.name, "Model returned no SQL", context={"mode": mode})

        secured = secure_sql(sql, org_id, self.row_limit)
        logger.debug(
            f"[{self.name}] Generated SQL ({mode}, {tier}): {secured[:200]}",
            extra={"agent": self.name, "org_id": org_id, "mode": mode, "model_tier": tier},
        )
        return secured

    async def generate_sub_query_sql(
        self,
        sub_query: SubQuery,
        context: RetrievalContext,
        org_id: str,
        entity_id_cache: dict[str, list[str]],
    ) -> str | None:
        """Generate SQL for one decomposed sub-query, scoped to its dependencies' entities."""
        plan = build_sub_query_plan(sub_query, entity_id_cache)
        return await self.generate_sql(plan, context, org_id, join_key=sub_query.join_key)

    def build_fresh_prompt(
        self,
        plan: QueryPlan,
        context: RetrievalContext,
        org_id: str,
        join_key: str | None = None,
    ) -> str:
        fallback = None
        if LOCATION_WORDS.search(plan.intent):
            fallback = self.semantic_layer.find_fallback_path("ecom_customers", "default_address")

        return self.prompts.render(
            "agents/sql_generator.md",
            org_id=org_id,
            row_limit=self.row_limit,
            fallback=fallback,
            schema_context=context.schema_context,
            semantic_matches=context.semantic_matches,
            join_paths=context.join_paths,
            similar_queries=context.similar_queries,
            resolved_references=self._references(plan),
            entity_constraint=build_entity_constraint(plan, join_key),
            session_context=context.session_context,
        )

    def build_edit_prompt(self, plan: QueryPlan, context: RetrievalContext, org_id: str) -> str:
        return self.prompts.render(
            "agents/sql_editor.md",
            org_id=org_id,
            schema_context=context.schema_context,
            semantic_matches=context.semantic_matches,
            join_paths=context.join_paths,
            resolved_references=self._references(plan),
        )

    @staticmethod
    def _references(plan: QueryPlan) -> list[ResolvedReference]:
        return [
            ResolvedReference(name, values)
            for name, values in plan.resolved_references.items()
            if name != ENTITY_IDS_REFERENCE
        ]
