"""
RetrieverAgent: assemble everything SQL generation needs.

No LLM calls. Four independent lookups run concurrently:
1. Schema context from the Chroma schema index (hybrid search)
2. JOIN paths between the needed tables (semantic layer graph)
3. Business term and JSONB pattern matches
4. Similar verified past queries (few-shot examples)

Infrastructure failures degrade to empty context and never abort the
pipeline.
"""

import asyncio
import logging
import re

from data_agent.agents.base import BaseAgent
from data_agent.knowledge.history import QueryHistoryStore
from data_agent.knowledge.indexer import SCHEMA_SOURCE
from data_agent.knowledge.vectors import SchemaVectorStore
from data_agent.models.agent import RetrieverAgentInput, RetrieverAgentOutput
from data_agent.models.context import PastQuery, RetrievalContext, SemanticMatch
from data_agent.models.plan import QueryPlan
from data_agent.models.schema import SchemaMap
from data_agent.models.session import DataAgentSession
from data_agent.schema.introspector import get_schema_description
from data_agent.semantic.layer import SemanticLayer, load_semantic_layer
from data_agent.session.context import build_session_context

logger = logging.getLogger(__name__)

NO_SCHEMA_FOUND = (
    "No schema information found. Generate SQL based on table names and common conventions."
)
SCHEMA_SEARCH_FAILED = "Schema search failed. Use table names from the query plan."
CHUNK_SEPARATOR = "\n\n---\n\n"

_WHITESPACE = re.compile(r"\s+")


def keyword_similarity(intent: str, question: str, min_length: int = 4) -> float:
    """
    Question words found in the intent, over the intent's vocabulary size.

    Only words of at least ``min_length`` characters count, and a word
    repeated in the question counts every time, so the score can exceed 1.
    """
    intent_words = set(_WHITESPACE.split(intent.lower().strip()))
    intent_words.discard("")
    if not intent_words:
        return 0.0
    shared = sum(
        1
        for word in _WHITESPACE.split(question.lower().strip())
        if len(word) >= min_length and word in intent_words
    )
    return shared / len(intent_words)


def semantic_matches_for(question: str, semantic_layer: SemanticLayer) -> list[SemanticMatch]:
    """Term matches followed by the JSONB access patterns the question touches."""
    matches = semantic_layer.find_term_matches(question)
    for pattern in semantic_layer.find_jsonb_patterns(question):
        matches.append(
            SemanticMatch(
                term=f"{pattern.column} (JSONB)",
                sql_condition=pattern.access_pattern,
                table=pattern.table,
                description=pattern.description,
            )
        )
    return matches


class RetrieverAgent(BaseAgent):
    """
    Context assembly agent.

    Both the vector store and the history store are optional: without a
    vector store the introspected table descriptions are used as schema
    context, and without a history store no few-shot examples are given.
    """

    def __init__(
        self,
        vector_store: SchemaVectorStore | None = None,
        history_store: QueryHistoryStore | None = None,
        semantic_layer: SemanticLayer | None = None,
        search_limit: int = 8,
        history_pool: int = 20,
        similar_limit: int = 3,
        similarity_threshold: float = 0.2,
    ):
        super().__init__(name="RetrieverAgent", max_retries=0)
        self.vector_store = vector_store
        self.history_store = history_store
        self.semantic_layer = semantic_layer or load_semantic_layer()
        self.search_limit = search_limit
        self.history_pool = history_pool
        self.similar_limit = similar_limit
        self.similarity_threshold = similarity_threshold

    async def execute(self, input: RetrieverAgentInput) -> RetrieverAgentOutput:
        context = await self.retrieve(
            input.plan,
            input.session,
            input.schema_map,
            input.org_id,
            preloaded_schema_context=input.preloaded_schema_context,
        )
        logger.info(
            f"[{self.name}] Retrieved context: {len(context.semantic_matches)} term matches, "
            f"{len(context.join_paths)} join paths, {len(context.similar_queries)} examples"
        )
        return RetrieverAgentOutput(
            success=True, retrieval_context=context, metadata=self._create_metadata()
        )

    async def retrieve(
        self,
        plan: QueryPlan,
        session: DataAgentSession,
        schema_map: SchemaMap,
        org_id: str,
        preloaded_schema_context: str | None = None,
    ) -> RetrievalContext:
        if preloaded_schema_context:
            schema_task = asyncio.sleep(0, result=preloaded_schema_context)
        else:
            schema_task = self.retrieve_schema_context(plan.intent, org_id, plan, schema_map)

        schema_context, join_paths, matches, similar = await asyncio.gather(
            schema_task,
            asyncio.to_thread(self.semantic_layer.find_join_paths, plan.tables_needed),
            asyncio.to_thread(semantic_matches_for, plan.intent, self.semantic_layer),
            self.retrieve_similar_queries(plan.intent, org_id),
        )

        return RetrievalContext(
            schema_context=schema_context,
            semantic_matches=matches,
            similar_queries=similar,
            session_context=build_session_context(session),
            join_paths=join_paths,
        )

    async def prefetch_schema_context(
        self, question: str, org_id: str, schema_map: SchemaMap | None = None
    ) -> str:
        """Schema search on the raw question, run while the planner is still working."""
        return await self.retrieve_schema_context(question, org_id, None, schema_map)

    async def retrieve_schema_context(
        self,
        query: str,
        org_id: str,
        plan: QueryPlan | None = None,
        schema_map: SchemaMap | None = None,
    ) -> str:
        if self.vector_store is None:
            if schema_map is None:
                return NO_SCHEMA_FOUND
            tables = plan.tables_needed if plan and plan.tables_needed else None
            return get_schema_description(schema_map, tables) or NO_SCHEMA_FOUND

        try:
            chunks = await self.vector_store.hybrid_search(
                query,
                limit=self.search_limit,
                source_filter=[SCHEMA_SOURCE],
                org_id=org_id,
            )
        except Exception as e:
            logger.warning(f"[{self.name}] Schema search failed: {e}")
            return SCHEMA_SEARCH_FAILED

        if not chunks:
            return NO_SCHEMA_FOUND

        # Chunks of one source document are concatenated in chunk order
        documents: dict[str, list[tuple[int, str]]] = {}
        for chunk in chunks:
            index = int(chunk.metadata.get("chunk_index", 0))
            parts = documents.setdefault(chunk.source_id, [])
            if all(existing != index for existing, _ in parts):
                parts.append((index, chunk.content))

        return CHUNK_SEPARATOR.join(
            "\n".join(content for _, content in sorted(parts)) for parts in documents.values()
        )

    async def retrieve_similar_queries(self, intent: str, org_id: str) -> list[PastQuery]:
        if self.history_store is None or self.similar_limit == 0:
            return []
        try:
            history = await self.history_store.recent_verified(org_id, limit=self.history_pool)
        except Exception as e:
            logger.warning(f"[{self.name}] Query history search failed: {e}")
            return []

        scored = []
        for entry in history:
            similarity = keyword_similarity(intent, entry.question)
            if similarity > self.similarity_threshold:
                scored.append(
                    PastQuery(
                        question=entry.question,
                        sql=entry.sql,
                        tables=entry.tables_used,
                        similarity=similarity,
                    )
                )
        scored.sort(key=lambda past: past.similarity, reverse=True)
        return scored[: self.similar_limit]
