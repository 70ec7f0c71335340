"""
Data Agent Pipeline Orchestrator

LangGraph-based pipeline answering one data question per call:
- schema → plan (with schema prefetch) → decompose → retrieve → generate
  → correct → present → finalize
- Ambiguous plans and multi-part decompositions short-circuit to a
  structured clarification before any SQL is generated
- Decomposed plans run their sub-queries in dependency order and stitch
  the results
- One regenerate-and-re-execute pass when the row-count contract is broken
- Per-stage latency on every result
"""

import asyncio
import logging
import time
from typing import TypedDict

from langgraph.graph import END, StateGraph

from data_agent.agents.corrector import CorrectorAgent, extract_entity_ids, extract_key_values
from data_agent.agents.decomposer import DecomposerAgent
from data_agent.agents.generator import GeneratorAgent, build_sub_query_plan
from data_agent.agents.planner import PlannerAgent, build_structured_clarification
from data_agent.agents.presenter import PresenterAgent
from data_agent.agents.retriever import RetrieverAgent
from data_agent.agents.sql_safety import validate_tenant_id
from data_agent.config import get_settings
from data_agent.connectors.base import BaseConnector
from data_agent.connectors.postgres import PostgresConnector
from data_agent.knowledge.history import QueryHistoryStore
from data_agent.knowledge.indexer import SchemaIndexer
from data_agent.knowledge.vectors import SchemaVectorStore, VectorStoreError
from data_agent.models.agent import PresentationOutcome, SQLSafetyError, ValidationError
from data_agent.models.context import RetrievalContext
from data_agent.models.plan import DecomposedPlan, QueryPlan, SubQuery
from data_agent.models.result import QueryResult, StageTimings
from data_agent.models.schema import SchemaMap
from data_agent.models.session import DataAgentSession, QueryTurn
from data_agent.pipeline.stitcher import SubQueryResult, stitch
from data_agent.presentation.formatter import generate_result_summary
from data_agent.schema.introspector import SchemaIntrospector
from data_agent.semantic.classifier import ColumnClassifier, default_classifier
from data_agent.semantic.layer import SemanticLayer, load_semantic_layer
from data_agent.session.store import (
    InMemorySessionStore,
    SessionStore,
    SessionSweeper,
    get_or_create_session,
    update_session,
)

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "I encountered an error analyzing your data. Please try rephrasing your question."
)
DEFAULT_CLARIFICATION = "Could you clarify what data you are looking for?"
SESSION_SUMMARY_LENGTH = 200


# ============================================================================
# Pipeline State Schema
# ============================================================================


class PipelineState(TypedDict, total=False):
    """
    State schema for the data agent pipeline.

    Tracks one question through every stage with all intermediate outputs.
    """

    # Input
    question: str
    session_id: str
    org_id: str
    started_at: float

    # Schema / plan output
    schema_map: SchemaMap | None
    session: DataAgentSession | None
    plan: QueryPlan | None
    preloaded_schema_context: str | None

    # Decomposer output
    decomposed: DecomposedPlan | None

    # Single-query path
    retrieval_context: RetrievalContext | None
    sql: str | None

    # Result
    result: QueryResult | None
    presentation: PresentationOutcome | None
    row_count_retried: bool

    # Pipeline metadata
    current_stage: str | None
    timings: StageTimings


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def topological_sort(sub_queries: list[SubQuery]) -> list[SubQuery]:
    """Dependencies before dependents; otherwise the declared order is kept."""
    by_id = {sub_query.id: sub_query for sub_query in sub_queries}
    ordered: list[SubQuery] = []
    visited: set[str] = set()

    def visit(sub_query: SubQuery) -> None:
        if sub_query.id in visited:
            return
        visited.add(sub_query.id)
        for dependency in sub_query.depends_on or []:
            if dependency in by_id:
                visit(by_id[dependency])
        ordered.append(sub_query)

    for sub_query in sub_queries:
        visit(sub_query)
    return ordered


# ============================================================================
# Data Agent Pipeline
# ============================================================================


class DataAgentPipeline:
    """
    LangGraph-based pipeline orchestrating the data agent stages.

    Flow:
        1. Schema: cached per-tenant SchemaMap; schema indexing in the background
        2. Plan: PlannerAgent, concurrently with a schema-context prefetch
        3. Decompose: DecomposerAgent decides single vs. multi-query
        4. Retrieve / Generate / Correct: single-query path
           (or, per sub-query in dependency order, followed by stitching)
        5. Present: row-count contract, visualization and narrative
        6. Finalize: session update and stage timings

    Usage:
        pipeline = DataAgentPipeline(connector)
        result = await pipeline.analyze("top 5 customers by spend", "conv-1", "org-1")
    """

    def __init__(
        self,
        connector: BaseConnector,
        introspector: SchemaIntrospector | None = None,
        session_store: SessionStore | None = None,
        semantic_layer: SemanticLayer | None = None,
        planner: PlannerAgent | None = None,
        decomposer: DecomposerAgent | None = None,
        retriever: RetrieverAgent | None = None,
        generator: GeneratorAgent | None = None,
        corrector: CorrectorAgent | None = None,
        presenter: PresenterAgent | None = None,
        indexer: SchemaIndexer | None = None,
        history_store: QueryHistoryStore | None = None,
        classifier: ColumnClassifier | None = None,
    ):
        """
        Initialize pipeline with dependencies.

        Args:
            connector: Tenant database connector
            introspector: Schema cache (built over ``connector`` when omitted)
            session_store: Conversation state (in-memory when omitted)
            semantic_layer: Business vocabulary and join graph
            planner, decomposer, retriever, generator, corrector, presenter:
                Stage agents; defaults are built from settings
            indexer: Background schema indexer (indexing is skipped when omitted)
            history_store: Verified query history (few-shot examples and recording)
            classifier: Column-name heuristics shared by correction and presentation
        """
        self.config = get_settings()
        pipeline_config = self.config.pipeline

        self.connector = connector
        self.semantic_layer = semantic_layer or load_semantic_layer(
            pipeline_config.ambiguity_score_margin
        )
        self.classifier = classifier or default_classifier()
        self.introspector = introspector or SchemaIntrospector(
            connector,
            ttl_seconds=pipeline_config.schema_cache_ttl_seconds,
            jsonb_sample_limit=pipeline_config.jsonb_sample_limit,
        )
        self.session_store = session_store or InMemorySessionStore(
            ttl_seconds=pipeline_config.session_ttl_seconds,
            max_history=pipeline_config.max_query_history,
        )
        self.indexer = indexer
        self.history_store = history_store
        self.row_count_retry_enabled = pipeline_config.row_count_retry_enabled

        # Initialize agents
        self.planner = planner or PlannerAgent(semantic_layer=self.semantic_layer)
        self.decomposer = decomposer or DecomposerAgent(semantic_layer=self.semantic_layer)
        self.retriever = retriever or RetrieverAgent(
            history_store=history_store,
            semantic_layer=self.semantic_layer,
            search_limit=pipeline_config.schema_search_limit,
            history_pool=pipeline_config.similar_query_pool,
            similar_limit=pipeline_config.similar_query_limit,
            similarity_threshold=pipeline_config.similar_query_threshold,
        )
        self.generator = generator or GeneratorAgent(semantic_layer=self.semantic_layer)
        self.corrector = corrector or CorrectorAgent(
            connector,
            self.generator,
            history_store=history_store,
            classifier=self.classifier,
            max_correction_retries=pipeline_config.max_correction_retries,
        )
        self.presenter = presenter or PresenterAgent(classifier=self.classifier)

        self.sweeper: SessionSweeper | None = None

        # Build LangGraph
        self.graph = self._build_graph()

        logger.info("DataAgentPipeline initialized")

    def _build_graph(self):
        """
        Build LangGraph state machine.

        Returns:
            Compiled LangGraph
        """
        workflow = StateGraph(PipelineState)

        workflow.add_node("schema", self._run_schema)
        workflow.add_node("plan", self._run_plan)
        workflow.add_node("clarify", self._run_clarify)
        workflow.add_node("decompose", self._run_decompose)
        workflow.add_node("multi_query", self._run_multi_query)
        workflow.add_node("retrieve", self._run_retrieve)
        workflow.add_node("generate", self._run_generate)
        workflow.add_node("correct", self._run_correct)
        workflow.add_node("present", self._run_present)
        workflow.add_node("row_count_retry", self._run_row_count_retry)
        workflow.add_node("finalize", self._run_finalize)

        workflow.set_entry_point("schema")
        workflow.add_edge("schema", "plan")
        workflow.add_conditional_edges(
            "plan",
            self._should_clarify_after_plan,
            {
                "clarify": "clarify",
                "decompose": "decompose",
            },
        )
        workflow.add_conditional_edges(
            "decompose",
            self._route_after_decompose,
            {
                "clarify": "clarify",
                "multi_query": "multi_query",
                "single_query": "retrieve",
            },
        )
        workflow.add_edge("retrieve", "generate")
        workflow.add_edge("generate", "correct")
        workflow.add_edge("correct", "present")
        workflow.add_edge("multi_query", "present")
        workflow.add_conditional_edges(
            "present",
            self._should_retry_row_count,
            {
                "retry": "row_count_retry",
                "finalize": "finalize",
            },
        )
        workflow.add_edge("row_count_retry", "present")
        workflow.add_edge("clarify", END)
        workflow.add_edge("finalize", END)

        return workflow.compile()

    # ========================================================================
    # Entry Point
    # ========================================================================

    async def analyze(self, question: str, session_id: str, org_id: str) -> QueryResult:
        """
        Answer one data question for a tenant's conversation.

        Never raises: any failure becomes a ``success=False`` result with a
        plain-language apology, the underlying error kept in ``error``.

        Args:
            question: User's natural language question
            session_id: Conversation identifier
            org_id: Tenant the question is scoped to

        Returns:
            QueryResult with stage timings attached
        """
        timings = StageTimings()
        initial_state: PipelineState = {
            "question": question,
            "session_id": session_id,
            "org_id": org_id,
            "started_at": time.perf_counter(),
            "schema_map": None,
            "session": None,
            "plan": None,
            "preloaded_schema_context": None,
            "decomposed": None,
            "retrieval_context": None,
            "sql": None,
            "result": None,
            "presentation": None,
            "row_count_retried": False,
            "current_stage": None,
            "timings": timings,
        }

        logger.info(
            f"Starting data agent for question: {question[:100]}",
            extra={"org_id": org_id, "session_id": session_id},
        )

        try:
            final_state = await self.graph.ainvoke(initial_state)
        except Exception as e:
            timings.total_ms = _elapsed_ms(initial_state["started_at"])
            logger.error(
                f"Data agent pipeline failed: {e}",
                extra={"org_id": org_id, "session_id": session_id},
                exc_info=True,
            )
            return QueryResult(
                success=False,
                execution_time_ms=timings.total_ms,
                formatted_message=APOLOGY_MESSAGE,
                error=str(e),
                stage_timings=timings,
            )

        result = final_state["result"]
        result.stage_timings = final_state["timings"]
        logger.info(
            f"Data agent complete in {result.stage_timings.total_ms:.1f}ms "
            f"(success={result.success}, rows={result.row_count})",
            extra={"org_id": org_id, "timings": result.stage_timings.model_dump()},
        )
        return result

    # ========================================================================
    # Stage Methods
    # ========================================================================

    async def _run_schema(self, state: PipelineState) -> PipelineState:
        """Validate the tenant and load its schema; start indexing in the background."""
        started = time.perf_counter()
        state["current_stage"] = "schema"

        try:
            validate_tenant_id(state["org_id"])
        except ValueError as e:
            raise ValidationError("DataAgentPipeline", str(e)) from e

        schema_map = await self.introspector.get_schema_map(state["org_id"])
        if self.indexer is not None:
            self.indexer.schedule(state["org_id"], schema_map)

        state["schema_map"] = schema_map
        state["timings"].schema_ms = _elapsed_ms(started)
        logger.debug(f"Schema loaded: {len(schema_map.tables)} tables")
        return state

    async def _run_plan(self, state: PipelineState) -> PipelineState:
        """Run PlannerAgent while the schema context is prefetched."""
        started = time.perf_counter()
        state["current_stage"] = "PlannerAgent"

        session = get_or_create_session(self.session_store, state["session_id"], state["org_id"])
        plan, preloaded = await asyncio.gather(
            self.planner.plan(state["question"], session, state["schema_map"]),
            self.retriever.prefetch_schema_context(
                state["question"], state["org_id"], state["schema_map"]
            ),
        )

        state["session"] = session
        state["plan"] = plan
        state["preloaded_schema_context"] = preloaded
        state["timings"].plan_ms = _elapsed_ms(started)

        logger.info(
            f"Plan: turn_type={plan.turn_type} domain={plan.domain} "
            f"ambiguous={plan.ambiguous} tables={plan.tables_needed}"
        )
        return state

    async def _run_clarify(self, state: PipelineState) -> PipelineState:
        """Answer with a clarification question instead of data."""
        state["current_stage"] = "clarify"
        plan = state["plan"]
        structured = plan.structured_clarification
        if plan.needs_clarification:
            message = plan.needs_clarification
        elif structured is not None:
            message = structured.question
        else:
            message = DEFAULT_CLARIFICATION

        timings = state["timings"]
        timings.total_ms = _elapsed_ms(state["started_at"])
        state["result"] = QueryResult(
            success=True,
            execution_time_ms=timings.total_ms,
            formatted_message=message,
            needs_clarification=True,
        )
        logger.info(
            f"Returning clarification ({structured.reason if structured else 'freeform'})"
        )
        return state

    async def _run_decompose(self, state: PipelineState) -> PipelineState:
        """Run DecomposerAgent and check whether a multi-part question needs focusing."""
        started = time.perf_counter()
        state["current_stage"] = "DecomposerAgent"
        plan = state["plan"]

        decomposed = await self.decomposer.try_decompose(
            state["question"], plan, state["schema_map"]
        )
        state["timings"].decompose_ms = _elapsed_ms(started)

        if decomposed is not None:
            plan.decomposed = decomposed
            plan.structured_clarification = build_structured_clarification(
                state["question"], plan, self.semantic_layer, decomposed
            )
            logger.info(
                f"Decomposed into {len(decomposed.sub_queries)} sub-queries "
                f"({decomposed.stitch_strategy} on {decomposed.stitch_key})"
            )
        state["decomposed"] = decomposed
        return state

    async def _run_retrieve(self, state: PipelineState) -> PipelineState:
        """Run RetrieverAgent."""
        started = time.perf_counter()
        state["current_stage"] = "RetrieverAgent"

        state["retrieval_context"] = await self.retriever.retrieve(
            state["plan"],
            state["session"],
            state["schema_map"],
            state["org_id"],
            preloaded_schema_context=state.get("preloaded_schema_context"),
        )
        state["timings"].retrieve_ms += _elapsed_ms(started)
        return state

    async def _run_generate(self, state: PipelineState) -> PipelineState:
        """Run GeneratorAgent."""
        started = time.perf_counter()
        state["current_stage"] = "GeneratorAgent"

        sql = await self.generator.generate_sql(
            state["plan"], state["retrieval_context"], state["org_id"]
        )
        if sql is None:
            raise ValidationError("GeneratorAgent", "Plan needs clarification")
        state["sql"] = sql
        state["timings"].generate_ms += _elapsed_ms(started)
        logger.info(f"Generated SQL: {sql[:200]}")
        return state

    async def _run_correct(self, state: PipelineState) -> PipelineState:
        """Run CorrectorAgent (execution with self-correction)."""
        started = time.perf_counter()
        state["current_stage"] = "CorrectorAgent"

        result = await self.corrector.execute_and_correct(
            state["sql"],
            state["org_id"],
            state["plan"],
            state["retrieval_context"],
            state["schema_map"],
            session_id=state["session_id"],
        )
        state["result"] = result
        state["timings"].correct_ms += _elapsed_ms(started)
        logger.info(
            f"Result: success={result.success} rows={result.row_count} "
            f"in {result.execution_time_ms:.1f}ms"
        )
        return state

    async def _run_multi_query(self, state: PipelineState) -> PipelineState:
        """
        Execute a decomposed plan and stitch the sub-query results.

        A failed sub-query is recorded as a failed result and does not stop
        the others. Unsafe SQL is never downgraded: SQLSafetyError aborts
        the whole question.
        """
        state["current_stage"] = "multi_query"
        decomposed = state["decomposed"]
        timings = state["timings"]
        org_id = state["org_id"]

        sub_results: list[SubQueryResult] = []
        entity_id_cache: dict[str, list[str]] = {}

        for sub_query in topological_sort(decomposed.sub_queries):
            try:
                sub_plan = build_sub_query_plan(sub_query, entity_id_cache, state["plan"])

                started = time.perf_counter()
                context = await self.retriever.retrieve(
                    sub_plan,
                    state["session"],
                    state["schema_map"],
                    org_id,
                    preloaded_schema_context=state.get("preloaded_schema_context"),
                )
                timings.retrieve_ms += _elapsed_ms(started)

                started = time.perf_counter()
                sql = await self.generator.generate_sub_query_sql(
                    sub_query, context, org_id, entity_id_cache
                )
                timings.generate_ms += _elapsed_ms(started)
                if sql is None:
                    raise ValidationError("GeneratorAgent", "Sub-query needs clarification")
                logger.info(f"Sub-query {sub_query.id} SQL: {sql[:200]}")

                started = time.perf_counter()
                result = await self.corrector.execute_and_correct(
                    sql,
                    org_id,
                    sub_plan,
                    context,
                    state["schema_map"],
                    session_id=state["session_id"],
                )
                timings.correct_ms += _elapsed_ms(started)

                if result.has_data:
                    entity_id_cache[sub_query.id] = extract_entity_ids(
                        result.data, self.classifier
                    )
            except SQLSafetyError:
                raise
            except Exception as e:
                logger.error(f"Sub-query {sub_query.id} failed: {e}", exc_info=True)
                result = QueryResult.failure(f"Sub-query {sub_query.id} failed", error=str(e))

            logger.info(
                f"Sub-query {sub_query.id} result: success={result.success} "
                f"rows={result.row_count}"
            )
            sub_results.append(SubQueryResult(id=sub_query.id, result=result, sub_query=sub_query))

        started = time.perf_counter()
        stitched = stitch(sub_results, decomposed.stitch_strategy, decomposed.stitch_key)
        timings.stitch_ms = _elapsed_ms(started)

        logger.info(
            f"Stitched {len(sub_results)} sub-queries: success={stitched.success} "
            f"rows={stitched.row_count}"
        )
        state["result"] = stitched
        return state

    async def _run_present(self, state: PipelineState) -> PipelineState:
        """Attach field confidence, then run PresenterAgent."""
        started = time.perf_counter()
        state["current_stage"] = "PresenterAgent"
        result = state["result"]
        plan = state["plan"]

        if result.has_data:
            confidence = self.semantic_layer.get_field_confidence(
                self._tables_used(state), result.columns
            )
            if confidence:
                result.field_confidence = confidence

        outcome = self.presenter.present(
            result,
            plan,
            state["schema_map"],
            enforce_row_count=self._row_count_retry_allowed(state),
        )
        state["presentation"] = outcome
        state["timings"].present_ms += _elapsed_ms(started)

        if outcome.needs_retry:
            logger.info(f"Presenter requesting retry: {outcome.reason}")
        else:
            visualization = result.visualization
            logger.debug(
                f"Presentation: viz={visualization.type if visualization else None} "
                f"chart={visualization.chart_type if visualization else None}"
            )
        return state

    async def _run_row_count_retry(self, state: PipelineState) -> PipelineState:
        """Regenerate and re-execute once with an instruction to fix the LIMIT."""
        state["current_stage"] = "row_count_retry"
        state["row_count_retried"] = True
        timings = state["timings"]
        previous = state["result"]

        corrected_plan = state["plan"].model_copy(
            update={
                "turn_type": "refinement",
                "previous_sql": previous.sql,
                "edit_instruction": state["presentation"].reason,
            }
        )

        started = time.perf_counter()
        sql = await self.generator.generate_sql(
            corrected_plan, state["retrieval_context"], state["org_id"]
        )
        timings.generate_ms += _elapsed_ms(started)
        if sql is None:
            return state

        started = time.perf_counter()
        state["result"] = await self.corrector.execute_and_correct(
            sql,
            state["org_id"],
            corrected_plan,
            state["retrieval_context"],
            state["schema_map"],
            session_id=state["session_id"],
        )
        state["sql"] = sql
        timings.correct_ms += _elapsed_ms(started)
        return state

    async def _run_finalize(self, state: PipelineState) -> PipelineState:
        """Record the turn in the session when it produced data."""
        state["current_stage"] = "finalize"
        result = state["result"]
        plan = state["plan"]

        if result.has_data:
            update_session(
                self.session_store,
                state["session"],
                QueryTurn(
                    question=state["question"],
                    sql=result.sql,
                    tables=self._tables_used(state),
                    domain=plan.domain,
                    entity_ids=extract_entity_ids(result.data, self.classifier),
                    result_values=extract_key_values(result.data, self.classifier),
                    result_summary=generate_result_summary(result.data, state["question"])[
                        :SESSION_SUMMARY_LENGTH
                    ],
                    timestamp=self.session_store.clock.now(),
                ),
            )

        state["timings"].total_ms = _elapsed_ms(state["started_at"])
        return state

    # ========================================================================
    # Conditional Edge Logic
    # ========================================================================

    def _should_clarify_after_plan(self, state: PipelineState) -> str:
        if state["plan"].requests_clarification:
            return "clarify"
        return "decompose"

    def _route_after_decompose(self, state: PipelineState) -> str:
        if state.get("decomposed") is None:
            return "single_query"
        if state["plan"].structured_clarification is not None:
            return "clarify"
        return "multi_query"

    def _should_retry_row_count(self, state: PipelineState) -> str:
        outcome = state.get("presentation")
        if outcome is not None and outcome.needs_retry and self._row_count_retry_allowed(state):
            return "retry"
        return "finalize"

    def _row_count_retry_allowed(self, state: PipelineState) -> bool:
        return (
            self.row_count_retry_enabled
            and not state.get("row_count_retried")
            and state.get("decomposed") is None
        )

    def _tables_used(self, state: PipelineState) -> list[str]:
        decomposed = state.get("decomposed")
        if decomposed is None:
            return list(state["plan"].tables_needed)
        tables = [table for sq in decomposed.sub_queries for table in sq.tables_needed]
        return list(dict.fromkeys(tables))

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start_session_sweeper(self) -> SessionSweeper:
        """Start the background sweep of expired sessions (needs a running loop)."""
        if self.sweeper is None:
            self.sweeper = SessionSweeper(
                self.session_store, self.config.pipeline.session_sweep_interval_seconds
            )
        self.sweeper.start()
        return self.sweeper

    async def close(self) -> None:
        if self.sweeper is not None:
            await self.sweeper.stop()
        await self.connector.close()


# ============================================================================
# Helper Functions
# ============================================================================


async def create_pipeline(database_url: str | None = None) -> DataAgentPipeline:
    """
    Create a DataAgentPipeline with all dependencies initialized.

    The vector store is optional: when Chroma cannot be initialized the
    retriever falls back to introspected table descriptions.

    Args:
        database_url: Database connection URL (uses config if not provided)

    Returns:
        Initialized pipeline with its session sweeper running
    """
    config = get_settings()

    db_url = database_url or config.database.url
    if not db_url:
        raise ValueError("DATABASE_URL must be set or provided to create a pipeline.")

    connector = PostgresConnector.from_url(
        str(db_url),
        pool_size=config.database.pool_size,
        statement_timeout_ms=config.database.statement_timeout_ms,
    )
    await connector.connect()

    vector_store: SchemaVectorStore | None = SchemaVectorStore()
    try:
        await vector_store.initialize()
    except VectorStoreError as e:
        logger.warning(f"Schema search disabled: {e}")
        vector_store = None

    history_store = QueryHistoryStore(connector)
    semantic_layer = load_semantic_layer(config.pipeline.ambiguity_score_margin)
    retriever = RetrieverAgent(
        vector_store=vector_store,
        history_store=history_store,
        semantic_layer=semantic_layer,
        search_limit=config.pipeline.schema_search_limit,
        history_pool=config.pipeline.similar_query_pool,
        similar_limit=config.pipeline.similar_query_limit,
        similarity_threshold=config.pipeline.similar_query_threshold,
    )

    pipeline = DataAgentPipeline(
        connector=connector,
        semantic_layer=semantic_layer,
        retriever=retriever,
        indexer=SchemaIndexer(vector_store) if vector_store is not None else None,
        history_store=history_store,
    )
    pipeline.start_session_sweeper()
    return pipeline
