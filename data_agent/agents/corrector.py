"""
CorrectorAgent: execute generated SQL and self-correct on failure.

Each attempt:
1. Security check: the SQL must contain the tenant id literal. If it does
   not, the SQL is regenerated with a security instruction and never run.
2. Execute in a read-only transaction with a statement timeout.
3. On a database error, feed the error back to the generator (edit mode)
   and try again, up to ``max_retries`` times.

Successful queries (including empty ones) are recorded to query history in
the background. Exhausted retries produce a plain-language failure with
the raw error kept in ``error``.
"""

import logging
import time
from collections.abc import Sequence
from typing import Any

from data_agent.agents.base import BaseAgent
from data_agent.agents.generator import GeneratorAgent
from data_agent.agents.sql_safety import has_tenant_literal
from data_agent.connectors.base import BaseConnector, ConnectorError, ExecutionResult
from data_agent.knowledge.history import HistoryEntry, QueryHistoryStore
from data_agent.models.agent import (
    AgentError,
    CorrectorAgentInput,
    CorrectorAgentOutput,
    SQLSafetyError,
)
from data_agent.models.context import RetrievalContext
from data_agent.models.plan import QueryPlan
from data_agent.models.result import QueryResult
from data_agent.models.rows import Row
from data_agent.models.schema import SchemaMap
from data_agent.presentation.formatter import format_results
from data_agent.semantic.classifier import ColumnClassifier, SemanticKind, default_classifier

logger = logging.getLogger(__name__)

MAX_CORRECTION_RETRIES = 3

RETRIEVAL_FAILED_MESSAGE = (
    "I wasn't able to retrieve that data. Try rephrasing your question or asking about "
    "a different aspect of the data."
)
SECURITY_FAILED_MESSAGE = "Query failed security validation: missing tenant filter."
SECURITY_FAILED_ERROR = "org_id filter missing from generated SQL"
NO_RESULTS_MESSAGE = (
    "No results found. The query executed successfully but returned no matching rows. "
    "You might want to broaden your search criteria."
)

COMMON_FIXES = (
    "JSONB text access: use ->> (not ->) for text values",
    "JSONB arrays: use CROSS JOIN LATERAL jsonb_array_elements(column) AS item "
    "(not just jsonb_array_elements in SELECT)",
    "Numeric casting: (field->>'price')::numeric for math on JSONB values",
    "Table aliases: ensure every alias in SELECT/WHERE is defined in FROM/JOIN",
    "Column names: verify exact column names match the schema (check spelling, underscores)",
    "org_id: must be present in WHERE clause",
    "GROUP BY: all non-aggregate SELECT columns must be in GROUP BY",
)


def build_fix_instruction(error: str) -> str:
    fixes = "\n".join(f"- {fix}" for fix in COMMON_FIXES)
    return f"Fix this SQL error: {error}.\n\nCommon fixes:\n{fixes}"


def build_security_instruction(org_id: str) -> str:
    return (
        "SECURITY ERROR: The query is missing the required org_id filter. Every query MUST "
        f"include org_id = '{org_id}' in the WHERE clause of the primary table. Add it now."
    )


def extract_entity_ids(
    rows: Sequence[Row], classifier: ColumnClassifier | None = None
) -> list[str]:
    """One entity id per row, from the first id-like column holding a string."""
    classifier = classifier or default_classifier()
    ids: list[str] = []
    for row in rows:
        for column in classifier.entity_id_columns:
            value = row.get(column)
            if isinstance(value, str) and value:
                ids.append(value)
                break
    return ids


def extract_key_values(
    rows: Sequence[Row], classifier: ColumnClassifier | None = None
) -> dict[str, list[Any]]:
    """Values of columns a follow-up may refer back to ("those zip codes")."""
    if not rows:
        return {}
    classifier = classifier or default_classifier()
    values: dict[str, list[Any]] = {}
    for column in classifier.columns_of_kind(rows[0].columns, SemanticKind.EXTRACTABLE):
        present = [row.get(column) for row in rows if row.get(column) is not None]
        if present:
            values[column] = present
    return values


class CorrectorAgent(BaseAgent):
    """
    Execution and self-correction agent.

    SQLSafetyError raised while regenerating is never caught here: unsafe
    SQL is a hard failure for the whole question.
    """

    def __init__(
        self,
        connector: BaseConnector,
        generator: GeneratorAgent,
        history_store: QueryHistoryStore | None = None,
        classifier: ColumnClassifier | None = None,
        max_correction_retries: int = MAX_CORRECTION_RETRIES,
    ):
        super().__init__(name="CorrectorAgent", max_retries=0)
        self.connector = connector
        self.generator = generator
        self.history_store = history_store
        self.classifier = classifier or default_classifier()
        self.max_correction_retries = max_correction_retries

    async def execute(self, input: CorrectorAgentInput) -> CorrectorAgentOutput:
        result, attempts = await self._run(
            input.sql,
            input.org_id,
            input.plan,
            input.retrieval_context,
            input.schema_map,
            input.session_id,
        )
        return CorrectorAgentOutput(
            success=result.success,
            result=result,
            attempts=attempts,
            metadata=self._create_metadata(),
        )

    async def execute_and_correct(
        self,
        sql: str,
        org_id: str,
        plan: QueryPlan,
        context: RetrievalContext,
        schema_map: SchemaMap,
        session_id: str | None = None,
    ) -> QueryResult:
        result, _ = await self._run(sql, org_id, plan, context, schema_map, session_id)
        return result

    async def _run(
        self,
        sql: str,
        org_id: str,
        plan: QueryPlan,
        context: RetrievalContext,
        schema_map: SchemaMap,
        session_id: str | None,
    ) -> tuple[QueryResult, int]:
        current_sql = sql
        last_error = "Unknown error"

        for attempt in range(self.max_correction_retries + 1):
            attempts = attempt + 1
            can_retry = attempt < self.max_correction_retries
            started = time.perf_counter()

            if not has_tenant_literal(current_sql, org_id):
                logger.warning(
                    f"[{self.name}] SQL missing tenant literal (attempt {attempts}), "
                    "triggering self-correction",
                    extra={"agent": self.name, "org_id": org_id, "sql": current_sql[:200]},
                )
                if can_retry:
                    corrected = await self._self_correct(
                        current_sql, build_security_instruction(org_id), plan, context, org_id
                    )
                    if corrected is not None:
                        current_sql = corrected
                        continue
                return (
                    QueryResult(
                        success=False,
                        sql=current_sql,
                        execution_time_ms=_elapsed_ms(started),
                        formatted_message=SECURITY_FAILED_MESSAGE,
                        error=SECURITY_FAILED_ERROR,
                    ),
                    attempts,
                )

            try:
                execution = await self.connector.execute(current_sql)
            except ConnectorError as e:
                last_error = str(e)
                logger.warning(
                    f"[{self.name}] SQL execution failed "
                    f"(attempt {attempts}/{self.max_correction_retries + 1}): {last_error}",
                    extra={"agent": self.name, "org_id": org_id, "sql": current_sql[:200]},
                )
                if can_retry:
                    corrected = await self._self_correct(
                        current_sql, build_fix_instruction(last_error), plan, context, org_id
                    )
                    if corrected is not None:
                        current_sql = corrected
                        continue
                return (
                    QueryResult(
                        success=False,
                        sql=current_sql,
                        execution_time_ms=_elapsed_ms(started),
                        formatted_message=RETRIEVAL_FAILED_MESSAGE,
                        error=last_error,
                    ),
                    attempts,
                )

            rows = execution.rows
            self._record_history(org_id, session_id, plan, current_sql, execution)

            if not rows:
                return (
                    QueryResult(
                        success=True,
                        sql=current_sql,
                        execution_time_ms=execution.execution_time_ms,
                        formatted_message=NO_RESULTS_MESSAGE,
                    ),
                    attempts,
                )

            logger.info(
                f"[{self.name}] Query returned {len(rows)} rows "
                f"in {execution.execution_time_ms:.1f}ms (attempt {attempts})"
            )
            return (
                QueryResult(
                    success=True,
                    sql=current_sql,
                    data=rows,
                    row_count=len(rows),
                    execution_time_ms=execution.execution_time_ms,
                    formatted_message=format_results(
                        rows, schema_map, plan.tables_needed, self.classifier
                    ),
                ),
                attempts,
            )

        # Unreachable: the last attempt always returns
        return (
            QueryResult.failure(RETRIEVAL_FAILED_MESSAGE, error=last_error, sql=current_sql),
            self.max_correction_retries + 1,
        )

    async def _self_correct(
        self,
        failed_sql: str,
        instruction: str,
        plan: QueryPlan,
        context: RetrievalContext,
        org_id: str,
    ) -> str | None:
        """
        Regenerate SQL in edit mode with the failure fed back as the instruction.

        Returns None when regeneration fails for a recoverable reason.

        Raises:
            SQLSafetyError: If the regenerated SQL is not a single read-only statement
        """
        correction_plan = plan.model_copy(
            update={
                "turn_type": "refinement",
                "previous_sql": failed_sql,
                "edit_instruction": instruction,
            }
        )
        try:
            return await self.generator.generate_sql(correction_plan, context, org_id)
        except SQLSafetyError:
            raise
        except AgentError as e:
            logger.error(
                f"[{self.name}] Self-correction failed: {e.message}",
                extra={"agent": self.name, "error": e.to_dict()},
            )
            return None

    def _record_history(
        self,
        org_id: str,
        session_id: str | None,
        plan: QueryPlan,
        sql: str,
        execution: ExecutionResult,
    ) -> None:
        if self.history_store is None:
            return
        self.history_store.record_in_background(
            HistoryEntry(
                org_id=org_id,
                session_id=session_id,
                question=plan.intent,
                sql=sql,
                tables_used=list(plan.tables_needed),
                domain=plan.domain,
                execution_time_ms=execution.execution_time_ms,
                row_count=execution.row_count,
            )
        )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
