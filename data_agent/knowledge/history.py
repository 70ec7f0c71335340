"""
Query History Store

Verified question/SQL pairs live in the tenant database's ``query_history``
table. The corrector records successful queries; the retriever reads the
most recent ones back as few-shot examples.
"""

import asyncio
import logging

from pydantic import BaseModel, Field

from data_agent.connectors.base import BaseConnector

logger = logging.getLogger(__name__)

INSERT_QUERY = """
    INSERT INTO query_history
        (org_id, session_id, question, sql, tables_used, domain,
         execution_time_ms, row_count, verified)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, true)
"""

RECENT_VERIFIED_QUERY = """
    SELECT question, sql, tables_used
    FROM query_history
    WHERE org_id = $1
    AND verified = true
    AND error IS NULL
    ORDER BY created_at DESC
    LIMIT $2
"""


class HistoryEntry(BaseModel):
    """One recorded query."""

    org_id: str
    session_id: str | None = None
    question: str
    sql: str
    tables_used: list[str] = Field(default_factory=list)
    domain: str | None = None
    execution_time_ms: float = 0.0
    row_count: int = 0


class QueryHistoryStore:
    """
    Reads and writes the query_history table.

    Usage:
        history = QueryHistoryStore(connector)
        history.record_in_background(entry)
        recent = await history.recent_verified("org-1", limit=20)
    """

    def __init__(self, connector: BaseConnector):
        self.connector = connector
        self._tasks: set[asyncio.Task] = set()

    async def record(self, entry: HistoryEntry) -> None:
        await self.connector.execute_write(
            INSERT_QUERY,
            [
                entry.org_id,
                entry.session_id,
                entry.question,
                entry.sql,
                entry.tables_used,
                entry.domain,
                int(entry.execution_time_ms),
                entry.row_count,
            ],
        )

    def record_in_background(self, entry: HistoryEntry) -> asyncio.Task:
        """Fire-and-forget write. A failed write is logged and otherwise ignored."""
        task = asyncio.create_task(self._record_quietly(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _record_quietly(self, entry: HistoryEntry) -> None:
        try:
            await self.record(entry)
        except Exception as e:
            logger.warning(f"Failed to save query history (non-fatal): {e}")

    async def recent_verified(self, org_id: str, limit: int = 20) -> list[HistoryEntry]:
        """Most recent verified, error-free queries for one tenant."""
        result = await self.connector.execute(RECENT_VERIFIED_QUERY, [org_id, limit])
        return [
            HistoryEntry(
                org_id=org_id,
                question=str(row.get("question") or ""),
                sql=str(row.get("sql") or ""),
                tables_used=list(row.get("tables_used") or []),
            )
            for row in result.rows
        ]
