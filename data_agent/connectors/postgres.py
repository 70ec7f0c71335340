"""
PostgreSQL Connector

Async PostgreSQL connector using asyncpg.

Features:
- Connection pooling with asyncpg
- Generated SQL runs in a read-only transaction with a statement timeout
- Columns and foreign keys read from information_schema
- JSONB key sampling for schema descriptions
- Rows returned as ordered Row records

Usage:
    connector = PostgresConnector.from_url(settings.database.url)
    await connector.connect()

    result = await connector.execute(
        "SELECT id, total_spent FROM ecom_customers WHERE org_id = 'org-1' LIMIT 5"
    )

    await connector.close()
"""

import logging
import re
import time
from typing import Any

import asyncpg

from data_agent.connectors.base import (
    BaseConnector,
    ColumnRecord,
    ConnectionError,
    ExecutionResult,
    ForeignKeyRecord,
    QueryError,
    SchemaError,
)
from data_agent.models.rows import rows_from_records

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

COLUMNS_QUERY = """
    SELECT
        c.table_name,
        c.column_name,
        c.data_type,
        c.is_nullable,
        c.column_default
    FROM information_schema.columns c
    JOIN information_schema.tables t
        ON t.table_schema = c.table_schema
        AND t.table_name = c.table_name
    WHERE c.table_schema = $1
    AND t.table_type = 'BASE TABLE'
    ORDER BY c.table_name, c.ordinal_position
"""

FOREIGN_KEYS_QUERY = """
    SELECT
        tc.table_name AS source_table,
        kcu.column_name AS source_column,
        ccu.table_name AS target_table,
        ccu.column_name AS target_column,
        tc.constraint_name
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage AS ccu
        ON ccu.constraint_name = tc.constraint_name
        AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
    AND tc.table_schema = $1
    ORDER BY tc.table_name, kcu.column_name
"""


def _quote_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise SchemaError(f"Refusing to sample unsafe identifier: {name!r}")
    return f'"{name}"'


class PostgresConnector(BaseConnector):
    """
    PostgreSQL database connector using asyncpg.

    Provides async interface for PostgreSQL with connection pooling,
    metadata introspection, and read-only query execution.
    """

    async def connect(self) -> None:
        """
        Establish connection to PostgreSQL and create connection pool.

        Raises:
            ConnectionError: If connection fails
        """
        if self._connected and self._pool:
            logger.debug("Already connected, skipping connection")
            return

        try:
            logger.info(f"Connecting to PostgreSQL at {self.host}:{self.port}/{self.database}")

            self._pool = await asyncpg.create_pool(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
                min_size=1,
                max_size=self.pool_size,
                **self.kwargs,
            )

            async with self._pool.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                logger.info(f"Connected to PostgreSQL: {version.split(',')[0]}")

            self._connected = True

        except asyncpg.PostgresError as e:
            logger.error(f"PostgreSQL connection failed: {e}")
            raise ConnectionError(f"Failed to connect to PostgreSQL: {e}") from e
        except OSError as e:
            logger.error(f"PostgreSQL unreachable: {e}")
            raise ConnectionError(f"Connection error: {e}") from e

    def _require_pool(self):
        if not self._connected or not self._pool:
            raise ConnectionError("Not connected to database. Call connect() first.")
        return self._pool

    async def execute(
        self,
        query: str,
        params: list[Any] | None = None,
        timeout_ms: int | None = None,
    ) -> ExecutionResult:
        """
        Execute a SQL query inside a read-only transaction.

        Args:
            query: SQL query (use $1, $2, ... for parameters)
            params: Query parameters
            timeout_ms: Statement timeout (overrides the connector default)

        Returns:
            ExecutionResult with rows and metadata

        Raises:
            QueryError: If query fails or times out
            ConnectionError: If not connected
        """
        pool = self._require_pool()
        start_time = time.perf_counter()
        statement_timeout = int(timeout_ms or self.statement_timeout_ms)

        try:
            async with pool.acquire() as conn:
                async with conn.transaction(readonly=True):
                    await conn.execute(f"SET LOCAL statement_timeout = {statement_timeout}")
                    records = await conn.fetch(query, *(params or []))

            rows = rows_from_records(records)
            execution_time_ms = (time.perf_counter() - start_time) * 1000

            logger.debug(
                f"Query executed in {execution_time_ms:.2f}ms, returned {len(rows)} rows"
            )

            return ExecutionResult(
                rows=rows,
                row_count=len(rows),
                columns=rows[0].columns if rows else [],
                execution_time_ms=execution_time_ms,
            )

        except asyncpg.QueryCanceledError as e:
            logger.error(f"Query timed out after {statement_timeout}ms: {query[:100]}...")
            raise QueryError(f"Query timeout ({statement_timeout}ms)") from e
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}\nQuery: {query[:200]}...")
            raise QueryError(str(e)) from e

    async def execute_write(self, query: str, params: list[Any] | None = None) -> None:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(query, *(params or []))
        except asyncpg.PostgresError as e:
            logger.error(f"Write failed: {e}")
            raise QueryError(str(e)) from e

    async def fetch_columns(self, schema_name: str = "public") -> list[ColumnRecord]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                records = await conn.fetch(COLUMNS_QUERY, schema_name)
        except asyncpg.PostgresError as e:
            logger.error(f"Column introspection failed: {e}")
            raise SchemaError(f"Schema introspection failed: {e}") from e

        return [
            ColumnRecord(
                table_name=record["table_name"],
                column_name=record["column_name"],
                data_type=record["data_type"],
                is_nullable=record["is_nullable"] == "YES",
                column_default=record["column_default"],
            )
            for record in records
        ]

    async def fetch_foreign_keys(self, schema_name: str = "public") -> list[ForeignKeyRecord]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                records = await conn.fetch(FOREIGN_KEYS_QUERY, schema_name)
        except asyncpg.PostgresError as e:
            logger.error(f"Relationship introspection failed: {e}")
            raise SchemaError(f"Relationship introspection failed: {e}") from e

        return [ForeignKeyRecord(**dict(record)) for record in records]

    async def sample_jsonb_keys(
        self,
        table: str,
        column: str,
        org_id: str | None = None,
        limit: int = 50,
    ) -> list[str]:
        """
        Sample distinct top-level keys of a JSONB column.

        Object values contribute their own keys; array values contribute
        the keys of their object elements.
        """
        pool = self._require_pool()
        quoted_table = _quote_identifier(table)
        quoted_column = _quote_identifier(column)

        tenant_filter = "AND org_id = $2" if org_id else ""
        query = f"""
            WITH sampled AS (
                SELECT {quoted_column} AS value
                FROM {quoted_table}
                WHERE {quoted_column} IS NOT NULL {tenant_filter}
                LIMIT $1
            ),
            objects AS (
                SELECT value FROM sampled WHERE jsonb_typeof(value) = 'object'
                UNION ALL
                SELECT element FROM sampled, jsonb_array_elements(value) AS element
                WHERE jsonb_typeof(value) = 'array' AND jsonb_typeof(element) = 'object'
            )
            SELECT DISTINCT jsonb_object_keys(value) AS key FROM objects ORDER BY key
        """
        params: list[Any] = [limit, org_id] if org_id else [limit]

        try:
            async with pool.acquire() as conn:
                async with conn.transaction(readonly=True):
                    await conn.execute(f"SET LOCAL statement_timeout = {self.statement_timeout_ms}")
                    records = await conn.fetch(query, *params)
        except asyncpg.PostgresError as e:
            raise SchemaError(f"JSONB key sampling failed for {table}.{column}: {e}") from e

        return [record["key"] for record in records]

    async def close(self) -> None:
        """
        Close connection pool and clean up resources.

        Safe to call multiple times.
        """
        if not self._pool:
            logger.debug("No connection pool to close")
            return

        try:
            await self._pool.close()
            self._pool = None
            self._connected = False
            logger.info("PostgreSQL connection closed")
        except Exception as e:
            logger.error(f"Error closing connection: {e}")
            raise ConnectionError(f"Failed to close connection: {e}") from e
