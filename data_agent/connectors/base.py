"""
Base Database Connector

Abstract base class for the tenant database connector. Provides a
consistent async interface for connecting, running generated (read-only)
SQL, recording bookkeeping writes, and introspecting metadata.

Connectors must implement:
- connect(): Establish connection with connection pooling
- execute(): Run a read-only query with a statement timeout
- execute_write(): Run a bookkeeping write (query history)
- fetch_columns() / fetch_foreign_keys(): Raw metadata for introspection
- sample_jsonb_keys(): Top-level keys observed in a JSONB column
- close(): Clean up connections and pools
"""

import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import unquote, urlparse

from pydantic import BaseModel, Field

from data_agent.models.rows import Row

logger = logging.getLogger(__name__)


# ============================================================================
# Data Models
# ============================================================================


class ColumnRecord(BaseModel):
    """One row of information_schema.columns."""

    table_name: str
    column_name: str
    data_type: str
    is_nullable: bool = True
    column_default: str | None = None


class ForeignKeyRecord(BaseModel):
    """One foreign key edge."""

    source_table: str
    source_column: str
    target_table: str
    target_column: str
    constraint_name: str | None = None


class ExecutionResult(BaseModel):
    """Rows returned by a query, in column order."""

    rows: list[Row] = Field(default_factory=list, description="Query result rows")
    row_count: int = Field(..., description="Number of rows returned")
    columns: list[str] = Field(default_factory=list, description="Column names")
    execution_time_ms: float = Field(..., description="Query execution time in ms")


class ConnectorError(Exception):
    """Base exception for connector errors."""

    pass


class ConnectionError(ConnectorError):
    """Error establishing or managing database connection."""

    pass


class QueryError(ConnectorError):
    """Error executing database query."""

    pass


class SchemaError(ConnectorError):
    """Error introspecting database schema."""

    pass


# ============================================================================
# Base Connector
# ============================================================================


class BaseConnector(ABC):
    """
    Abstract base class for the tenant database connector.

    Usage:
        connector = PostgresConnector.from_url("postgresql://app:secret@db:5432/analytics")
        await connector.connect()

        result = await connector.execute(
            "SELECT id, email FROM ecom_customers WHERE org_id = 'org-1' LIMIT 5"
        )
        print(f"Found {result.row_count} rows")

        await connector.close()
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        pool_size: int = 5,
        statement_timeout_ms: int = 5000,
        **kwargs,
    ):
        """
        Initialize connector.

        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Database user
            password: Database password
            pool_size: Connection pool size (default: 5)
            statement_timeout_ms: Per-statement timeout (default: 5000)
            **kwargs: Additional driver-specific parameters
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.pool_size = pool_size
        self.statement_timeout_ms = statement_timeout_ms
        self.kwargs = kwargs

        self._pool = None
        self._connected = False

        logger.info(f"Initialized {self.__class__.__name__} for {user}@{host}:{port}/{database}")

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "BaseConnector":
        """Build a connector from a postgresql:// URL."""
        parsed = urlparse(url)
        return cls(
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            database=(parsed.path or "/").lstrip("/") or "postgres",
            user=unquote(parsed.username or ""),
            password=unquote(parsed.password or ""),
            **kwargs,
        )

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish database connection and create connection pool.

        Idempotent: calling it again must not create a second pool.

        Raises:
            ConnectionError: If connection fails
        """
        pass

    @abstractmethod
    async def execute(
        self,
        query: str,
        params: list[Any] | None = None,
        timeout_ms: int | None = None,
    ) -> ExecutionResult:
        """
        Run a query inside a read-only transaction.

        Raises:
            QueryError: If the statement fails or times out
            ConnectionError: If not connected
        """
        pass

    @abstractmethod
    async def execute_write(self, query: str, params: list[Any] | None = None) -> None:
        """Run a bookkeeping statement (never generated SQL)."""
        pass

    @abstractmethod
    async def fetch_columns(self, schema_name: str = "public") -> list[ColumnRecord]:
        """Every column of every table in the schema, in ordinal order."""
        pass

    @abstractmethod
    async def fetch_foreign_keys(self, schema_name: str = "public") -> list[ForeignKeyRecord]:
        pass

    @abstractmethod
    async def sample_jsonb_keys(
        self,
        table: str,
        column: str,
        org_id: str | None = None,
        limit: int = 50,
    ) -> list[str]:
        """Distinct top-level keys seen in up to ``limit`` non-null values of a JSONB column."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close database connection and clean up pool.

        Should be idempotent - safe to call multiple times.
        """
        pass

    @property
    def is_connected(self) -> bool:
        """Check if connector is connected."""
        return self._connected

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def __repr__(self) -> str:
        status = "connected" if self._connected else "disconnected"
        return (
            f"<{self.__class__.__name__} {self.user}@{self.host}:{self.port}/{self.database} "
            f"({status})>"
        )
