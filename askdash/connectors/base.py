"""
Base Database Connector

Abstract base class for all database connectors. Provides a consistent
async interface for connecting to, querying, and introspecting databases.

All connectors must implement:
- connect(): Establish connection with connection pooling
- execute(): Run a statement with positional parameters, timeout and row cap
- get_schema(): Introspect database schema (tables, columns, types, keys)
- close(): Clean up connections and pools
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from askdash.models.result import ResultColumn

logger = logging.getLogger(__name__)


# ============================================================================
# Data Models
# ============================================================================


class ColumnInfo(BaseModel):
    """Information about a database column."""

    name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="Column data type")
    is_nullable: bool = Field(default=True, description="Whether column can be NULL")
    is_primary_key: bool = Field(default=False, description="Is part of primary key")
    is_foreign_key: bool = Field(default=False, description="Is a foreign key")
    foreign_table: str | None = Field(None, description="Referenced table if FK")
    foreign_column: str | None = Field(None, description="Referenced column if FK")


class TableInfo(BaseModel):
    """Information about a database table."""

    schema_name: str = Field(..., alias="schema", description="Schema/database name")
    table_name: str = Field(..., description="Table name")
    columns: list[ColumnInfo] = Field(..., description="List of columns")
    table_type: str = Field(default="TABLE", description="TABLE, VIEW, etc.")

    model_config = ConfigDict(populate_by_name=True)


class QueryResult(BaseModel):
    """Raw result from one statement, before the router applies its row cap."""

    columns: list[ResultColumn] = Field(..., description="Column names and type families")
    rows: list[list[Any]] = Field(..., description="Rows as positional value lists")
    row_count: int = Field(..., description="Number of rows fetched")
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


class QueryTimeoutError(QueryError):
    """Statement exceeded its timeout and was cancelled."""

    pass


class SchemaError(ConnectorError):
    """Error introspecting database schema."""

    pass


# ============================================================================
# Base Connector
# ============================================================================


class BaseConnector(ABC):
    """
    Abstract base class for database connectors.

    Features:
    - Async interface throughout
    - Connection pooling with scoped acquisition per call
    - Statement timeout with cancellation
    - Row cap applied while fetching
    - Schema introspection
    - Parameterized query execution ($1, $2, ...)

    Usage:
        connector = create_connector("postgresql://user:pw@host/ads")
        async with connector:
            result = await connector.execute(
                "SELECT * FROM users WHERE id = $1", [123], timeout=5, max_rows=100
            )
    """

    def __init__(
        self,
        database: str,
        pool_size: int = 5,
        timeout: int = 30,
        **kwargs,
    ):
        """
        Initialize connector.

        Args:
            database: Database name or file path
            pool_size: Connection pool size (default: 5)
            timeout: Default statement timeout in seconds (default: 30)
            **kwargs: Additional connector-specific parameters
        """
        self.database = database
        self.pool_size = pool_size
        self.timeout = timeout
        self.kwargs = kwargs

        self._pool = None
        self._connected = False

        logger.info(f"Initialized {self.__class__.__name__} for {self.describe()}")

    def describe(self) -> str:
        """Credential-free description used in logs."""
        return self.database

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish database connection and create connection pool.

        Should be idempotent - calling multiple times should not create
        multiple pools.

        Raises:
            ConnectionError: If connection fails
        """
        pass

    @abstractmethod
    async def execute(
        self,
        query: str,
        params: list[Any] | None = None,
        timeout: float | None = None,
        max_rows: int | None = None,
    ) -> QueryResult:
        """
        Execute a read-only SQL statement.

        Args:
            query: SQL query string (use $1, $2 for parameters)
            params: Query parameters (optional)
            timeout: Statement timeout in seconds (overrides default)
            max_rows: Stop fetching after this many rows (optional)

        Returns:
            QueryResult with typed columns and rows

        Raises:
            QueryTimeoutError: If the statement exceeded the timeout
            QueryError: If query execution fails
            ConnectionError: If not connected or the connection was lost
        """
        pass

    @abstractmethod
    async def get_schema(self, schema_name: str | None = None) -> list[TableInfo]:
        """
        Introspect database schema.

        Args:
            schema_name: Specific schema to introspect (None = default schema)

        Returns:
            List of TableInfo objects

        Raises:
            SchemaError: If schema introspection fails
        """
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
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
        return False

    def __repr__(self) -> str:
        status = "connected" if self._connected else "disconnected"
        return f"<{self.__class__.__name__} {self.describe()} ({status})>"
