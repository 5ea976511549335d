"""
PostgreSQL Connector

Async PostgreSQL connector using asyncpg.

Features:
- Connection pooling with asyncpg
- Read-only transactions with a server-side statement timeout
- Column type families from prepared statement attributes
- Row cap applied through a server-side cursor
- Schema introspection (tables, columns, primary and foreign keys)

Usage:
    connector = PostgresConnector(
        host="localhost",
        port=5432,
        database="ads",
        user="analyst",
        password="secret"
    )

    await connector.connect()

    result = await connector.execute(
        "SELECT * FROM campaigns WHERE advertiser_id = $1",
        params=[7],
        timeout=10,
        max_rows=1000,
    )

    await connector.close()
"""

import logging
import time
from typing import Any, List, Optional

import asyncpg

from askdash.connectors.base import (
    BaseConnector,
    ColumnInfo,
    ConnectionError,
    QueryError,
    QueryResult,
    QueryTimeoutError,
    SchemaError,
    TableInfo,
)
from askdash.models.result import ResultColumn, normalize_type

logger = logging.getLogger(__name__)


class PostgresConnector(BaseConnector):
    """
    PostgreSQL database connector using asyncpg.

    Every statement runs in its own read-only transaction on a pooled
    connection; ``SET LOCAL statement_timeout`` makes the server cancel
    statements that run too long.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        pool_size: int = 5,
        timeout: int = 30,
        **kwargs,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        super().__init__(database=database, pool_size=pool_size, timeout=timeout, **kwargs)

    def describe(self) -> str:
        return f"{self.user}@{self.host}:{self.port}/{self.database}"

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
                command_timeout=self.timeout,
                **self.kwargs,
            )

            # Test connection
            async with self._pool.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                logger.info(f"Connected to PostgreSQL: {version.split(',')[0]}")

            self._connected = True

        except (asyncpg.PostgresError, OSError, asyncpg.InterfaceError) as e:
            logger.error(f"PostgreSQL connection failed: {type(e).__name__}")
            logger.debug(f"PostgreSQL connection error detail: {e}")
            raise ConnectionError(f"Failed to connect to PostgreSQL: {type(e).__name__}") from e

    async def execute(
        self,
        query: str,
        params: Optional[List[Any]] = None,
        timeout: Optional[float] = None,
        max_rows: Optional[int] = None,
    ) -> QueryResult:
        """
        Execute a read-only statement.

        Raises:
            QueryTimeoutError: If the server cancelled the statement
            QueryError: If query fails
            ConnectionError: If not connected or the connection was lost
        """
        if not self._connected or not self._pool:
            raise ConnectionError("Not connected to database. Call connect() first.")

        start_time = time.perf_counter()
        query_timeout = timeout or self.timeout
        args = params or []

        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction(readonly=True):
                    await conn.execute(
                        f"SET LOCAL statement_timeout = {int(query_timeout * 1000)}"
                    )
                    stmt = await conn.prepare(query)
                    columns = [
                        ResultColumn(name=attr.name, type=normalize_type(attr.type.name))
                        for attr in stmt.get_attributes()
                    ]
                    if max_rows:
                        cursor = await stmt.cursor(*args)
                        records = await cursor.fetch(max_rows)
                    else:
                        records = await stmt.fetch(*args)

            rows = [list(record.values()) for record in records]
            execution_time_ms = (time.perf_counter() - start_time) * 1000

            logger.debug(
                f"Query executed in {execution_time_ms:.2f}ms, returned {len(rows)} rows"
            )

            return QueryResult(
                columns=columns,
                rows=rows,
                row_count=len(rows),
                execution_time_ms=execution_time_ms,
            )

        except asyncpg.QueryCanceledError as e:
            logger.warning(f"Query cancelled after {query_timeout}s")
            raise QueryTimeoutError(f"Query timeout ({query_timeout}s)") from e
        except (asyncpg.PostgresConnectionError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"PostgreSQL connection lost: {type(e).__name__}")
            raise ConnectionError(f"Connection lost: {type(e).__name__}") from e
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {type(e).__name__}")
            logger.debug(f"Query error detail: {e}\nQuery: {query[:200]}...")
            raise QueryError(f"Query execution failed: {type(e).__name__}") from e

    async def get_schema(self, schema_name: Optional[str] = None) -> List[TableInfo]:
        """
        Introspect PostgreSQL schema from information_schema and pg_catalog.

        Raises:
            SchemaError: If schema introspection fails
        """
        if not self._connected or not self._pool:
            raise ConnectionError("Not connected to database. Call connect() first.")

        schema_filter = schema_name or "public"

        try:
            async with self._pool.acquire() as conn:
                tables_query = """
                    SELECT
                        table_schema,
                        table_name,
                        table_type
                    FROM information_schema.tables
                    WHERE table_schema = $1
                    AND table_type IN ('BASE TABLE', 'VIEW')
                    ORDER BY table_name
                """
                tables = await conn.fetch(tables_query, schema_filter)

                table_infos = []

                for table_row in tables:
                    table_schema = table_row["table_schema"]
                    table_name = table_row["table_name"]

                    columns_query = """
                        SELECT
                            column_name,
                            data_type,
                            is_nullable
                        FROM information_schema.columns
                        WHERE table_schema = $1 AND table_name = $2
                        ORDER BY ordinal_position
                    """
                    columns = await conn.fetch(columns_query, table_schema, table_name)

                    pk_query = """
                        SELECT a.attname
                        FROM pg_index i
                        JOIN pg_attribute a ON a.attrelid = i.indrelid
                            AND a.attnum = ANY(i.indkey)
                        WHERE i.indrelid = $1::regclass
                        AND i.indisprimary
                    """
                    pk_cols = await conn.fetch(pk_query, f'"{table_schema}"."{table_name}"')
                    pk_columns = {row["attname"] for row in pk_cols}

                    fk_query = """
                        SELECT
                            kcu.column_name,
                            ccu.table_name AS foreign_table_name,
                            ccu.column_name AS foreign_column_name
                        FROM information_schema.table_constraints AS tc
                        JOIN information_schema.key_column_usage AS kcu
                            ON tc.constraint_name = kcu.constraint_name
                            AND tc.table_schema = kcu.table_schema
                        JOIN information_schema.constraint_column_usage AS ccu
                            ON ccu.constraint_name = tc.constraint_name
                            AND ccu.table_schema = tc.table_schema
                        WHERE tc.constraint_type = 'FOREIGN KEY'
                        AND tc.table_schema = $1
                        AND tc.table_name = $2
                    """
                    fk_rows = await conn.fetch(fk_query, table_schema, table_name)
                    fk_map = {
                        row["column_name"]: (row["foreign_table_name"], row["foreign_column_name"])
                        for row in fk_rows
                    }

                    column_infos = [
                        ColumnInfo(
                            name=col["column_name"],
                            data_type=col["data_type"],
                            is_nullable=col["is_nullable"] == "YES",
                            is_primary_key=col["column_name"] in pk_columns,
                            is_foreign_key=col["column_name"] in fk_map,
                            foreign_table=fk_map.get(col["column_name"], (None, None))[0],
                            foreign_column=fk_map.get(col["column_name"], (None, None))[1],
                        )
                        for col in columns
                    ]

                    table_infos.append(
                        TableInfo(
                            schema=table_schema,
                            table_name=table_name,
                            columns=column_infos,
                            table_type=table_row["table_type"],
                        )
                    )

                logger.info(
                    f"Introspected schema '{schema_filter}': found {len(table_infos)} tables"
                )

                return table_infos

        except asyncpg.PostgresError as e:
            logger.error(f"Schema introspection failed: {type(e).__name__}")
            raise SchemaError(f"Failed to introspect schema: {type(e).__name__}") from e

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
            logger.info("PostgreSQL connection closed")
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Error closing connection: {type(e).__name__}")
            raise ConnectionError(f"Failed to close connection: {type(e).__name__}") from e
        finally:
            self._pool = None
            self._connected = False
