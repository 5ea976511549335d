"""
SQLite Connector

Async wrapper around the standard library sqlite3 driver. Statements run in
worker threads on a small pool of read-only connections. SQLite has no
server-side statement timeout, so a statement that exceeds its timeout is
interrupted and its connection is dropped and replaced.

Positional ``$n`` placeholders are rewritten to SQLite's ``?n`` form; date
and datetime parameters are bound as ISO-8601 text.
"""

import asyncio
import logging
import re
import sqlite3
import time
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any
from urllib.parse import quote

from askdash.agents.sql_inspection import mask_literals
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
from askdash.models.result import ResultColumn

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_PLACEHOLDER = re.compile(r"\$(\d+)")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}")


def translate_placeholders(query: str) -> str:
    """Rewrite ``$n`` placeholders outside literals as ``?n``."""
    masked = mask_literals(query)
    pieces = []
    last = 0
    for match in _PLACEHOLDER.finditer(masked):
        pieces.append(query[last:match.start()])
        pieces.append(f"?{match.group(1)}")
        last = match.end()
    pieces.append(query[last:])
    return "".join(pieces)


def _bind_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def infer_column_type(values: list[Any]) -> str:
    """Type family from the values SQLite returned (it has no result types)."""
    present = [v for v in values if v is not None]
    if not present:
        return "unknown"
    if all(isinstance(v, int) for v in present):
        return "integer"
    if all(isinstance(v, (int, float)) for v in present):
        return "float"
    if all(isinstance(v, str) for v in present):
        if all(_ISO_DATE.match(v) for v in present):
            return "date"
        if all(_ISO_TIMESTAMP.match(v) for v in present):
            return "timestamp"
        return "text"
    return "unknown"


class SQLiteConnector(BaseConnector):
    """
    SQLite connector.

    File databases are opened read-only (``mode=ro``). ``:memory:`` is
    accepted for tests; every pooled connection then has its own empty
    database.
    """

    def __init__(self, path: str, pool_size: int = 5, timeout: int = 30, **kwargs):
        super().__init__(database=path, pool_size=pool_size, timeout=timeout, **kwargs)
        self.path = path

    def _open(self) -> sqlite3.Connection:
        if self.path == MEMORY:
            return sqlite3.connect(MEMORY, check_same_thread=False)
        uri = f"file:{quote(str(Path(self.path)))}?mode=ro"
        return sqlite3.connect(uri, uri=True, check_same_thread=False)

    async def connect(self) -> None:
        """
        Open the connection pool.

        Raises:
            ConnectionError: If the database cannot be opened
        """
        if self._connected and self._pool is not None:
            logger.debug("Already connected, skipping connection")
            return

        pool: asyncio.Queue = asyncio.Queue()
        try:
            for _ in range(self.pool_size):
                conn = await asyncio.to_thread(self._open)
                pool.put_nowait(conn)
            check = pool.get_nowait()
            await asyncio.to_thread(check.execute, "SELECT 1")
            pool.put_nowait(check)
        except sqlite3.Error as e:
            while not pool.empty():
                pool.get_nowait().close()
            logger.error(f"SQLite connection failed: {type(e).__name__}")
            raise ConnectionError(f"Failed to open SQLite database: {type(e).__name__}") from e

        self._pool = pool
        self._connected = True
        logger.info(f"Connected to SQLite database {self.path}")

    @staticmethod
    def _run(
        conn: sqlite3.Connection, query: str, args: list[Any], max_rows: int | None
    ) -> tuple[list[str], list[tuple]]:
        cursor = conn.execute(query, args)
        try:
            names = [column[0] for column in cursor.description or []]
            rows = cursor.fetchmany(max_rows) if max_rows else cursor.fetchall()
        finally:
            cursor.close()
        return names, rows

    def _retire(self, conn: sqlite3.Connection, future: asyncio.Future) -> None:
        """Close ``conn`` once its worker thread has finished."""

        def _close(done: asyncio.Future) -> None:
            if not done.cancelled():
                done.exception()
            conn.close()

        future.add_done_callback(_close)
        self._pool.put_nowait(self._open())

    async def execute(
        self,
        query: str,
        params: list[Any] | None = None,
        timeout: float | None = None,
        max_rows: int | None = None,
    ) -> QueryResult:
        """
        Execute a read-only statement in a worker thread.

        Raises:
            QueryTimeoutError: If the statement was interrupted on timeout
            QueryError: If query fails
            ConnectionError: If not connected
        """
        if not self._connected or self._pool is None:
            raise ConnectionError("Not connected to database. Call connect() first.")

        query_timeout = timeout or self.timeout
        sql = translate_placeholders(query)
        args = [_bind_value(value) for value in params or []]

        start_time = time.perf_counter()
        conn = await self._pool.get()
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._run, conn, sql, args, max_rows)

        try:
            names, raw_rows = await asyncio.wait_for(asyncio.shield(future), query_timeout)
        except asyncio.TimeoutError as e:
            conn.interrupt()
            self._retire(conn, future)
            logger.warning(f"SQLite statement interrupted after {query_timeout}s")
            raise QueryTimeoutError(f"Query timeout ({query_timeout}s)") from e
        except asyncio.CancelledError:
            conn.interrupt()
            self._retire(conn, future)
            raise
        except sqlite3.Error as e:
            self._pool.put_nowait(conn)
            logger.error(f"Query failed: {type(e).__name__}")
            logger.debug(f"Query error detail: {e}\nQuery: {query[:200]}...")
            raise QueryError(f"Query execution failed: {type(e).__name__}") from e
        except Exception as e:
            # Parameters the driver cannot bind (e.g. integers above 64 bits)
            self._pool.put_nowait(conn)
            logger.error(f"Query parameters rejected: {type(e).__name__}")
            raise QueryError("Query execution failed: unsupported parameter value") from e

        self._pool.put_nowait(conn)

        rows = [list(row) for row in raw_rows]
        columns = [
            ResultColumn(name=name, type=infer_column_type([row[i] for row in rows]))
            for i, name in enumerate(names)
        ]
        execution_time_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"Query executed in {execution_time_ms:.2f}ms, returned {len(rows)} rows")

        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            execution_time_ms=execution_time_ms,
        )

    def _introspect(self, conn: sqlite3.Connection) -> list[TableInfo]:
        tables = conn.execute(
            "SELECT name, type FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()

        table_infos = []
        for table_name, table_type in tables:
            escaped = table_name.replace('"', '""')
            foreign_keys = {
                row[3]: (row[2], row[4])
                for row in conn.execute(f'PRAGMA foreign_key_list("{escaped}")').fetchall()
            }
            columns = []
            for _, name, declared, notnull, _, pk in conn.execute(
                f'PRAGMA table_info("{escaped}")'
            ).fetchall():
                foreign = foreign_keys.get(name)
                columns.append(
                    ColumnInfo(
                        name=name,
                        data_type=declared or "unknown",
                        is_nullable=not notnull,
                        is_primary_key=bool(pk),
                        is_foreign_key=foreign is not None,
                        foreign_table=foreign[0] if foreign else None,
                        foreign_column=foreign[1] if foreign else None,
                    )
                )
            table_infos.append(
                TableInfo(
                    schema="main",
                    table_name=table_name,
                    columns=columns,
                    table_type="VIEW" if table_type == "view" else "TABLE",
                )
            )
        return table_infos

    async def get_schema(self, schema_name: str | None = None) -> list[TableInfo]:
        """
        Introspect tables, columns and foreign keys.

        Raises:
            SchemaError: If introspection fails
        """
        if not self._connected or self._pool is None:
            raise ConnectionError("Not connected to database. Call connect() first.")

        conn = await self._pool.get()
        try:
            table_infos = await asyncio.to_thread(self._introspect, conn)
        except sqlite3.Error as e:
            logger.error(f"Schema introspection failed: {type(e).__name__}")
            raise SchemaError(f"Failed to introspect schema: {type(e).__name__}") from e
        finally:
            self._pool.put_nowait(conn)

        logger.info(f"Introspected SQLite database: found {len(table_infos)} tables")
        return table_infos

    async def close(self) -> None:
        """Close every pooled connection. Safe to call multiple times."""
        if self._pool is None:
            logger.debug("No connection pool to close")
            return

        while not self._pool.empty():
            self._pool.get_nowait().close()
        self._pool = None
        self._connected = False
        logger.info("SQLite connection closed")
