"""
Execution Router

Dispatches guarded statements to the connection pool of their database.

ExecutionRouter keeps one connector (and therefore one pool) per database,
created lazily on first use and reused for the process lifetime.
ExecutorAgent is the pipeline stage: it bounds each statement by a
timeout, applies the row cap and maps connector failures onto the
execution error taxonomy. Raw driver messages are logged, never returned.
"""

import asyncio
import logging
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from askdash.agents.base import BaseAgent
from askdash.config import get_settings
from askdash.connectors.base import BaseConnector, ConnectorError, QueryError, QueryTimeoutError
from askdash.connectors.base import ConnectionError as ConnectorConnectionError
from askdash.connectors.factory import create_connector
from askdash.models.agent import ExecutorAgentInput, ExecutorAgentOutput
from askdash.models.errors import ExecutionError, ExecutionReason
from askdash.models.query import SqlStatement
from askdash.models.result import ResultSet

logger = logging.getLogger(__name__)

# Extra seconds granted to the driver's own cancellation before the client gives up
CANCEL_GRACE_SECONDS = 2.0


def _plain_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


class ExecutionRouter:
    """
    Per-database connector registry.

    Usage:
        router = ExecutionRouter({"ads": "postgresql://analyst@db/ads"})
        connector = await router.get_connector("ads")
        ...
        await router.close()
    """

    def __init__(
        self,
        connection_urls: dict[str, str] | None = None,
        pool_size: int | None = None,
        statement_timeout: int | None = None,
        connector_factory: Callable[..., BaseConnector] = create_connector,
    ):
        if connection_urls is None or pool_size is None or statement_timeout is None:
            settings = get_settings().database
            if connection_urls is None:
                connection_urls = {
                    name: secret.get_secret_value()
                    for name, secret in settings.connections.items()
                }
            if pool_size is None:
                pool_size = settings.pool_size
            if statement_timeout is None:
                statement_timeout = settings.statement_timeout

        self._urls = dict(connection_urls)
        self.pool_size = pool_size
        self.statement_timeout = statement_timeout
        self._factory = connector_factory
        self._connectors: dict[str, BaseConnector] = {}
        self._lock = asyncio.Lock()

    @property
    def databases(self) -> list[str]:
        return sorted(self._urls)

    @property
    def open_databases(self) -> list[str]:
        return sorted(self._connectors)

    async def get_connector(self, database: str) -> BaseConnector:
        """
        Return the connected connector for ``database``, creating it on first use.

        Raises:
            ExecutionError: ConnectionUnavailable when no connection is
                configured or the pool cannot be opened
        """
        connector = self._connectors.get(database)
        if connector is not None:
            return connector

        async with self._lock:
            connector = self._connectors.get(database)
            if connector is not None:
                return connector

            url = self._urls.get(database)
            if url is None:
                raise ExecutionError(
                    ExecutionReason.CONNECTION_UNAVAILABLE,
                    f"No connection is configured for database '{database}'.",
                    context={"database": database},
                )

            try:
                connector = self._factory(
                    url, pool_size=self.pool_size, timeout=self.statement_timeout
                )
                await connector.connect()
            except (ConnectorError, ValueError) as e:
                logger.error(
                    f"Could not open pool for database '{database}': {type(e).__name__}",
                    extra={"database": database, "error_type": type(e).__name__},
                )
                raise ExecutionError(
                    ExecutionReason.CONNECTION_UNAVAILABLE,
                    f"Database '{database}' is not reachable.",
                    context={"database": database},
                ) from e

            self._connectors[database] = connector
            logger.info(f"Opened connection pool for database '{database}'")
            return connector

    async def close(self) -> None:
        """Close every open pool. Safe to call multiple times."""
        async with self._lock:
            connectors, self._connectors = self._connectors, {}
        for database, connector in sorted(connectors.items()):
            try:
                await connector.close()
            except ConnectorError as e:
                logger.warning(f"Error closing pool for '{database}': {type(e).__name__}")
        if connectors:
            logger.info(f"Closed {len(connectors)} connection pool(s)")


class ExecutorAgent(BaseAgent):
    """
    Execution stage.

    ``truncated`` is set exactly when the number of rows returned reached
    the row cap.
    """

    def __init__(
        self,
        router: ExecutionRouter | None = None,
        max_rows: int | None = None,
        timeout_seconds: float | None = None,
    ):
        if max_rows is None or timeout_seconds is None:
            settings = get_settings().database
            if max_rows is None:
                max_rows = settings.max_rows
            if timeout_seconds is None:
                timeout_seconds = float(settings.statement_timeout)

        super().__init__(name="ExecutorAgent", timeout_seconds=timeout_seconds)
        self.router = router or ExecutionRouter()
        self.max_rows = max_rows

    async def run(
        self,
        statement: SqlStatement,
        timeout: float | None = None,
        session_id: str | None = None,
    ) -> ResultSet:
        """Execute one guarded statement and return its result set."""
        output = await self(
            ExecutorAgentInput(
                query=statement.text[:100],
                statement=statement,
                timeout_seconds=timeout,
                context={"session_id": session_id} if session_id else {},
            )
        )
        return output.result

    async def execute(self, input: ExecutorAgentInput) -> ExecutorAgentOutput:
        """
        Execute the statement on its database.

        Raises:
            ExecutionError: ConnectionUnavailable, Timeout or DatabaseError
        """
        statement = input.statement
        timeout = input.timeout_seconds or self.timeout_seconds
        connector = await self.router.get_connector(statement.database)

        logger.info(
            f"[{self.name}] Executing statement on '{statement.database}'",
            extra={"agent": self.name, "database": statement.database, "timeout": timeout},
        )

        try:
            raw = await asyncio.wait_for(
                connector.execute(
                    statement.text,
                    statement.parameters,
                    timeout=timeout,
                    max_rows=self.max_rows,
                ),
                timeout=timeout + CANCEL_GRACE_SECONDS,
            )
        except (asyncio.TimeoutError, QueryTimeoutError) as e:
            raise ExecutionError(
                ExecutionReason.TIMEOUT,
                f"The query did not finish within {timeout:g} seconds.",
                context={"database": statement.database, "timeout_seconds": timeout},
            ) from e
        except ConnectorConnectionError as e:
            raise ExecutionError(
                ExecutionReason.CONNECTION_UNAVAILABLE,
                f"Database '{statement.database}' is not reachable.",
                context={"database": statement.database},
            ) from e
        except (QueryError, ConnectorError) as e:
            logger.debug(f"[{self.name}] Database error detail: {e}")
            raise ExecutionError(
                ExecutionReason.DATABASE_ERROR,
                "The database could not run the query.",
                context={"database": statement.database, "error_type": type(e).__name__},
            ) from e

        rows = [[_plain_value(v) for v in row] for row in raw.rows[: self.max_rows]]
        result = ResultSet(
            columns=raw.columns,
            rows=rows,
            row_count=len(rows),
            truncated=len(rows) >= self.max_rows,
            execution_time_ms=raw.execution_time_ms,
        )

        logger.info(
            f"[{self.name}] Execution complete: {result.row_count} rows, "
            f"{result.execution_time_ms:.1f}ms",
            extra={"agent": self.name, "truncated": result.truncated},
        )

        return ExecutorAgentOutput(success=True, result=result, metadata=self._metadata)
