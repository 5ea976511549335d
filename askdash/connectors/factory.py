"""Connector factory for supported database URLs."""

from __future__ import annotations

from urllib.parse import unquote, urlparse

from askdash.connectors.base import BaseConnector
from askdash.connectors.postgres import PostgresConnector
from askdash.connectors.sqlite import MEMORY, SQLiteConnector

_POSTGRES_SCHEMES = {"postgres", "postgresql"}
_SQLITE_SCHEMES = {"sqlite"}


def infer_database_type(database_url: str) -> str:
    """Infer logical database type from connection URL scheme."""
    parsed = _parse_url(database_url)
    scheme = parsed.scheme.split("+")[0].lower()
    if scheme in _POSTGRES_SCHEMES:
        return "postgresql"
    if scheme in _SQLITE_SCHEMES:
        return "sqlite"
    raise ValueError(f"Unsupported database URL scheme: {parsed.scheme}")


def sqlite_path(database_url: str) -> str:
    """
    File path of a SQLite URL.

    ``sqlite:///relative.db`` is relative to the working directory,
    ``sqlite:////abs/path.db`` is absolute, ``sqlite://`` is in-memory.
    """
    _, _, remainder = database_url.partition("://")
    if remainder.startswith("/"):
        remainder = remainder[1:]
    remainder = unquote(remainder.split("?", 1)[0])
    return remainder or MEMORY


def create_connector(
    database_url: str,
    pool_size: int = 5,
    timeout: int = 30,
    **kwargs,
) -> BaseConnector:
    """Create a typed connector instance from a connection URL."""
    target_type = infer_database_type(database_url)

    if target_type == "sqlite":
        return SQLiteConnector(
            path=sqlite_path(database_url),
            pool_size=pool_size,
            timeout=timeout,
            **kwargs,
        )

    parsed = _parse_url(database_url)
    if not parsed.hostname:
        raise ValueError("Invalid database URL: host is required.")

    return PostgresConnector(
        host=parsed.hostname,
        port=parsed.port or 5432,
        database=parsed.path.lstrip("/") or "postgres",
        user=unquote(parsed.username or "postgres"),
        password=unquote(parsed.password or ""),
        pool_size=pool_size,
        timeout=timeout,
        **kwargs,
    )


def _parse_url(database_url: str):
    normalized = database_url.replace("postgresql+asyncpg://", "postgresql://")
    return urlparse(normalized)
