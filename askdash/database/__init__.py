"""Execution routing: per-database connection pools and the execution stage."""

from askdash.database.router import ExecutionRouter, ExecutorAgent

__all__ = ["ExecutionRouter", "ExecutorAgent"]
