"""
Join Graph

NetworkX-based relationship graph for one database schema. Tables are
nodes; every declared relationship is an undirected edge carrying its join
condition(s). Used by the interpreter to add bridge tables and by the
synthesizer to lay out joins.

Usage:
    graph = JoinGraph(schema)
    steps = graph.join_plan({"advertisers", "performance_metrics"})
    bridges = graph.bridge_tables({"advertisers", "performance_metrics"})
"""

import logging
from dataclasses import dataclass, field
from itertools import islice

import networkx as nx

from askdash.models.catalog import DatabaseSchema
from askdash.models.errors import SynthesisError, SynthesisReason

logger = logging.getLogger(__name__)

# Upper bound on equally short paths compared per table pair
MAX_TIED_PATHS = 64


@dataclass(frozen=True, order=True)
class JoinCondition:
    """Equality condition ``left_table.left_column = right_table.right_column``."""

    left_table: str
    left_column: str
    right_table: str
    right_column: str

    def oriented(self, existing: str) -> "JoinCondition":
        """Return the condition with ``existing`` on the left-hand side."""
        if self.left_table == existing:
            return self
        return JoinCondition(self.right_table, self.right_column, self.left_table, self.left_column)


@dataclass(frozen=True)
class JoinStep:
    """One table in a join plan; the first step has no conditions."""

    table: str
    conditions: tuple[JoinCondition, ...] = field(default_factory=tuple)


class JoinGraph:
    """
    Undirected relationship graph for a single database.

    Join plans are deterministic: the plan is rooted at the lexically
    smallest requested table and every other requested table (in lexical
    order) is attached by the shortest path from the tables already in the
    plan, ties broken by comparing the paths' table names lexically.
    """

    def __init__(self, schema: DatabaseSchema):
        self.schema = schema
        self.graph = nx.Graph()
        self.graph.add_nodes_from(sorted(schema.tables))

        for rel in schema.relationships:
            left = schema.resolve_table(rel.from_table)
            right = schema.resolve_table(rel.to_table)
            if left is None or right is None or left == right:
                continue
            condition = JoinCondition(
                left,
                schema.resolve_column(left, rel.from_column) or rel.from_column,
                right,
                schema.resolve_column(right, rel.to_column) or rel.to_column,
            )
            if self.graph.has_edge(left, right):
                self.graph[left][right]["conditions"].add(condition)
            else:
                self.graph.add_edge(left, right, conditions={condition})

        logger.debug(
            f"JoinGraph built: {self.graph.number_of_nodes()} tables, "
            f"{self.graph.number_of_edges()} relationships"
        )

    def shortest_path(self, sources: list[str], target: str) -> list[str] | None:
        """
        Shortest path from any of ``sources`` to ``target``.

        Returns None when no source can reach the target.
        """
        best: tuple[int, list[str]] | None = None
        for source in sorted(sources):
            if not nx.has_path(self.graph, source, target):
                continue
            paths = islice(nx.all_shortest_paths(self.graph, source, target), MAX_TIED_PATHS)
            candidate = min(paths)
            key = (len(candidate), candidate)
            if best is None or key < best:
                best = key
        return best[1] if best else None

    def join_plan(self, tables: set[str] | frozenset[str]) -> list[JoinStep]:
        """
        Build the join plan connecting ``tables``.

        Raises:
            SynthesisError: MissingJoinPath when the tables cannot be connected
        """
        resolved = set()
        for name in tables:
            canonical = self.schema.resolve_table(name)
            if canonical is None:
                raise SynthesisError(
                    SynthesisReason.MISSING_JOIN_PATH,
                    f"Table '{name}' is not part of the schema",
                    context={"table": name},
                )
            resolved.add(canonical)
        if not resolved:
            return []

        ordered = sorted(resolved)
        steps = [JoinStep(table=ordered[0])]
        included = [ordered[0]]

        for target in ordered[1:]:
            if target in included:
                continue
            path = self.shortest_path(included, target)
            if path is None:
                raise SynthesisError(
                    SynthesisReason.MISSING_JOIN_PATH,
                    f"No relationship path connects '{target}' to {', '.join(included)}",
                    context={"target": target, "tables": ordered},
                )
            for previous, table in zip(path, path[1:]):
                if table in included:
                    continue
                conditions = sorted(
                    c.oriented(previous) for c in self.graph[previous][table]["conditions"]
                )
                steps.append(JoinStep(table=table, conditions=tuple(conditions)))
                included.append(table)

        return steps

    def bridge_tables(self, tables: set[str] | frozenset[str]) -> set[str]:
        """Intermediate tables needed to connect ``tables``."""
        requested = {self.schema.resolve_table(t) or t for t in tables}
        return {step.table for step in self.join_plan(tables)} - requested

    def is_connected(self, tables: set[str] | frozenset[str]) -> bool:
        try:
            self.join_plan(tables)
        except SynthesisError:
            return False
        return True
