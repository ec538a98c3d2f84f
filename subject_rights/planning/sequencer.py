"""Dependency graph and topological sequencing of tables.

Tables in a deletion plan reference each other through foreign keys. Rows
in a referencing table must go before the rows they point at, so for every
edge "T references U" the sequencer places T ahead of U.

The catalog reports references as bare table names. A name resolves to the
table with that name in the referencing table's own database and schema;
failing that, to the only table in the graph carrying that name. A name that
resolves to nothing (the referenced table holds no subject data, or is
ambiguous) is remembered as a dependency but adds no ordering edge.

Ordering is a depth-first post-order over "references" edges, reversed.
Roots are visited in reverse input order so that, after the reversal,
tables with no ordering relation keep their input (catalog) order. A cycle
is logged and broken where it is detected; sequencing never fails.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import IntEnum

import structlog

from subject_rights.connectors.catalog import CatalogTable

log = structlog.get_logger(__name__)


class _Colour(IntEnum):
    WHITE = 0  # not visited
    GREY = 1  # on the current DFS path
    BLACK = 2  # finished


@dataclass
class GraphNode:
    """A table and the names of the tables it references."""

    table: CatalogTable
    references: list[str] = field(default_factory=list)


class DependencyGraph:
    """Directed "references" graph over a fixed set of tables.

    Usage:
        graph = DependencyGraph([GraphNode(users, []), GraphNode(orders, ["users"])])
        graph.sequence()  # [orders, users]
    """

    def __init__(self, nodes: Sequence[GraphNode]) -> None:
        self._tables: list[CatalogTable] = []
        self._references: dict[CatalogTable, list[str]] = {}
        for node in nodes:
            if node.table in self._references:
                continue
            self._tables.append(node.table)
            self._references[node.table] = list(node.references)

        self._edges: dict[CatalogTable, list[CatalogTable]] = {
            table: self._resolve_all(table) for table in self._tables
        }

    @property
    def tables(self) -> list[CatalogTable]:
        return list(self._tables)

    def references(self, table: CatalogTable) -> list[str]:
        """Referenced table names as reported, resolvable or not."""
        return list(self._references.get(table, []))

    def edges(self, table: CatalogTable) -> list[CatalogTable]:
        """In-graph tables that *table* references."""
        return list(self._edges.get(table, []))

    def sequence(self) -> list[CatalogTable]:
        """Return every table exactly once, referencing tables first."""
        ordered, cycles = self._walk()
        for cycle in cycles:
            log.warning(
                "planning.dependency_cycle",
                cycle=" -> ".join(t.qualified_name for t in cycle),
            )
        return ordered

    def ranks(self) -> dict[CatalogTable, int]:
        """1-based position of each table in sequence()."""
        return {table: rank for rank, table in enumerate(self.sequence(), start=1)}

    def find_cycles(self) -> list[list[CatalogTable]]:
        """Return the cycles met while sequencing, each closed on its first table."""
        _, cycles = self._walk()
        return cycles

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _resolve_all(self, table: CatalogTable) -> list[CatalogTable]:
        resolved: list[CatalogTable] = []
        for name in self._references[table]:
            target = self._resolve(table, name)
            # Self references impose no order between tables
            if target is None or target == table or target in resolved:
                continue
            resolved.append(target)
        return resolved

    def _resolve(self, source: CatalogTable, name: str) -> CatalogTable | None:
        parts = name.split(".")
        table_name = parts[-1]
        schema_name = parts[-2] if len(parts) >= 2 else source.schema_name
        database_name = parts[-3] if len(parts) >= 3 else source.database_name

        local = CatalogTable(database_name, schema_name, table_name)
        if local in self._references:
            return local
        if len(parts) > 1:
            return None

        candidates = [t for t in self._tables if t.table_name == table_name]
        if len(candidates) == 1:
            return candidates[0]
        return None

    def _walk(self) -> tuple[list[CatalogTable], list[list[CatalogTable]]]:
        colour = {table: _Colour.WHITE for table in self._tables}
        post_order: list[CatalogTable] = []
        cycles: list[list[CatalogTable]] = []

        for root in reversed(self._tables):
            if colour[root] != _Colour.WHITE:
                continue

            colour[root] = _Colour.GREY
            path: list[CatalogTable] = [root]
            stack: list[tuple[CatalogTable, Iterator[CatalogTable]]] = [
                (root, iter(self._edges[root]))
            ]
            while stack:
                node, pending = stack[-1]
                descended = False
                for child in pending:
                    if colour[child] == _Colour.WHITE:
                        colour[child] = _Colour.GREY
                        path.append(child)
                        stack.append((child, iter(self._edges[child])))
                        descended = True
                        break
                    if colour[child] == _Colour.GREY:
                        cycles.append(path[path.index(child) :] + [child])
                if not descended:
                    stack.pop()
                    path.pop()
                    colour[node] = _Colour.BLACK
                    post_order.append(node)

        ordered = list(reversed(post_order))
        # Safety net: every input table appears exactly once
        placed = set(ordered)
        ordered.extend(t for t in self._tables if t not in placed)
        return ordered, cycles
