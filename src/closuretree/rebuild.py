"""Recompute or audit the closure table from raw parent pointers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import CycleDetectedError, RebuildError
from .events import REBUILD_COMPLETED, EventSink, make_event
from .node import ClosureEdge
from .stores.closure import ClosureTable
from .stores.database import Database
from .stores.nodes import NodeTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RebuildResult:
    node_count: int
    edge_count: int
    cleared_edges: int

    def to_dict(self) -> dict[str, int]:
        return {
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "cleared_edges": self.cleared_edges,
        }


@dataclass(frozen=True)
class IntegrityReport:
    node_count: int
    edge_count: int
    missing: tuple[ClosureEdge, ...] = ()
    unexpected: tuple[ClosureEdge, ...] = ()
    wrong_generation: tuple[tuple[ClosureEdge, int], ...] = ()
    errors: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return not (self.missing or self.unexpected or self.wrong_generation or self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "missing": [edge.to_dict() for edge in self.missing],
            "unexpected": [edge.to_dict() for edge in self.unexpected],
            "wrong_generation": [
                {**edge.to_dict(), "expected_generation": expected}
                for edge, expected in self.wrong_generation
            ],
            "errors": list(self.errors),
        }


def closure_from_parents(parents: dict[int, int | None]) -> dict[tuple[int, int], int]:
    """Every ``(ancestor, descendant) -> generation`` implied by parent pointers.

    Raises ``CycleDetectedError`` on a parent-pointer cycle and ``RebuildError``
    when a parent pointer names a node that does not exist.
    """
    expected: dict[tuple[int, int], int] = {}
    for node_id in sorted(parents):
        expected[(node_id, node_id)] = 0
        path = [node_id]
        on_path = {node_id}
        current = parents[node_id]
        generation = 0
        while current is not None:
            if current in on_path:
                raise CycleDetectedError(path[path.index(current):] + [current])
            if current not in parents:
                raise RebuildError(
                    f"node {path[-1]} points at missing parent {current}"
                )
            generation += 1
            expected[(current, node_id)] = generation
            path.append(current)
            on_path.add(current)
            current = parents[current]
    return expected


class RebuildService:
    """Out-of-band maintenance; callers must keep mutations away meanwhile."""

    def __init__(
        self,
        database: Database,
        *,
        closure: ClosureTable | None = None,
        nodes: NodeTable | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.database = database
        self.closure = closure or ClosureTable()
        self.nodes = nodes or NodeTable()
        self.event_sink = event_sink

    def rebuild(self) -> RebuildResult:
        with self.database.write() as conn:
            cleared = self.closure.clear(conn)
            parents = self.nodes.parent_pointers(conn)
            expected = closure_from_parents(parents)
            for node_id in parents:
                self.closure.add_self_edge(conn, node_id)
            for (ancestor_id, descendant_id), generation in sorted(expected.items()):
                if generation > 0:
                    self.closure.add_edge(conn, ancestor_id, descendant_id, generation)

        result = RebuildResult(
            node_count=len(parents),
            edge_count=len(expected),
            cleared_edges=cleared,
        )
        logger.info(
            "rebuilt closure table: %d nodes, %d edges (cleared %d)",
            result.node_count,
            result.edge_count,
            result.cleared_edges,
        )
        if self.event_sink is not None:
            self.event_sink(make_event(REBUILD_COMPLETED, None, **result.to_dict()))
        return result

    def verify(self) -> IntegrityReport:
        if not self.database.exists():
            return IntegrityReport(node_count=0, edge_count=0)

        with self.database.read() as conn:
            parents = self.nodes.parent_pointers(conn)
            stored = self.closure.edges(conn)

        try:
            expected = closure_from_parents(parents)
        except RebuildError as exc:
            return IntegrityReport(
                node_count=len(parents),
                edge_count=len(stored),
                errors=(str(exc),),
            )

        actual = {(edge.ancestor_id, edge.descendant_id): edge for edge in stored}
        missing = tuple(
            ClosureEdge(ancestor_id, descendant_id, generation)
            for (ancestor_id, descendant_id), generation in sorted(expected.items())
            if (ancestor_id, descendant_id) not in actual
        )
        unexpected = tuple(
            edge for key, edge in sorted(actual.items()) if key not in expected
        )
        wrong_generation = tuple(
            (edge, expected[key])
            for key, edge in sorted(actual.items())
            if key in expected and expected[key] != edge.generation
        )
        return IntegrityReport(
            node_count=len(parents),
            edge_count=len(stored),
            missing=missing,
            unexpected=unexpected,
            wrong_generation=wrong_generation,
        )
