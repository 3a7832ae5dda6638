"""Deterministic forest order: ``(root_id, depth, id)`` ascending.

Within a tree this is breadth-first by depth with id as the tiebreak, so
siblings of different parents interleave before any grandchild appears.
"""

from __future__ import annotations

import sqlite3
from typing import Iterable, NamedTuple

from .stores.closure import ClosureTable


class SortKey(NamedTuple):
    root_id: int
    depth: int
    id: int


_KEYED_NODES = """
    SELECT
        n.id AS id,
        (
            SELECT a.ancestor_id
            FROM closure_edges a
            WHERE a.descendant_id = n.id
            ORDER BY a.generation DESC
            LIMIT 1
        ) AS root_id,
        (
            SELECT MAX(a.generation)
            FROM closure_edges a
            WHERE a.descendant_id = n.id
        ) AS depth
    FROM nodes n
"""


def _key_from_row(row: sqlite3.Row) -> SortKey:
    node_id = int(row["id"])
    root_id = int(row["root_id"]) if row["root_id"] is not None else node_id
    depth = int(row["depth"]) if row["depth"] is not None else 0
    return SortKey(root_id=root_id, depth=depth, id=node_id)


class OrderingIndex:
    def __init__(self, closure: ClosureTable | None = None) -> None:
        self.closure = closure or ClosureTable()

    def sort_key(self, conn: sqlite3.Connection, node_id: int) -> SortKey | None:
        keys = self.sort_keys(conn, [node_id])
        return keys.get(int(node_id))

    def sort_keys(
        self,
        conn: sqlite3.Connection,
        node_ids: Iterable[int],
    ) -> dict[int, SortKey]:
        unique_ids = list(dict.fromkeys(int(node_id) for node_id in node_ids))
        if not unique_ids:
            return {}
        placeholders = ", ".join("?" for _ in unique_ids)
        rows = conn.execute(
            _KEYED_NODES + f" WHERE n.id IN ({placeholders})",
            tuple(unique_ids),
        ).fetchall()
        return {int(row["id"]): _key_from_row(row) for row in rows}

    def sort(self, conn: sqlite3.Connection, node_ids: Iterable[int]) -> list[int]:
        """Order arbitrary ids; unknown ids are dropped."""
        keys = self.sort_keys(conn, node_ids)
        return [key.id for key in sorted(keys.values())]

    def forest(self, conn: sqlite3.Connection) -> list[SortKey]:
        rows = conn.execute(
            "SELECT * FROM (" + _KEYED_NODES + ") ORDER BY root_id ASC, depth ASC, id ASC"
        ).fetchall()
        return [_key_from_row(row) for row in rows]

    def self_and_descendants(self, conn: sqlite3.Connection, node_id: int) -> list[int]:
        rows = conn.execute(
            """
            SELECT
                e.descendant_id AS id,
                (
                    SELECT MAX(a.generation)
                    FROM closure_edges a
                    WHERE a.descendant_id = e.descendant_id
                ) AS depth
            FROM closure_edges e
            WHERE e.ancestor_id = ?
            ORDER BY depth ASC, id ASC
            """,
            (int(node_id),),
        ).fetchall()
        return [int(row["id"]) for row in rows]

    def ancestors(self, conn: sqlite3.Connection, node_id: int) -> list[int]:
        return self.closure.ancestors_of(conn, node_id)
