from __future__ import annotations

import sqlite3

from ..errors import CircularReferenceError, OrphanEdgeError
from ..node import ClosureEdge


class ClosureTable:
    """Ancestor/descendant index over the ``closure_edges`` table.

    Every method takes the connection of the caller's transaction; the table
    never opens or commits transactions itself.
    """

    def ancestors_of(self, conn: sqlite3.Connection, node_id: int) -> list[int]:
        """Ancestor ids, root first."""
        rows = conn.execute(
            """
            SELECT ancestor_id
            FROM closure_edges
            WHERE descendant_id = ? AND generation > 0
            ORDER BY generation DESC
            """,
            (int(node_id),),
        ).fetchall()
        return [int(row["ancestor_id"]) for row in rows]

    def descendants_of(self, conn: sqlite3.Connection, node_id: int) -> list[int]:
        rows = conn.execute(
            """
            SELECT descendant_id
            FROM closure_edges
            WHERE ancestor_id = ? AND generation > 0
            ORDER BY generation ASC, descendant_id ASC
            """,
            (int(node_id),),
        ).fetchall()
        return [int(row["descendant_id"]) for row in rows]

    def descendant_count(self, conn: sqlite3.Connection, node_id: int) -> int:
        row = conn.execute(
            """
            SELECT COUNT(*) AS n
            FROM closure_edges
            WHERE ancestor_id = ? AND generation > 0
            """,
            (int(node_id),),
        ).fetchone()
        return int(row["n"])

    def children_of(self, conn: sqlite3.Connection, node_id: int) -> list[int]:
        rows = conn.execute(
            """
            SELECT descendant_id
            FROM closure_edges
            WHERE ancestor_id = ? AND generation = 1
            ORDER BY descendant_id ASC
            """,
            (int(node_id),),
        ).fetchall()
        return [int(row["descendant_id"]) for row in rows]

    def subtree_of(self, conn: sqlite3.Connection, node_id: int) -> list[tuple[int, int]]:
        """``(member_id, generation)`` for the node and every descendant."""
        rows = conn.execute(
            """
            SELECT descendant_id, generation
            FROM closure_edges
            WHERE ancestor_id = ?
            ORDER BY generation ASC, descendant_id ASC
            """,
            (int(node_id),),
        ).fetchall()
        return [(int(row["descendant_id"]), int(row["generation"])) for row in rows]

    def is_ancestor_of(self, conn: sqlite3.Connection, ancestor_id: int, node_id: int) -> bool:
        row = conn.execute(
            """
            SELECT 1
            FROM closure_edges
            WHERE ancestor_id = ? AND descendant_id = ? AND generation > 0
            """,
            (int(ancestor_id), int(node_id)),
        ).fetchone()
        return row is not None

    def is_descendant_of(
        self,
        conn: sqlite3.Connection,
        descendant_id: int,
        node_id: int,
    ) -> bool:
        return self.is_ancestor_of(conn, node_id, descendant_id)

    def is_leaf(self, conn: sqlite3.Connection, node_id: int) -> bool:
        row = conn.execute(
            "SELECT 1 FROM closure_edges WHERE ancestor_id = ? AND generation = 1 LIMIT 1",
            (int(node_id),),
        ).fetchone()
        return row is None

    def is_root(self, conn: sqlite3.Connection, node_id: int) -> bool:
        row = conn.execute(
            "SELECT 1 FROM closure_edges WHERE descendant_id = ? AND generation = 1",
            (int(node_id),),
        ).fetchone()
        return row is None

    def root_of(self, conn: sqlite3.Connection, node_id: int) -> int | None:
        row = conn.execute(
            """
            SELECT ancestor_id
            FROM closure_edges
            WHERE descendant_id = ?
            ORDER BY generation DESC
            LIMIT 1
            """,
            (int(node_id),),
        ).fetchone()
        if row is None:
            return None
        return int(row["ancestor_id"])

    def depth_of(self, conn: sqlite3.Connection, node_id: int) -> int | None:
        row = conn.execute(
            "SELECT MAX(generation) AS depth FROM closure_edges WHERE descendant_id = ?",
            (int(node_id),),
        ).fetchone()
        if row is None or row["depth"] is None:
            return None
        return int(row["depth"])

    def has_self_edge(self, conn: sqlite3.Connection, node_id: int) -> bool:
        row = conn.execute(
            """
            SELECT 1
            FROM closure_edges
            WHERE ancestor_id = ? AND descendant_id = ? AND generation = 0
            """,
            (int(node_id), int(node_id)),
        ).fetchone()
        return row is not None

    def edges(self, conn: sqlite3.Connection) -> list[ClosureEdge]:
        rows = conn.execute(
            """
            SELECT ancestor_id, descendant_id, generation
            FROM closure_edges
            ORDER BY ancestor_id ASC, descendant_id ASC
            """
        ).fetchall()
        return [
            ClosureEdge(
                ancestor_id=int(row["ancestor_id"]),
                descendant_id=int(row["descendant_id"]),
                generation=int(row["generation"]),
            )
            for row in rows
        ]

    def add_self_edge(self, conn: sqlite3.Connection, node_id: int) -> None:
        conn.execute(
            """
            INSERT INTO closure_edges(ancestor_id, descendant_id, generation)
            VALUES(?, ?, 0)
            """,
            (int(node_id), int(node_id)),
        )

    def add_edge(
        self,
        conn: sqlite3.Connection,
        ancestor_id: int,
        descendant_id: int,
        generation: int,
    ) -> None:
        conn.execute(
            """
            INSERT INTO closure_edges(ancestor_id, descendant_id, generation)
            VALUES(?, ?, ?)
            """,
            (int(ancestor_id), int(descendant_id), int(generation)),
        )

    def attach_subtree(
        self,
        conn: sqlite3.Connection,
        node_id: int,
        new_parent_id: int | None,
    ) -> None:
        """Re-hang the subtree rooted at ``node_id`` under ``new_parent_id``.

        Edges from outside ancestors into the subtree are dropped, then one
        edge per (ancestor of the new parent, subtree member) pair is added.
        With ``new_parent_id=None`` the subtree becomes its own tree.
        """
        node_key = int(node_id)
        if new_parent_id is not None:
            parent_key = int(new_parent_id)
            if parent_key == node_key or self.is_ancestor_of(conn, node_key, parent_key):
                raise CircularReferenceError(
                    f"cannot attach node {node_key} under its own subtree ({parent_key})",
                    node_id=node_key,
                    field="parent_id",
                )

        conn.execute(
            """
            DELETE FROM closure_edges
            WHERE descendant_id IN (
                SELECT descendant_id FROM closure_edges WHERE ancestor_id = ?
            )
              AND ancestor_id NOT IN (
                SELECT descendant_id FROM closure_edges WHERE ancestor_id = ?
            )
            """,
            (node_key, node_key),
        )
        if new_parent_id is None:
            return

        conn.execute(
            """
            INSERT INTO closure_edges(ancestor_id, descendant_id, generation)
            SELECT
                supertree.ancestor_id,
                subtree.descendant_id,
                supertree.generation + subtree.generation + 1
            FROM closure_edges AS supertree
            CROSS JOIN closure_edges AS subtree
            WHERE supertree.descendant_id = ?
              AND subtree.ancestor_id = ?
            """,
            (int(new_parent_id), node_key),
        )

    def remove_node(self, conn: sqlite3.Connection, node_id: int) -> None:
        node_key = int(node_id)
        remaining = self.descendants_of(conn, node_key)
        if remaining:
            raise OrphanEdgeError(node_key, remaining)
        conn.execute(
            "DELETE FROM closure_edges WHERE ancestor_id = ? OR descendant_id = ?",
            (node_key, node_key),
        )

    def clear(self, conn: sqlite3.Connection) -> int:
        cur = conn.execute("DELETE FROM closure_edges")
        return int(cur.rowcount)
