from __future__ import annotations

import sqlite3
import time

from ..node import Node


def now_ms() -> int:
    return int(time.time() * 1000)


def _node_from_row(row: sqlite3.Row) -> Node:
    return Node(
        id=int(row["id"]),
        parent_id=(int(row["parent_id"]) if row["parent_id"] is not None else None),
        created_at=int(row["created_at"]),
    )


class NodeTable:
    """Raw node rows and their parent pointers."""

    def get(self, conn: sqlite3.Connection, node_id: int) -> Node | None:
        row = conn.execute(
            "SELECT id, parent_id, created_at FROM nodes WHERE id = ?",
            (int(node_id),),
        ).fetchone()
        if row is None:
            return None
        return _node_from_row(row)

    def exists(self, conn: sqlite3.Connection, node_id: int) -> bool:
        row = conn.execute("SELECT 1 FROM nodes WHERE id = ?", (int(node_id),)).fetchone()
        return row is not None

    def get_many(self, conn: sqlite3.Connection, node_ids: list[int]) -> dict[int, Node]:
        if not node_ids:
            return {}
        unique_ids = list(dict.fromkeys(int(node_id) for node_id in node_ids))
        placeholders = ", ".join("?" for _ in unique_ids)
        rows = conn.execute(
            f"""
            SELECT id, parent_id, created_at
            FROM nodes
            WHERE id IN ({placeholders})
            """,
            tuple(unique_ids),
        ).fetchall()
        return {int(row["id"]): _node_from_row(row) for row in rows}

    def all(self, conn: sqlite3.Connection) -> list[Node]:
        rows = conn.execute(
            "SELECT id, parent_id, created_at FROM nodes ORDER BY id ASC"
        ).fetchall()
        return [_node_from_row(row) for row in rows]

    def parent_pointers(self, conn: sqlite3.Connection) -> dict[int, int | None]:
        rows = conn.execute("SELECT id, parent_id FROM nodes ORDER BY id ASC").fetchall()
        return {
            int(row["id"]): (
                int(row["parent_id"]) if row["parent_id"] is not None else None
            )
            for row in rows
        }

    def count(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT COUNT(*) AS n FROM nodes").fetchone()
        return int(row["n"])

    def insert(
        self,
        conn: sqlite3.Connection,
        *,
        node_id: int | None = None,
        parent_id: int | None = None,
    ) -> Node:
        created_at = now_ms()
        if node_id is None:
            cur = conn.execute(
                "INSERT INTO nodes(parent_id, created_at) VALUES(?, ?)",
                (parent_id, created_at),
            )
            new_id = int(cur.lastrowid)
        else:
            conn.execute(
                "INSERT INTO nodes(id, parent_id, created_at) VALUES(?, ?, ?)",
                (int(node_id), parent_id, created_at),
            )
            new_id = int(node_id)
        return Node(id=new_id, parent_id=parent_id, created_at=created_at)

    def set_parent(
        self,
        conn: sqlite3.Connection,
        node_id: int,
        parent_id: int | None,
    ) -> None:
        conn.execute(
            "UPDATE nodes SET parent_id = ? WHERE id = ?",
            (parent_id, int(node_id)),
        )

    def delete(self, conn: sqlite3.Connection, node_id: int) -> None:
        conn.execute("DELETE FROM nodes WHERE id = ?", (int(node_id),))
