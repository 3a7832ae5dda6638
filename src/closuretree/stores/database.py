from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from ..config import HierarchyConfig
from ..errors import ConcurrencyError


_SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS nodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    parent_id INTEGER REFERENCES nodes(id),
    created_at INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS closure_edges (
    ancestor_id INTEGER NOT NULL,
    descendant_id INTEGER NOT NULL,
    generation INTEGER NOT NULL CHECK (generation >= 0),
    PRIMARY KEY(ancestor_id, descendant_id),
    FOREIGN KEY(ancestor_id) REFERENCES nodes(id),
    FOREIGN KEY(descendant_id) REFERENCES nodes(id)
);
CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent_id);
CREATE INDEX IF NOT EXISTS idx_closure_edges_descendant
    ON closure_edges(descendant_id, generation);
CREATE INDEX IF NOT EXISTS idx_closure_edges_ancestor_generation
    ON closure_edges(ancestor_id, generation);
"""


def is_transient(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


@dataclass
class Database:
    root: Path
    config: HierarchyConfig = field(default_factory=HierarchyConfig)
    create_on_connect: bool = True
    _schema_ready: bool = field(default=False, init=False, repr=False)
    _schema_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    @property
    def db_path(self) -> Path:
        return self.root / "forest.sqlite3"

    def exists(self) -> bool:
        return self.db_path.exists()

    def _open(self) -> sqlite3.Connection:
        if self.create_on_connect:
            self.root.mkdir(parents=True, exist_ok=True)
        elif not self.db_path.exists():
            raise FileNotFoundError(str(self.db_path))
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.config.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={int(self.config.busy_timeout_ms)}")
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            conn.executescript(_SCHEMA)
            self._schema_ready = True

    def connect(self) -> sqlite3.Connection:
        conn = self._open()
        try:
            self._ensure_schema(conn)
        except sqlite3.OperationalError as exc:
            conn.close()
            if is_transient(exc):
                raise ConcurrencyError(f"schema setup conflict: {exc}") from exc
            raise
        return conn

    def initialize(self) -> None:
        self.connect().close()

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Snapshot read: every query inside sees the same committed state."""
        conn = self.connect()
        try:
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def write(self) -> Iterator[sqlite3.Connection]:
        """All-or-nothing write transaction holding the store's write lock."""
        conn = self.connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                if is_transient(exc):
                    raise ConcurrencyError(f"write lock unavailable: {exc}") from exc
                raise
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.OperationalError as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if is_transient(exc):
                    raise ConcurrencyError(f"commit conflict: {exc}") from exc
                raise
        finally:
            conn.close()
