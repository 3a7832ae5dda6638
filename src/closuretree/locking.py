"""Per-node reader/writer locks taken in ascending id order.

A mutation locks every subtree member it rewrites exclusively and the target
parent shared. Because every participant acquires in the same global order
(ascending node id) no two mutations can wait on each other in a cycle.
"""

from __future__ import annotations

import threading
import time
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

SHARED = "shared"
EXCLUSIVE = "exclusive"


class LockTimeout(Exception):
    def __init__(self, node_id: int) -> None:
        super().__init__(f"timed out waiting for lock on node {node_id}")
        self.node_id = node_id


class _NodeLock:
    __slots__ = ("readers", "writer", "waiters")

    def __init__(self) -> None:
        self.readers = 0
        self.writer = False
        self.waiters = 0


@dataclass(frozen=True)
class LockPlan:
    exclusive: frozenset[int]
    shared: frozenset[int]

    @classmethod
    def build(cls, exclusive: Iterable[int], shared: Iterable[int] = ()) -> "LockPlan":
        exclusive_ids = frozenset(int(item) for item in exclusive)
        shared_ids = frozenset(int(item) for item in shared) - exclusive_ids
        return cls(exclusive=exclusive_ids, shared=shared_ids)

    def ordered(self) -> list[tuple[int, str]]:
        modes = {node_id: SHARED for node_id in self.shared}
        modes.update({node_id: EXCLUSIVE for node_id in self.exclusive})
        return [(node_id, modes[node_id]) for node_id in sorted(modes)]

    def covers(self, other: "LockPlan") -> bool:
        if not other.exclusive <= self.exclusive:
            return False
        return other.shared <= (self.shared | self.exclusive)


class NodeLockTable:
    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._locks: dict[int, _NodeLock] = {}

    def _acquire_one(self, node_id: int, mode: str, deadline: float) -> None:
        with self._cond:
            lock = self._locks.setdefault(node_id, _NodeLock())
            lock.waiters += 1
            try:
                while lock.writer or (mode == EXCLUSIVE and lock.readers > 0):
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise LockTimeout(node_id)
                    self._cond.wait(remaining)
                if mode == EXCLUSIVE:
                    lock.writer = True
                else:
                    lock.readers += 1
            finally:
                lock.waiters -= 1
                self._discard_if_idle(node_id, lock)

    def _release_one(self, node_id: int, mode: str) -> None:
        with self._cond:
            lock = self._locks.get(node_id)
            if lock is None:
                return
            if mode == EXCLUSIVE:
                lock.writer = False
            else:
                lock.readers = max(0, lock.readers - 1)
            self._discard_if_idle(node_id, lock)
            self._cond.notify_all()

    def _discard_if_idle(self, node_id: int, lock: _NodeLock) -> None:
        if not lock.writer and lock.readers == 0 and lock.waiters == 0:
            self._locks.pop(node_id, None)

    @contextmanager
    def hold(self, plan: LockPlan, *, timeout: float) -> Iterator[LockPlan]:
        deadline = time.monotonic() + max(0.0, timeout)
        held: list[tuple[int, str]] = []
        try:
            for node_id, mode in plan.ordered():
                self._acquire_one(node_id, mode, deadline)
                held.append((node_id, mode))
            yield plan
        finally:
            for node_id, mode in reversed(held):
                self._release_one(node_id, mode)

    def held_count(self) -> int:
        with self._cond:
            return len(self._locks)


_SHARED_TABLES: "weakref.WeakValueDictionary[str, NodeLockTable]" = weakref.WeakValueDictionary()
_SHARED_TABLES_LOCK = threading.Lock()


def lock_table_for(db_path: Path) -> NodeLockTable:
    """The table every handle on ``db_path`` in this process locks through."""
    key = str(Path(db_path).resolve())
    with _SHARED_TABLES_LOCK:
        table = _SHARED_TABLES.get(key)
        if table is None:
            table = NodeLockTable()
            _SHARED_TABLES[key] = table
        return table
