"""Validated, locked, transactional structural mutations.

Every mutation runs the same pipeline::

    validate -> lock -> apply -> notify -> commit

``validate`` first runs against a snapshot to build the lock plan and fail
fast, then runs again inside the write transaction once the node locks are
held; only that second pass is authoritative. Transient conflicts restart the
whole pipeline a bounded number of times.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, replace
from typing import Callable, TypeVar

from .config import HierarchyConfig
from .errors import (
    CircularReferenceError,
    CollaboratorRejectedError,
    ConcurrencyError,
    UnknownNodeError,
    ValidationError,
)
from .events import (
    MUTATION_RETRY,
    NODE_CREATED,
    NODE_MOVED,
    EventSink,
    HierarchyEvent,
    make_event,
)
from .hooks import HookChain, MutationContext
from .locking import LockPlan, LockTimeout, NodeLockTable
from .node import Node
from .stores.closure import ClosureTable
from .stores.database import Database
from .stores.nodes import NodeTable

logger = logging.getLogger(__name__)

T = TypeVar("T")

Planner = Callable[[sqlite3.Connection, bool], LockPlan]
Applier = Callable[[sqlite3.Connection, list[HierarchyEvent]], T]


class _LockDrift(Exception):
    pass


@dataclass(frozen=True)
class MoveCheck:
    node: Node
    new_parent_id: int | None

    @property
    def is_noop(self) -> bool:
        return self.node.parent_id == self.new_parent_id


class MutationCoordinator:
    def __init__(
        self,
        database: Database,
        *,
        config: HierarchyConfig | None = None,
        hooks: HookChain | None = None,
        locks: NodeLockTable | None = None,
        event_sink: EventSink | None = None,
        closure: ClosureTable | None = None,
        nodes: NodeTable | None = None,
    ) -> None:
        self.database = database
        self.config = config or database.config
        self.hooks = hooks or HookChain()
        self.locks = locks or NodeLockTable()
        self.event_sink = event_sink
        self.closure = closure or ClosureTable()
        self.nodes = nodes or NodeTable()

    # -- pipeline ---------------------------------------------------------

    def execute(self, name: str, planner: Planner, applier: Applier[T]) -> T:
        """Run one mutation with locking, a write transaction and retries.

        ``planner`` returns the lock plan for the current state and raises
        ``ValidationError`` for rejected mutations. It runs once against a
        snapshot (``locked=False``) and once more inside the transaction
        (``locked=True``); collaborators are only consulted on the second run.
        """
        attempts = 0
        while True:
            attempts += 1
            events: list[HierarchyEvent] = []
            try:
                with self.database.read() as conn:
                    plan = planner(conn, False)
                with self.locks.hold(plan, timeout=self.config.lock_timeout_ms / 1000.0):
                    with self.database.write() as conn:
                        current = planner(conn, True)
                        if not plan.covers(current):
                            raise _LockDrift(f"{name}: affected nodes changed before locking")
                        result = applier(conn, events)
            except (ConcurrencyError, LockTimeout, _LockDrift) as exc:
                if attempts > self.config.max_retries:
                    logger.warning("%s gave up after %d attempts: %s", name, attempts, exc)
                    raise ConcurrencyError(
                        f"{name} failed after {attempts} attempts: {exc}",
                        attempts=attempts,
                    ) from exc
                logger.debug("%s conflict on attempt %d: %s", name, attempts, exc)
                self.emit(
                    make_event(
                        MUTATION_RETRY,
                        None,
                        mutation=name,
                        attempt=attempts,
                        error=str(exc),
                    )
                )
                time.sleep(self.config.retry_backoff_ms * attempts / 1000.0)
                continue
            for event in events:
                self.emit(event)
            return result

    def emit(self, event: HierarchyEvent) -> None:
        if self.event_sink is not None:
            self.event_sink(event)

    def bind(self, context: MutationContext | None, conn: sqlite3.Connection) -> MutationContext:
        return replace(context or MutationContext(), connection=conn)

    # -- validation -------------------------------------------------------

    def require_node(self, conn: sqlite3.Connection, node_id: int, *, field: str = "id") -> Node:
        node = self.nodes.get(conn, node_id)
        if node is None:
            raise UnknownNodeError(f"unknown node: {node_id}", node_id=node_id, field=field)
        return node

    def _check_collaborators(
        self,
        conn: sqlite3.Connection,
        node: Node | None,
        new_parent_id: int | None,
        context: MutationContext | None,
    ) -> None:
        if not len(self.hooks):
            return
        reason = self.hooks.first_rejection(node, new_parent_id, self.bind(context, conn))
        if reason:
            node_id = node.id if node is not None else None
            logger.info("parent change for %s rejected: %s", node_id, reason)
            raise CollaboratorRejectedError(
                reason,
                node_id=node_id,
                field="parent_id",
                reason=reason,
            )

    def check_move(
        self,
        conn: sqlite3.Connection,
        node_id: int,
        new_parent_id: int | None,
        context: MutationContext | None = None,
        *,
        consult_collaborators: bool = True,
    ) -> MoveCheck:
        node = self.require_node(conn, node_id)
        if new_parent_id is not None:
            self.require_node(conn, new_parent_id, field="parent_id")
        check = MoveCheck(node=node, new_parent_id=new_parent_id)
        if check.is_noop:
            return check
        if not self._move_is_possible(conn, node_id, new_parent_id):
            raise CircularReferenceError(
                f"node {node_id} cannot be moved under itself or its descendant {new_parent_id}",
                node_id=node_id,
                field="parent_id",
            )
        if consult_collaborators:
            self._check_collaborators(conn, node, new_parent_id, context)
        return check

    def _move_is_possible(
        self,
        conn: sqlite3.Connection,
        node_id: int,
        new_parent_id: int | None,
    ) -> bool:
        if not self.nodes.exists(conn, node_id):
            return True
        if new_parent_id is None:
            return True
        if int(new_parent_id) == int(node_id):
            return False
        return not self.closure.is_ancestor_of(conn, node_id, new_parent_id)

    def move_is_possible(self, node_id: int, new_parent_id: int | None) -> bool:
        with self.database.read() as conn:
            return self._move_is_possible(conn, node_id, new_parent_id)

    # -- primitives (inside an open write transaction) ---------------------

    def apply_insert(
        self,
        conn: sqlite3.Connection,
        parent_id: int | None,
        node_id: int | None,
        context: MutationContext | None,
        events: list[HierarchyEvent],
    ) -> Node:
        node = self.nodes.insert(conn, node_id=node_id, parent_id=parent_id)
        self.closure.add_self_edge(conn, node.id)
        if parent_id is not None:
            self.closure.attach_subtree(conn, node.id, parent_id)
        self.hooks.node_created(node, self.bind(context, conn))
        events.append(make_event(NODE_CREATED, node.id, parent_id=parent_id))
        return node

    def apply_move(
        self,
        conn: sqlite3.Connection,
        check: MoveCheck,
        context: MutationContext | None,
        events: list[HierarchyEvent],
    ) -> Node:
        if check.is_noop:
            return check.node
        old_parent_id = check.node.parent_id
        self.closure.attach_subtree(conn, check.node.id, check.new_parent_id)
        self.nodes.set_parent(conn, check.node.id, check.new_parent_id)
        moved = replace(check.node, parent_id=check.new_parent_id)
        self.hooks.parent_changed(
            moved,
            old_parent_id,
            check.new_parent_id,
            self.bind(context, conn),
        )
        events.append(
            make_event(
                NODE_MOVED,
                moved.id,
                old_parent_id=old_parent_id,
                new_parent_id=check.new_parent_id,
            )
        )
        return moved

    def remove_node(self, conn: sqlite3.Connection, node_id: int) -> None:
        """Drop a childless node and all of its edges.

        Raises ``OrphanEdgeError`` if descendants still hang off the node.
        """
        self.closure.remove_node(conn, node_id)
        self.nodes.delete(conn, node_id)

    # -- operations -------------------------------------------------------

    def insert(
        self,
        parent_id: int | None = None,
        *,
        node_id: int | None = None,
        context: MutationContext | None = None,
    ) -> Node:
        def plan(conn: sqlite3.Connection, locked: bool) -> LockPlan:
            if node_id is not None and self.nodes.exists(conn, node_id):
                raise ValidationError(
                    f"node already exists: {node_id}",
                    node_id=node_id,
                    field="id",
                    reason="duplicate_node",
                )
            if parent_id is not None:
                self.require_node(conn, parent_id, field="parent_id")
                if locked:
                    self._check_collaborators(conn, None, parent_id, context)
            exclusive = [node_id] if node_id is not None else []
            shared = [parent_id] if parent_id is not None else []
            return LockPlan.build(exclusive, shared)

        def apply(conn: sqlite3.Connection, events: list[HierarchyEvent]) -> Node:
            return self.apply_insert(conn, parent_id, node_id, context, events)

        return self.execute("insert", plan, apply)

    def move(
        self,
        node_id: int,
        new_parent_id: int | None,
        *,
        context: MutationContext | None = None,
    ) -> Node:
        checks: dict[str, MoveCheck] = {}

        def plan(conn: sqlite3.Connection, locked: bool) -> LockPlan:
            check = self.check_move(
                conn,
                node_id,
                new_parent_id,
                context,
                consult_collaborators=locked,
            )
            checks["current"] = check
            if check.is_noop:
                return LockPlan.build([])
            members = [member for member, _generation in self.closure.subtree_of(conn, node_id)]
            shared = [new_parent_id] if new_parent_id is not None else []
            return LockPlan.build(members, shared)

        def apply(conn: sqlite3.Connection, events: list[HierarchyEvent]) -> Node:
            return self.apply_move(conn, checks["current"], context, events)

        return self.execute("move", plan, apply)
