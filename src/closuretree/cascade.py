"""Descendant handling on delete.

Each removed node goes through the same named stages, in this order::

    validate -> detach_or_cascade_descendants -> remove_edges -> notify

Descendants are always dealt with before the node's own edges are dropped, so
no delete can leave ancestor edges pointing at a missing node.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Callable

from .coordinator import MutationCoordinator
from .errors import HasDescendantsError
from .events import NODE_DESTROYED, HierarchyEvent, make_event
from .hooks import MutationContext
from .locking import LockPlan
from .node import Node

logger = logging.getLogger(__name__)


class DeleteMode(str, enum.Enum):
    CASCADE = "cascade"
    RESTRICT = "restrict"
    PROMOTE = "promote"

    @classmethod
    def parse(cls, value: "DeleteMode | str") -> "DeleteMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            expected = ", ".join(mode.value for mode in cls)
            raise ValueError(
                f"invalid delete mode: {value!r} (expected one of: {expected})"
            ) from None


@dataclass
class _Deletion:
    conn: sqlite3.Connection
    node: Node
    mode: DeleteMode
    context: MutationContext | None
    events: list[HierarchyEvent]
    removed: list[int] = field(default_factory=list)
    pending_children: list[int] = field(default_factory=list)


class CascadePolicy:
    def __init__(
        self,
        coordinator: MutationCoordinator,
        *,
        default_mode: DeleteMode | str = DeleteMode.CASCADE,
    ) -> None:
        self.coordinator = coordinator
        self.default_mode = DeleteMode.parse(default_mode)

    @property
    def stages(self) -> tuple[tuple[str, Callable[[_Deletion], None]], ...]:
        return (
            ("validate", self._validate),
            ("detach_or_cascade_descendants", self._detach_or_cascade_descendants),
            ("remove_edges", self._remove_edges),
            ("notify", self._notify),
        )

    def delete(
        self,
        node_id: int,
        *,
        mode: DeleteMode | str | None = None,
        context: MutationContext | None = None,
    ) -> list[int]:
        """Delete ``node_id``; returns the removed ids in removal order."""
        delete_mode = DeleteMode.parse(mode) if mode is not None else self.default_mode
        closure = self.coordinator.closure

        def plan(conn: sqlite3.Connection, locked: bool) -> LockPlan:
            self.coordinator.require_node(conn, node_id)
            members = [member for member, _generation in closure.subtree_of(conn, node_id)]
            if delete_mode is DeleteMode.RESTRICT and len(members) > 1:
                raise HasDescendantsError(
                    f"node {node_id} has {len(members) - 1} descendant(s); "
                    "move or delete them first",
                    node_id=node_id,
                    field="id",
                )
            return LockPlan.build(members)

        def apply(conn: sqlite3.Connection, events: list[HierarchyEvent]) -> list[int]:
            removed: list[int] = []
            self._destroy(conn, node_id, delete_mode, context, events, removed)
            return removed

        removed = self.coordinator.execute(f"delete:{delete_mode.value}", plan, apply)
        logger.debug("deleted %s (%s): %s", node_id, delete_mode.value, removed)
        return removed

    def _destroy(
        self,
        conn: sqlite3.Connection,
        node_id: int,
        mode: DeleteMode,
        context: MutationContext | None,
        events: list[HierarchyEvent],
        removed: list[int],
    ) -> None:
        """Run the stages for ``node_id`` and, on cascade, its whole subtree.

        A node whose detach stage schedules children is parked on the stack
        and resumed at its next stage once every scheduled child is gone.
        """
        stages = self.stages

        def start(child_id: int, child_mode: DeleteMode) -> tuple[_Deletion, int]:
            deletion = _Deletion(
                conn=conn,
                node=self.coordinator.require_node(conn, child_id),
                mode=child_mode,
                context=context,
                events=events,
                removed=removed,
            )
            return deletion, 0

        stack = [start(node_id, mode)]
        while stack:
            deletion, index = stack.pop()
            while index < len(stages):
                _name, stage = stages[index]
                stage(deletion)
                index += 1
                if deletion.pending_children:
                    stack.append((deletion, index))
                    for child_id in reversed(deletion.pending_children):
                        stack.append(start(child_id, DeleteMode.CASCADE))
                    deletion.pending_children = []
                    break

    def _validate(self, deletion: _Deletion) -> None:
        if deletion.mode is not DeleteMode.RESTRICT:
            return
        closure = self.coordinator.closure
        if not closure.is_leaf(deletion.conn, deletion.node.id):
            count = closure.descendant_count(deletion.conn, deletion.node.id)
            raise HasDescendantsError(
                f"node {deletion.node.id} has {count} descendant(s); "
                "move or delete them first",
                node_id=deletion.node.id,
                field="id",
            )

    def _detach_or_cascade_descendants(self, deletion: _Deletion) -> None:
        conn = deletion.conn
        children = self.coordinator.closure.children_of(conn, deletion.node.id)
        if deletion.mode is DeleteMode.CASCADE:
            deletion.pending_children = children
        elif deletion.mode is DeleteMode.PROMOTE:
            for child_id in children:
                check = self.coordinator.check_move(conn, child_id, None, deletion.context)
                self.coordinator.apply_move(conn, check, deletion.context, deletion.events)

    def _remove_edges(self, deletion: _Deletion) -> None:
        bound = self.coordinator.bind(deletion.context, deletion.conn)
        self.coordinator.hooks.before_destroy(deletion.node, bound)
        self.coordinator.remove_node(deletion.conn, deletion.node.id)
        deletion.removed.append(deletion.node.id)

    def _notify(self, deletion: _Deletion) -> None:
        bound = self.coordinator.bind(deletion.context, deletion.conn)
        self.coordinator.hooks.node_destroyed(deletion.node, bound)
        deletion.events.append(
            make_event(NODE_DESTROYED, deletion.node.id, parent_id=deletion.node.parent_id)
        )
