"""Collaborator hook points fired inside the owning transaction."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Iterable

from .node import Node


@dataclass(frozen=True)
class MutationContext:
    """Explicit caller context handed to every hook.

    ``connection`` is filled in by the coordinator so collaborators can write
    in the same transaction as the structural change.
    """

    actor: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    connection: sqlite3.Connection | None = field(
        default=None, compare=False, repr=False
    )


class HierarchyHooks:
    """Base class for collaborators; override only what you need."""

    def validate_cross_node_constraint(
        self,
        node: Node | None,
        new_parent_id: int | None,
        context: MutationContext,
    ) -> str | None:
        return None

    def on_node_created(self, node: Node, context: MutationContext) -> None:
        return None

    def before_node_destroyed(self, node: Node, context: MutationContext) -> None:
        return None

    def on_node_destroyed(self, node: Node, context: MutationContext) -> None:
        return None

    def on_parent_changed(
        self,
        node: Node,
        old_parent_id: int | None,
        new_parent_id: int | None,
        context: MutationContext,
    ) -> None:
        return None


class HookChain:
    def __init__(self, hooks: Iterable[HierarchyHooks] = ()) -> None:
        self._hooks: list[HierarchyHooks] = list(hooks)

    def register(self, hooks: HierarchyHooks) -> None:
        self._hooks.append(hooks)

    def __len__(self) -> int:
        return len(self._hooks)

    def first_rejection(
        self,
        node: Node | None,
        new_parent_id: int | None,
        context: MutationContext,
    ) -> str | None:
        for hooks in self._hooks:
            reason = hooks.validate_cross_node_constraint(node, new_parent_id, context)
            if reason:
                return str(reason)
        return None

    def node_created(self, node: Node, context: MutationContext) -> None:
        for hooks in self._hooks:
            hooks.on_node_created(node, context)

    def before_destroy(self, node: Node, context: MutationContext) -> None:
        for hooks in self._hooks:
            hooks.before_node_destroyed(node, context)

    def node_destroyed(self, node: Node, context: MutationContext) -> None:
        for hooks in self._hooks:
            hooks.on_node_destroyed(node, context)

    def parent_changed(
        self,
        node: Node,
        old_parent_id: int | None,
        new_parent_id: int | None,
        context: MutationContext,
    ) -> None:
        for hooks in self._hooks:
            hooks.on_parent_changed(node, old_parent_id, new_parent_id, context)
