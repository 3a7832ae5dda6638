from __future__ import annotations

from pathlib import Path

import pytest

from closuretree.config import HierarchyConfig
from closuretree.events import HierarchyEvent
from closuretree.forest import Forest
from closuretree.hooks import HierarchyHooks, MutationContext
from closuretree.node import Node


class RecordingHooks(HierarchyHooks):
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def on_node_created(self, node: Node, context: MutationContext) -> None:
        self.calls.append(("created", node.id))

    def before_node_destroyed(self, node: Node, context: MutationContext) -> None:
        self.calls.append(("before_destroy", node.id))

    def on_node_destroyed(self, node: Node, context: MutationContext) -> None:
        self.calls.append(("destroyed", node.id))

    def on_parent_changed(
        self,
        node: Node,
        old_parent_id: int | None,
        new_parent_id: int | None,
        context: MutationContext,
    ) -> None:
        self.calls.append(("parent_changed", node.id, old_parent_id, new_parent_id))

    def named(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


def make_forest(root: Path, **overrides) -> Forest:
    config = HierarchyConfig(**{"retry_backoff_ms": 0, **overrides})
    return Forest.open(root, config=config)


@pytest.fixture
def forest(tmp_path: Path) -> Forest:
    return make_forest(tmp_path / ".closuretree")


@pytest.fixture
def hooks(forest: Forest) -> RecordingHooks:
    recorder = RecordingHooks()
    forest.register(recorder)
    return recorder


@pytest.fixture
def events(forest: Forest) -> list[HierarchyEvent]:
    collected: list[HierarchyEvent] = []
    forest.coordinator.event_sink = collected.append
    forest.maintenance.event_sink = collected.append
    return collected


def snapshot(forest: Forest) -> tuple:
    """Everything the structural queries can observe."""
    with forest.database.read() as conn:
        edges = tuple(forest.closure.edges(conn))
        nodes = tuple(forest.nodes.all(conn))
    return nodes, edges
