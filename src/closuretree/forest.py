from __future__ import annotations

from pathlib import Path
from typing import Iterable

from .cascade import CascadePolicy, DeleteMode
from .config import HierarchyConfig, load_config, resolve_state_dir
from .coordinator import MutationCoordinator
from .errors import UnknownNodeError
from .events import EventSink
from .hooks import HierarchyHooks, HookChain, MutationContext
from .locking import NodeLockTable, lock_table_for
from .node import HierarchyNode, Node
from .ordering import OrderingIndex, SortKey
from .rebuild import IntegrityReport, RebuildResult, RebuildService
from .stores.closure import ClosureTable
from .stores.database import Database
from .stores.nodes import NodeTable


class Forest:
    """Entry point composing the store, the mutation pipeline and queries."""

    def __init__(
        self,
        database: Database,
        *,
        hooks: Iterable[HierarchyHooks] = (),
        event_sink: EventSink | None = None,
        locks: NodeLockTable | None = None,
    ) -> None:
        self.database = database
        self.config = database.config
        self.closure = ClosureTable()
        self.nodes = NodeTable()
        self.hooks = HookChain(hooks)
        self.coordinator = MutationCoordinator(
            database,
            hooks=self.hooks,
            locks=locks or lock_table_for(database.db_path),
            event_sink=event_sink,
            closure=self.closure,
            nodes=self.nodes,
        )
        self.cascade = CascadePolicy(self.coordinator, default_mode=self.config.delete_mode)
        self.ordering = OrderingIndex(self.closure)
        self.maintenance = RebuildService(
            database,
            closure=self.closure,
            nodes=self.nodes,
            event_sink=event_sink,
        )

    @classmethod
    def open(
        cls,
        root: Path,
        *,
        config: HierarchyConfig | None = None,
        create: bool = True,
        hooks: Iterable[HierarchyHooks] = (),
        event_sink: EventSink | None = None,
    ) -> "Forest":
        database = Database(
            root,
            config=config or HierarchyConfig(),
            create_on_connect=create,
        )
        return cls(database, hooks=hooks, event_sink=event_sink)

    @classmethod
    def from_workdir(
        cls,
        cwd: Path | None = None,
        *,
        create: bool = True,
        hooks: Iterable[HierarchyHooks] = (),
        event_sink: EventSink | None = None,
    ) -> "Forest":
        state_dir = resolve_state_dir(cwd, create=create)
        loaded = load_config(state_dir)
        if loaded.error:
            raise ValueError(loaded.error)
        return cls.open(
            state_dir,
            config=loaded.hierarchy,
            create=create,
            hooks=hooks,
            event_sink=event_sink,
        )

    def register(self, hooks: HierarchyHooks) -> None:
        self.hooks.register(hooks)

    # -- mutations --------------------------------------------------------

    def insert(
        self,
        parent_id: int | None = None,
        *,
        node_id: int | None = None,
        context: MutationContext | None = None,
    ) -> Node:
        return self.coordinator.insert(parent_id, node_id=node_id, context=context)

    def move(
        self,
        node_id: int,
        new_parent_id: int | None,
        *,
        context: MutationContext | None = None,
    ) -> Node:
        return self.coordinator.move(node_id, new_parent_id, context=context)

    def delete(
        self,
        node_id: int,
        *,
        mode: DeleteMode | str | None = None,
        context: MutationContext | None = None,
    ) -> list[int]:
        return self.cascade.delete(node_id, mode=mode, context=context)

    def attach(
        self,
        entity: HierarchyNode,
        *,
        context: MutationContext | None = None,
    ) -> Node:
        """Insert or re-parent an entity exposing ``id`` and ``parent_id``.

        Entities without an id get one assigned and written back.
        """
        if entity.id is not None and self.get(entity.id) is not None:
            return self.move(entity.id, entity.parent_id, context=context)
        node = self.insert(entity.parent_id, node_id=entity.id, context=context)
        if entity.id is None:
            entity.id = node.id
        return node

    def rebuild(self) -> RebuildResult:
        return self.maintenance.rebuild()

    def verify(self) -> IntegrityReport:
        return self.maintenance.verify()

    # -- queries ----------------------------------------------------------

    def get(self, node_id: int) -> Node | None:
        if not self.database.exists():
            return None
        with self.database.read() as conn:
            return self.nodes.get(conn, node_id)

    def require(self, node_id: int) -> Node:
        node = self.get(node_id)
        if node is None:
            raise UnknownNodeError(f"unknown node: {node_id}", node_id=node_id, field="id")
        return node

    def list(self) -> list[Node]:
        if not self.database.exists():
            return []
        with self.database.read() as conn:
            return self.nodes.all(conn)

    def count(self) -> int:
        if not self.database.exists():
            return 0
        with self.database.read() as conn:
            return self.nodes.count(conn)

    def ancestors(self, node_id: int) -> list[int]:
        with self.database.read() as conn:
            return self.closure.ancestors_of(conn, node_id)

    def descendants(self, node_id: int) -> list[int]:
        with self.database.read() as conn:
            return self.closure.descendants_of(conn, node_id)

    def children(self, node_id: int) -> list[int]:
        with self.database.read() as conn:
            return self.closure.children_of(conn, node_id)

    def root(self, node_id: int) -> int | None:
        with self.database.read() as conn:
            return self.closure.root_of(conn, node_id)

    def depth(self, node_id: int) -> int | None:
        with self.database.read() as conn:
            return self.closure.depth_of(conn, node_id)

    def is_leaf(self, node_id: int) -> bool:
        with self.database.read() as conn:
            return self.closure.is_leaf(conn, node_id)

    def is_root(self, node_id: int) -> bool:
        with self.database.read() as conn:
            return self.closure.is_root(conn, node_id)

    def is_ancestor_of(self, ancestor_id: int, node_id: int) -> bool:
        with self.database.read() as conn:
            return self.closure.is_ancestor_of(conn, ancestor_id, node_id)

    def is_descendant_of(self, descendant_id: int, node_id: int) -> bool:
        with self.database.read() as conn:
            return self.closure.is_descendant_of(conn, descendant_id, node_id)

    def self_and_descendants(self, node_id: int) -> list[int]:
        with self.database.read() as conn:
            return self.ordering.self_and_descendants(conn, node_id)

    def sort_key(self, node_id: int) -> SortKey | None:
        with self.database.read() as conn:
            return self.ordering.sort_key(conn, node_id)

    def sort(self, node_ids: Iterable[int]) -> list[int]:
        with self.database.read() as conn:
            return self.ordering.sort(conn, node_ids)

    def forest(self) -> list[SortKey]:
        if not self.database.exists():
            return []
        with self.database.read() as conn:
            return self.ordering.forest(conn)

    def move_is_possible(self, node_id: int, new_parent_id: int | None) -> bool:
        return self.coordinator.move_is_possible(node_id, new_parent_id)
