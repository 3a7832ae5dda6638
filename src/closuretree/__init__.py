from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "DeleteMode",
    "Forest",
    "HierarchyHooks",
    "MutationContext",
    "Node",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .cascade import DeleteMode
    from .forest import Forest
    from .hooks import HierarchyHooks, MutationContext
    from .node import Node


def __getattr__(name: str):
    if name == "Forest":
        from .forest import Forest

        return Forest
    if name == "DeleteMode":
        from .cascade import DeleteMode

        return DeleteMode
    if name in {"HierarchyHooks", "MutationContext"}:
        from .hooks import HierarchyHooks, MutationContext

        return {
            "HierarchyHooks": HierarchyHooks,
            "MutationContext": MutationContext,
        }[name]
    if name == "Node":
        from .node import Node

        return Node
    raise AttributeError(f"module 'closuretree' has no attribute {name!r}")
