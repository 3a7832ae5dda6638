from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class HierarchyNode(Protocol):
    """What an entity exposes to take part in a forest."""

    id: int | None
    parent_id: int | None


@dataclass(frozen=True)
class Node:
    id: int
    parent_id: int | None
    created_at: int

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "created_at": self.created_at,
        }


@dataclass(frozen=True, order=True)
class ClosureEdge:
    ancestor_id: int
    descendant_id: int
    generation: int

    def to_dict(self) -> dict[str, int]:
        return {
            "ancestor_id": self.ancestor_id,
            "descendant_id": self.descendant_id,
            "generation": self.generation,
        }
