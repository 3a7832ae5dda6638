"""Exception hierarchy for hierarchy mutations and maintenance."""

from __future__ import annotations


class HierarchyError(Exception):
    pass


class ValidationError(HierarchyError, ValueError):
    """A mutation was rejected before anything was written."""

    reason = "invalid"

    def __init__(
        self,
        message: str,
        *,
        node_id: int | None = None,
        field: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.field = field
        if reason is not None:
            self.reason = reason


class CircularReferenceError(ValidationError):
    reason = "circular_reference"


class CollaboratorRejectedError(ValidationError):
    reason = "collaborator_rejected"


class UnknownNodeError(ValidationError):
    reason = "unknown_node"


class HasDescendantsError(ValidationError):
    reason = "has_descendants"


class ConcurrencyError(HierarchyError):
    """Transient write conflict; the caller may retry the whole mutation."""

    retryable = True

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class IntegrityError(HierarchyError):
    pass


class OrphanEdgeError(IntegrityError):
    def __init__(self, node_id: int, descendant_ids: list[int]) -> None:
        super().__init__(
            f"node {node_id} still has descendants: "
            + ", ".join(str(item) for item in descendant_ids)
        )
        self.node_id = node_id
        self.descendant_ids = descendant_ids


class RebuildError(HierarchyError):
    pass


class CycleDetectedError(RebuildError):
    def __init__(self, cycle: list[int]) -> None:
        super().__init__(
            "parent pointers contain a cycle: " + " -> ".join(str(item) for item in cycle)
        )
        self.cycle = cycle
