from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable


NODE_CREATED = "node.created"
NODE_MOVED = "node.moved"
NODE_DESTROYED = "node.destroyed"
MUTATION_RETRY = "mutation.retry"
REBUILD_COMPLETED = "rebuild.completed"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass(frozen=True)
class HierarchyEvent:
    type: str
    timestamp: str
    node_id: int | None
    payload: dict[str, Any] = field(default_factory=dict)


EventSink = Callable[[HierarchyEvent], None]


def make_event(
    event_type: str,
    node_id: int | None = None,
    **payload: Any,
) -> HierarchyEvent:
    return HierarchyEvent(
        type=event_type,
        timestamp=utc_now_iso(),
        node_id=node_id,
        payload=dict(payload),
    )
