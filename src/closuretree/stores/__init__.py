from __future__ import annotations

from .closure import ClosureTable
from .database import Database
from .nodes import NodeTable, now_ms

__all__ = [
    "ClosureTable",
    "Database",
    "NodeTable",
    "now_ms",
]
