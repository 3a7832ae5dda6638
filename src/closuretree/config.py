from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib


CONFIG_FILE_NAME = "closuretree.toml"
STATE_DIR_NAME = ".closuretree"
STATE_DIR_ENV = "CLOSURETREE_STATE_DIR"
DELETE_MODES = ("cascade", "restrict", "promote")


@dataclass(frozen=True)
class HierarchyConfig:
    max_retries: int = 5
    retry_backoff_ms: int = 20
    busy_timeout_ms: int = 5000
    lock_timeout_ms: int = 2000
    delete_mode: str = "cascade"


@dataclass(frozen=True)
class ClosureTreeFileConfig:
    state_dir: Path
    path: Path
    hierarchy: HierarchyConfig = field(default_factory=HierarchyConfig)
    error: str | None = None


class ConfigValidationError(ValueError):
    pass


def _as_int(raw: dict[str, Any], key: str, default: int, *, minimum: int) -> int:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"[hierarchy].{key} must be an integer")
    if value < minimum:
        raise ConfigValidationError(f"[hierarchy].{key} must be >= {minimum}")
    return value


def _as_delete_mode(value: object) -> str:
    if value is None:
        return HierarchyConfig.delete_mode
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError("[hierarchy].delete_mode must be a non-empty string")
    mode = value.strip().lower()
    if mode not in DELETE_MODES:
        expected = ", ".join(DELETE_MODES)
        raise ConfigValidationError(
            f"invalid [hierarchy].delete_mode: {value!r} (expected one of: {expected})"
        )
    return mode


def parse_hierarchy(raw: object) -> HierarchyConfig:
    if raw is None:
        return HierarchyConfig()
    if not isinstance(raw, dict):
        raise ConfigValidationError("[hierarchy] must be a table")

    defaults = HierarchyConfig()
    return HierarchyConfig(
        max_retries=_as_int(raw, "max_retries", defaults.max_retries, minimum=0),
        retry_backoff_ms=_as_int(
            raw, "retry_backoff_ms", defaults.retry_backoff_ms, minimum=0
        ),
        busy_timeout_ms=_as_int(
            raw, "busy_timeout_ms", defaults.busy_timeout_ms, minimum=0
        ),
        lock_timeout_ms=_as_int(
            raw, "lock_timeout_ms", defaults.lock_timeout_ms, minimum=1
        ),
        delete_mode=_as_delete_mode(raw.get("delete_mode")),
    )


def load_config(state_dir: Path) -> ClosureTreeFileConfig:
    path = state_dir / CONFIG_FILE_NAME
    if not path.exists():
        return ClosureTreeFileConfig(state_dir=state_dir, path=path)

    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        return ClosureTreeFileConfig(
            state_dir=state_dir,
            path=path,
            error=f"invalid TOML in {path.name}: {exc}",
        )

    try:
        hierarchy = parse_hierarchy(raw.get("hierarchy"))
    except ConfigValidationError as exc:
        return ClosureTreeFileConfig(
            state_dir=state_dir,
            path=path,
            error=f"{path.name}: {exc}",
        )

    return ClosureTreeFileConfig(state_dir=state_dir, path=path, hierarchy=hierarchy)


def _nearest_state_dir(start: Path) -> Path | None:
    for base in (start, *start.parents):
        candidate = base / STATE_DIR_NAME
        if candidate.is_dir():
            return candidate
    return None


def resolve_state_dir(cwd: Path | None = None, *, create: bool = True) -> Path:
    """Directory holding ``closuretree.toml`` and ``forest.sqlite3``.

    ``CLOSURETREE_STATE_DIR`` wins; otherwise the closest ``.closuretree`` at
    or above ``cwd`` is reused, and failing that one is placed in ``cwd``.
    """
    override = os.environ.get(STATE_DIR_ENV, "").strip()
    if override:
        state_dir = Path(override).expanduser().resolve()
    else:
        start = (cwd or Path.cwd()).resolve()
        state_dir = _nearest_state_dir(start) or start / STATE_DIR_NAME
    if create:
        state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir
