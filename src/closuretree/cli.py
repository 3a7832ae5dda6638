"""CLI entry point for closuretree."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from . import __version__
from .cascade import DeleteMode
from .config import CONFIG_FILE_NAME, resolve_state_dir
from .errors import ConcurrencyError, HierarchyError
from .forest import Forest
from .node import Node
from .ui import (
    OutputMode,
    add_output_mode_argument,
    make_console,
    plain_tree_lines,
    render_help,
    render_panel,
    render_table,
    render_tree,
    resolve_output_mode,
)

_READ_ONLY_COMMANDS = {"show", "tree", "list", "ancestors", "check"}
_NODE_HEADERS = ("ID", "PARENT", "ROOT", "DEPTH", "CREATED")
_COMMANDS = (
    ("init", "Create .closuretree/ with a default config"),
    ("add [--parent ID] [--id ID]", "Insert a node"),
    ("move ID (--parent ID | --root)", "Re-parent a node and its subtree"),
    ("rm ID... --yes [--mode MODE]", "Delete nodes (cascade, restrict, promote)"),
    ("show ID", "Node details"),
    ("tree [ID]", "Render the forest or one subtree"),
    ("list", "All nodes in forest order"),
    ("ancestors ID", "Ancestor chain, root first"),
    ("rebuild", "Recompute the closure table from parent pointers"),
    ("check", "Compare the closure table with parent pointers"),
)

_DEFAULT_CONFIG = """\
[hierarchy]
# Retries for transient write conflicts before giving up.
max_retries = 5
retry_backoff_ms = 20
busy_timeout_ms = 5000
lock_timeout_ms = 2000
# cascade | restrict | promote
delete_mode = "cascade"
"""


def _iso_from_epoch_ms(value: object) -> str | None:
    if not isinstance(value, int):
        return None
    try:
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def _emit_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _node_payload(forest: Forest, node: Node) -> dict[str, Any]:
    payload = node.to_dict()
    payload["created_at_iso"] = _iso_from_epoch_ms(node.created_at)
    payload["root_id"] = forest.root(node.id)
    payload["depth"] = forest.depth(node.id)
    payload["ancestors"] = forest.ancestors(node.id)
    payload["children"] = forest.children(node.id)
    payload["descendant_count"] = len(forest.descendants(node.id))
    payload["is_root"] = forest.is_root(node.id)
    payload["is_leaf"] = forest.is_leaf(node.id)
    return payload


def _print_deleted(results: list[dict[str, Any]], *, as_json: bool) -> None:
    if as_json:
        _emit_json(results)
        return
    for row in results:
        print(f"deleted: {' '.join(str(item) for item in row['removed'])}")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="closuretree")
    p.add_argument("--version", action="version", version=f"closuretree {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Log to stderr")
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    sub.add_parser("init", help="Create .closuretree/ with a default config")

    add = sub.add_parser("add", help="Insert a node")
    add.add_argument("--parent", type=int, default=None, help="Parent node id")
    add.add_argument("--id", type=int, default=None, help="Explicit node id")
    add.add_argument("--json", action="store_true", help="Output JSON")

    move = sub.add_parser("move", help="Re-parent a node and its subtree")
    move.add_argument("id", type=int, help="Node id")
    target = move.add_mutually_exclusive_group(required=True)
    target.add_argument("--parent", type=int, help="New parent id")
    target.add_argument("--root", action="store_true", help="Detach to a new root")
    move.add_argument("--json", action="store_true", help="Output JSON")

    rm = sub.add_parser("rm", help="Delete nodes")
    rm.add_argument("id", type=int, nargs="+", help="Node id(s)")
    rm.add_argument(
        "--mode",
        choices=[mode.value for mode in DeleteMode],
        default=None,
        help="Descendant handling (default from config)",
    )
    rm.add_argument("--yes", action="store_true", help="Confirm deletion")
    rm.add_argument("--json", action="store_true", help="Output JSON")

    show = sub.add_parser("show", help="Node details")
    show.add_argument("id", type=int, help="Node id")
    show.add_argument("--json", action="store_true", help="Output JSON")
    add_output_mode_argument(show)

    tree = sub.add_parser("tree", help="Render the forest or one subtree")
    tree.add_argument("id", type=int, nargs="?", default=None, help="Subtree root")
    add_output_mode_argument(tree)

    lst = sub.add_parser("list", help="All nodes in forest order")
    lst.add_argument("--json", action="store_true", help="Output JSON")
    add_output_mode_argument(lst)

    anc = sub.add_parser("ancestors", help="Ancestor chain, root first")
    anc.add_argument("id", type=int, help="Node id")
    anc.add_argument("--json", action="store_true", help="Output JSON")

    rebuild = sub.add_parser("rebuild", help="Recompute the closure table")
    rebuild.add_argument("--json", action="store_true", help="Output JSON")

    check = sub.add_parser("check", help="Verify the closure table")
    check.add_argument("--json", action="store_true", help="Output JSON")
    add_output_mode_argument(check)

    return p


def cmd_init(cwd: Path) -> int:
    state_dir = resolve_state_dir(cwd, create=True)
    config_path = state_dir / CONFIG_FILE_NAME
    if not config_path.exists():
        config_path.write_text(_DEFAULT_CONFIG, encoding="utf-8")
    forest = Forest.from_workdir(cwd)
    forest.database.initialize()
    print(f"initialized {state_dir} ({forest.count()} nodes)")
    return 0


def _print_tree(forest: Forest, root_id: int | None, output_mode: OutputMode) -> int:
    nodes = forest.list()
    if root_id is not None:
        if forest.get(root_id) is None:
            print(f"error: node not found: {root_id}", file=sys.stderr)
            return 1
        scope = set(forest.self_and_descendants(root_id))
        nodes = [node for node in nodes if node.id in scope]
        root_ids = [root_id]
    else:
        root_ids = [node.id for node in nodes if node.parent_id is None]

    if not nodes:
        print("(no nodes)")
        return 0

    children: dict[int, list[int]] = {}
    for node in nodes:
        if node.parent_id is not None and node.id not in root_ids:
            children.setdefault(node.parent_id, []).append(node.id)

    if output_mode == "rich":
        title = "Forest" if root_id is None else f"Subtree {root_id}"
        render_tree(make_console("rich"), root_ids=root_ids, children=children, title=title)
    else:
        for line in plain_tree_lines(root_ids=root_ids, children=children):
            print(line)
    return 0


def _run(args: argparse.Namespace, forest: Forest, output_mode: OutputMode) -> int:
    if args.command == "add":
        node = forest.insert(args.parent, node_id=args.id)
        if args.json:
            _emit_json(_node_payload(forest, node))
        else:
            print(node.id)
        return 0

    if args.command == "move":
        new_parent = None if args.root else args.parent
        node = forest.move(args.id, new_parent)
        if args.json:
            _emit_json(_node_payload(forest, node))
        else:
            target = "root" if new_parent is None else str(new_parent)
            print(f"moved: {node.id} -> {target}")
        return 0

    if args.command == "rm":
        if not args.yes:
            print("error: refusing to delete without --yes", file=sys.stderr)
            return 1
        results: list[dict[str, Any]] = []
        gone: set[int] = set()
        try:
            for node_id in args.id:
                if node_id in gone:
                    continue
                removed = forest.delete(node_id, mode=args.mode)
                gone.update(removed)
                results.append({"id": node_id, "removed": removed})
        finally:
            _print_deleted(results, as_json=args.json)
        return 0

    if args.command == "show":
        node = forest.get(args.id)
        if node is None:
            print(f"error: node not found: {args.id}", file=sys.stderr)
            return 1
        payload = _node_payload(forest, node)
        if args.json:
            _emit_json(payload)
        elif output_mode == "rich":
            body = "\n".join(f"[bold]{key}[/bold]: {value}" for key, value in payload.items())
            render_panel(make_console("rich"), body, title=f"Node {node.id}")
        else:
            for key, value in payload.items():
                print(f"{key}: {value}")
        return 0

    if args.command == "tree":
        return _print_tree(forest, args.id, output_mode)

    if args.command == "list":
        by_id = {node.id: node for node in forest.list()}
        keys = forest.forest()
        if args.json:
            _emit_json(
                [
                    {
                        "id": key.id,
                        "parent_id": by_id[key.id].parent_id,
                        "root_id": key.root_id,
                        "depth": key.depth,
                    }
                    for key in keys
                ]
            )
            return 0
        if not keys:
            print("(no nodes)")
            return 0
        rows = []
        for key in keys:
            node = by_id[key.id]
            rows.append(
                (
                    key.id,
                    node.parent_id if node.parent_id is not None else "-",
                    key.root_id,
                    key.depth,
                    _iso_from_epoch_ms(node.created_at) or "-",
                )
            )
        if output_mode == "rich":
            render_table(make_console("rich"), headers=_NODE_HEADERS, rows=rows, title="Nodes")
        else:
            print("\t".join(_NODE_HEADERS))
            for row in rows:
                print("\t".join(str(value) for value in row))
        return 0

    if args.command == "ancestors":
        forest.require(args.id)
        chain = forest.ancestors(args.id)
        if args.json:
            _emit_json(chain)
        elif not chain:
            print("(root)")
        else:
            print(" > ".join(str(item) for item in [*chain, args.id]))
        return 0

    if args.command == "rebuild":
        result = forest.rebuild()
        if args.json:
            _emit_json(result.to_dict())
        else:
            print(
                f"rebuilt: {result.node_count} nodes, {result.edge_count} edges "
                f"(cleared {result.cleared_edges})"
            )
        return 0

    if args.command == "check":
        report = forest.verify()
        if args.json:
            _emit_json(report.to_dict())
        elif report.ok:
            message = f"ok: {report.node_count} nodes, {report.edge_count} edges"
            if output_mode == "rich":
                render_panel(make_console("rich"), message, title="Integrity")
            else:
                print(message)
        else:
            for error in report.errors:
                print(f"error: {error}")
            for edge in report.missing:
                print(f"missing: {edge.ancestor_id} -> {edge.descendant_id} ({edge.generation})")
            for edge in report.unexpected:
                print(f"unexpected: {edge.ancestor_id} -> {edge.descendant_id} ({edge.generation})")
            for edge, expected in report.wrong_generation:
                print(
                    f"generation: {edge.ancestor_id} -> {edge.descendant_id} "
                    f"is {edge.generation}, expected {expected}"
                )
        return 0 if report.ok else 1

    print(f"error: unknown command: {args.command}", file=sys.stderr)
    return 2


def main(argv: list[str] | None = None) -> None:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    if not raw_argv or raw_argv in (["-h"], ["--help"]):
        render_help(
            output_mode=resolve_output_mode(
                is_tty=getattr(sys.stdout, "isatty", lambda: False)(),
            ),
            command="closuretree",
            summary=f"{__version__} - closure-table forest maintenance",
            usage=("closuretree <command> [options]",),
            commands=_COMMANDS,
        )
        raise SystemExit(0)

    args = _build_parser().parse_args(raw_argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    output_mode: OutputMode = "plain"
    if hasattr(args, "output"):
        try:
            output_mode = resolve_output_mode(args.output)
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(2) from exc

    try:
        if args.command == "init":
            raise SystemExit(cmd_init(Path.cwd()))
        forest = Forest.from_workdir(
            Path.cwd(),
            create=args.command not in _READ_ONLY_COMMANDS,
        )
        code = _run(args, forest, output_mode)
    except ConcurrencyError as exc:
        print(f"error: {exc} (retryable)", file=sys.stderr)
        raise SystemExit(1) from exc
    except (HierarchyError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    raise SystemExit(code)


if __name__ == "__main__":
    main()
