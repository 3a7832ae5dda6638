from __future__ import annotations

import argparse
import sys
from collections.abc import Mapping, Sequence
from typing import Literal

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

OUTPUT_CHOICES = ("auto", "plain", "rich")
OutputMode = Literal["plain", "rich"]


def add_output_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        choices=OUTPUT_CHOICES,
        help="Output mode: auto (default), plain, or rich.",
    )


def _stream_is_tty(stream: object) -> bool:
    probe = getattr(stream, "isatty", None)
    if not callable(probe):
        return False
    try:
        return bool(probe())
    except (OSError, ValueError):
        return False


def resolve_output_mode(
    requested: str | None = None,
    *,
    is_tty: bool | None = None,
) -> OutputMode:
    selected = (requested or "auto").strip().lower()
    if selected not in OUTPUT_CHOICES:
        expected = ", ".join(OUTPUT_CHOICES)
        raise ValueError(f"invalid --output value {requested!r}; expected one of: {expected}")

    if selected == "auto":
        tty = _stream_is_tty(sys.stdout) if is_tty is None else bool(is_tty)
        return "rich" if tty else "plain"
    return "rich" if selected == "rich" else "plain"


def make_console(mode: OutputMode, *, stderr: bool = False) -> Console:
    return Console(
        file=sys.stderr if stderr else sys.stdout,
        force_terminal=mode == "rich",
        no_color=mode != "rich",
        highlight=False,
    )


def render_table(
    console: Console,
    *,
    headers: Sequence[str],
    rows: Sequence[Sequence[object]],
    title: str | None = None,
) -> None:
    table = Table(title=title)
    for header in headers:
        table.add_column(str(header), no_wrap=True)
    for row in rows:
        table.add_row(*("" if value is None else str(value) for value in row))
    console.print(table)


def render_panel(console: Console, body: str, *, title: str | None = None) -> None:
    console.print(Panel(body, title=title, expand=False))


def render_tree(
    console: Console,
    *,
    root_ids: Sequence[int],
    children: Mapping[int, Sequence[int]],
    title: str = "Forest",
) -> None:
    tree = Tree(f"[bold]{title}[/bold]")
    pending: list[tuple[Tree, int]] = [(tree, root_id) for root_id in reversed(root_ids)]
    while pending:
        branch, node_id = pending.pop()
        child_branch = branch.add(f"[cyan]{node_id}[/cyan]")
        for child_id in reversed(children.get(node_id, ())):
            pending.append((child_branch, child_id))
    console.print(tree)


def plain_tree_lines(
    *,
    root_ids: Sequence[int],
    children: Mapping[int, Sequence[int]],
) -> list[str]:
    lines: list[str] = []
    pending: list[tuple[int, int]] = [(root_id, 0) for root_id in reversed(root_ids)]
    while pending:
        node_id, depth = pending.pop()
        lines.append(f"{'  ' * depth}{node_id}")
        for child_id in reversed(children.get(node_id, ())):
            pending.append((child_id, depth + 1))
    return lines


def render_help(
    *,
    output_mode: OutputMode,
    command: str,
    summary: str,
    usage: Sequence[str],
    commands: Sequence[tuple[str, str]],
) -> None:
    if output_mode == "rich":
        console = make_console("rich")
        render_panel(console, summary, title=f"[bold blue]{command}[/bold blue]")
        console.print()
        console.print("[bold]Usage[/bold]")
        for line in usage:
            console.print(f"  {line}", markup=False)
        console.print()
        render_table(console, title="Commands", headers=("Command", "Description"), rows=commands)
        return

    print(f"{command}  {summary}")
    print()
    print("Usage")
    for line in usage:
        print(f"  {line}")
    print()
    print("Commands")
    width = max(len(item) for item, _ in commands)
    for item, description in commands:
        print(f"  {item.ljust(width)}  {description}")
