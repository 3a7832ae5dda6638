from __future__ import annotations

import json
from pathlib import Path

import pytest

from closuretree import cli


@pytest.fixture(autouse=True)
def _workdir(monkeypatch, tmp_path: Path) -> Path:
    monkeypatch.delenv("CLOSURETREE_STATE_DIR", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def run(capsys, *argv: str) -> tuple[int, str, str]:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(list(argv))
    captured = capsys.readouterr()
    return int(excinfo.value.code or 0), captured.out, captured.err


def add(capsys, *argv: str) -> int:
    code, out, _err = run(capsys, "add", *argv)
    assert code == 0
    return int(out.strip())


def test_help_lists_commands(capsys) -> None:
    code, out, _err = run(capsys)

    assert code == 0
    assert out.startswith("closuretree  ")
    assert "Usage" in out
    assert "rebuild" in out


def test_init_writes_default_config(capsys, tmp_path: Path) -> None:
    code, out, _err = run(capsys, "init")

    assert code == 0
    assert out.startswith("initialized ")
    assert "(0 nodes)" in out
    config = tmp_path / ".closuretree" / "closuretree.toml"
    assert 'delete_mode = "cascade"' in config.read_text(encoding="utf-8")
    assert (tmp_path / ".closuretree" / "forest.sqlite3").exists()


def test_add_move_and_show(capsys) -> None:
    root = add(capsys)
    child = add(capsys, "--parent", str(root))
    other = add(capsys)

    code, out, _err = run(capsys, "move", str(other), "--parent", str(child))
    assert code == 0
    assert out.strip() == f"moved: {other} -> {child}"

    code, out, _err = run(capsys, "show", str(other), "--json")
    payload = json.loads(out)
    assert payload["parent_id"] == child
    assert payload["root_id"] == root
    assert payload["depth"] == 2
    assert payload["ancestors"] == [root, child]
    assert payload["is_leaf"] is True

    code, out, _err = run(capsys, "move", str(other), "--root")
    assert out.strip() == f"moved: {other} -> root"

    code, out, _err = run(capsys, "show", str(child), "--output", "plain")
    assert code == 0
    assert f"parent_id: {root}" in out.splitlines()


def test_move_cycle_is_an_error(capsys) -> None:
    root = add(capsys)
    child = add(capsys, "--parent", str(root))

    code, _out, err = run(capsys, "move", str(root), "--parent", str(child))

    assert code == 1
    assert err.startswith("error: ")
    assert "cannot be moved under itself" in err


def test_add_json(capsys) -> None:
    code, out, _err = run(capsys, "add", "--id", "7", "--json")

    assert code == 0
    payload = json.loads(out)
    assert payload["id"] == 7
    assert payload["is_root"] is True
    assert payload["created_at_iso"].endswith("Z")


def test_tree_and_list_in_forest_order(capsys) -> None:
    i1 = add(capsys)
    i2 = add(capsys, "--parent", str(i1))
    i3 = add(capsys, "--parent", str(i2))
    i4 = add(capsys, "--parent", str(i1))

    code, out, _err = run(capsys, "tree", "--output", "plain")
    assert code == 0
    assert out.splitlines() == [str(i1), f"  {i2}", f"    {i3}", f"  {i4}"]

    code, out, _err = run(capsys, "tree", str(i2), "--output", "plain")
    assert out.splitlines() == [str(i2), f"  {i3}"]

    code, out, _err = run(capsys, "list", "--output", "plain")
    lines = out.splitlines()
    assert lines[0] == "ID\tPARENT\tROOT\tDEPTH\tCREATED"
    assert [line.split("\t")[0] for line in lines[1:]] == [str(i1), str(i2), str(i4), str(i3)]

    code, out, _err = run(capsys, "list", "--json")
    assert [row["depth"] for row in json.loads(out)] == [0, 1, 1, 2]


def test_ancestors(capsys) -> None:
    root = add(capsys)
    child = add(capsys, "--parent", str(root))

    code, out, _err = run(capsys, "ancestors", str(child))
    assert out.strip() == f"{root} > {child}"

    code, out, _err = run(capsys, "ancestors", str(root))
    assert out.strip() == "(root)"

    code, _out, err = run(capsys, "ancestors", "404")
    assert code == 1
    assert "unknown node: 404" in err


def test_rm_requires_confirmation(capsys) -> None:
    root = add(capsys)
    add(capsys, "--parent", str(root))

    code, _out, err = run(capsys, "rm", str(root))
    assert code == 1
    assert "refusing to delete without --yes" in err

    code, _out, err = run(capsys, "rm", str(root), "--yes", "--mode", "restrict")
    assert code == 1
    assert "descendant" in err

    code, out, _err = run(capsys, "rm", str(root), "--yes", "--json")
    assert code == 0
    assert json.loads(out) == [{"id": root, "removed": [root + 1, root]}]


def test_rebuild_and_check(capsys) -> None:
    root = add(capsys)
    add(capsys, "--parent", str(root))

    code, out, _err = run(capsys, "check")
    assert code == 0
    assert out.strip() == "ok: 2 nodes, 3 edges"

    code, out, _err = run(capsys, "rebuild")
    assert code == 0
    assert out.strip() == "rebuilt: 2 nodes, 3 edges (cleared 3)"

    code, out, _err = run(capsys, "check", "--json")
    assert json.loads(out)["ok"] is True


def test_read_only_commands_have_no_side_effects(capsys, tmp_path: Path) -> None:
    code, out, _err = run(capsys, "tree")
    assert code == 0
    assert out.strip() == "(no nodes)"

    code, out, _err = run(capsys, "list", "--output", "plain")
    assert out.strip() == "(no nodes)"

    code, _out, err = run(capsys, "show", "1")
    assert code == 1
    assert "node not found: 1" in err

    code, out, _err = run(capsys, "check")
    assert code == 0

    assert not (tmp_path / ".closuretree").exists()


def test_bad_config_is_reported(capsys, tmp_path: Path) -> None:
    state_dir = tmp_path / ".closuretree"
    state_dir.mkdir()
    (state_dir / "closuretree.toml").write_text("[hierarchy]\nmax_retries = 'x'\n", encoding="utf-8")

    code, _out, err = run(capsys, "add")

    assert code == 1
    assert "max_retries must be an integer" in err


def test_rm_skips_ids_already_removed_by_cascade(capsys) -> None:
    root = add(capsys)
    child = add(capsys, "--parent", str(root))

    code, out, err = run(capsys, "rm", str(root), str(child), "--yes")

    assert code == 0
    assert err == ""
    assert out.splitlines() == [f"deleted: {child} {root}"]


def test_rm_reports_committed_deletes_before_a_failure(capsys) -> None:
    root = add(capsys)

    code, out, err = run(capsys, "rm", str(root), "404", "--yes")

    assert code == 1
    assert out.splitlines() == [f"deleted: {root}"]
    assert "unknown node: 404" in err
