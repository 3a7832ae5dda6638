from __future__ import annotations

from pathlib import Path

import pytest

from closuretree.cascade import DeleteMode
from closuretree.errors import HasDescendantsError, UnknownNodeError, ValidationError
from closuretree.events import NODE_DESTROYED, NODE_MOVED
from closuretree.forest import Forest
from closuretree.hooks import HierarchyHooks

from conftest import RecordingHooks, make_forest, snapshot


def build_family(forest: Forest) -> dict[str, int]:
    """root -> a -> (b -> d, c) plus an unrelated tree ``other -> x``."""
    root = forest.insert().id
    a = forest.insert(root).id
    b = forest.insert(a).id
    c = forest.insert(a).id
    d = forest.insert(b).id
    other = forest.insert().id
    x = forest.insert(other).id
    return {"root": root, "a": a, "b": b, "c": c, "d": d, "other": other, "x": x}


def test_cascade_removes_the_whole_subtree_children_first(forest: Forest) -> None:
    ids = build_family(forest)
    _nodes, edges_before = snapshot(forest)

    removed = forest.delete(ids["a"])

    assert removed == [ids["d"], ids["b"], ids["c"], ids["a"]]
    assert forest.count() == 3
    assert forest.children(ids["root"]) == []
    assert forest.is_leaf(ids["root"])
    for node_id in removed:
        assert forest.get(node_id) is None
    _nodes, edges = snapshot(forest)
    assert all(
        edge.ancestor_id not in removed and edge.descendant_id not in removed
        for edge in edges
    )
    assert forest.children(ids["other"]) == [ids["x"]]
    assert len(edges_before) - len(edges) == 12
    assert forest.verify().ok


def test_deleting_a_leaf_updates_its_parent(forest: Forest) -> None:
    ids = build_family(forest)

    assert forest.delete(ids["c"]) == [ids["c"]]

    assert forest.children(ids["a"]) == [ids["b"]]
    assert forest.descendants(ids["root"]) == [ids["a"], ids["b"], ids["d"]]


def test_destroy_hooks_fire_once_per_removed_node(
    forest: Forest,
    hooks: RecordingHooks,
    events: list,
) -> None:
    ids = build_family(forest)

    forest.delete(ids["b"])

    assert hooks.named("before_destroy") == [("before_destroy", ids["d"]), ("before_destroy", ids["b"])]
    assert hooks.named("destroyed") == [("destroyed", ids["d"]), ("destroyed", ids["b"])]
    destroyed = [event for event in events if event.type == NODE_DESTROYED]
    assert [event.node_id for event in destroyed] == [ids["d"], ids["b"]]
    assert destroyed[-1].payload == {"parent_id": ids["a"]}


def test_veto_on_a_descendant_aborts_the_whole_delete(forest: Forest) -> None:
    ids = build_family(forest)

    class Protect(HierarchyHooks):
        def before_node_destroyed(self, node, context):
            if node.id == ids["c"]:
                raise ValidationError("node is pinned", node_id=node.id, reason="pinned")

    forest.register(Protect())
    before = snapshot(forest)

    with pytest.raises(ValidationError) as excinfo:
        forest.delete(ids["a"])

    assert excinfo.value.reason == "pinned"
    assert snapshot(forest) == before


def test_restrict_refuses_nodes_with_descendants(forest: Forest) -> None:
    ids = build_family(forest)
    before = snapshot(forest)

    with pytest.raises(HasDescendantsError) as excinfo:
        forest.delete(ids["a"], mode=DeleteMode.RESTRICT)

    assert excinfo.value.reason == "has_descendants"
    assert excinfo.value.node_id == ids["a"]
    assert snapshot(forest) == before

    assert forest.delete(ids["d"], mode="restrict") == [ids["d"]]
    assert forest.is_leaf(ids["b"])


def test_promote_turns_children_into_roots(
    forest: Forest,
    hooks: RecordingHooks,
    events: list,
) -> None:
    ids = build_family(forest)

    removed = forest.delete(ids["a"], mode=DeleteMode.PROMOTE)

    assert removed == [ids["a"]]
    assert forest.is_root(ids["b"])
    assert forest.is_root(ids["c"])
    assert forest.require(ids["b"]).parent_id is None
    assert forest.ancestors(ids["d"]) == [ids["b"]]
    assert forest.is_leaf(ids["root"])
    assert hooks.named("parent_changed") == [
        ("parent_changed", ids["b"], ids["a"], None),
        ("parent_changed", ids["c"], ids["a"], None),
    ]
    assert [event.type for event in events[-3:]] == [NODE_MOVED, NODE_MOVED, NODE_DESTROYED]
    assert forest.verify().ok


def test_default_mode_comes_from_config(tmp_path: Path) -> None:
    forest = make_forest(tmp_path / "state", delete_mode="restrict")
    root = forest.insert()
    forest.insert(root.id)

    assert forest.cascade.default_mode is DeleteMode.RESTRICT
    with pytest.raises(HasDescendantsError):
        forest.delete(root.id)
    assert len(forest.delete(root.id, mode="cascade")) == 2


def test_delete_unknown_node(forest: Forest) -> None:
    with pytest.raises(UnknownNodeError):
        forest.delete(404)


def test_delete_mode_parse() -> None:
    assert DeleteMode.parse("CASCADE") is DeleteMode.CASCADE
    assert DeleteMode.parse(" promote ") is DeleteMode.PROMOTE
    assert DeleteMode.parse(DeleteMode.RESTRICT) is DeleteMode.RESTRICT
    with pytest.raises(ValueError, match="invalid delete mode"):
        DeleteMode.parse("orphan")


def test_stages_run_in_order(forest: Forest) -> None:
    names = [name for name, _stage in forest.cascade.stages]

    assert names == ["validate", "detach_or_cascade_descendants", "remove_edges", "notify"]


def test_cascade_handles_chains_deeper_than_the_recursion_limit(forest: Forest) -> None:
    with forest.database.write() as conn:
        ids = [forest.nodes.insert(conn).id]
        for _ in range(700):
            ids.append(forest.nodes.insert(conn, parent_id=ids[-1]).id)
    forest.rebuild()
    assert forest.depth(ids[-1]) == 700

    removed = forest.delete(ids[0])

    assert removed == list(reversed(ids))
    assert forest.count() == 0
    assert snapshot(forest) == ((), ())
