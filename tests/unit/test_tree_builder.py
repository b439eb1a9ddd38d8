from __future__ import annotations

import pytest

from excel_importer.errors import StructuralError
from excel_importer.models.tree_node import TreeImportContext
from excel_importer.services.tree_builder import (
    attach_records,
    build_tree,
    full_prefix_key,
    last_value_key,
)

ROWS = [
    ["a", "b", "c", "x1"],
    ["a", "b", "d", "x2"],
    ["a", "e", "", "x3"],
    ["f", "", "", "x4"],
]


def test_key_functions():
    assert last_value_key(["a", "b"], 2) == "b_2"
    assert full_prefix_key(["a", "b"], 2) == "a_b_2"


def test_build_tree_shape():
    root, nodes = build_tree(ROWS, [0, 1, 2], 2)
    assert [c.value for c in root.children] == ["a", "f"]
    a = root.children[0]
    assert [c.value for c in a.children] == ["b", "e"]
    assert [c.value for c in a.children[0].children] == ["c", "d"]
    assert set(nodes) == {"a_1", "f_1", "b_2", "e_2", "c_3", "d_3"}
    assert nodes["c_3"].rank == 3
    assert nodes["c_3"].path() == ["a", "b", "c"]


def test_rows_and_items():
    root, nodes = build_tree(ROWS, [0, 1, 2], 2, source_rows=[1, 2, 3, 4])
    assert nodes["a_1"].rows == [1, 2, 3]
    assert nodes["a_1"].line_numbers == [2, 3, 4]
    # rows stop at different depths; leaves carry their rows as items
    assert [i.row for i in nodes["c_3"].items] == [1]
    assert [i.row for i in nodes["e_2"].items] == [3]
    assert [i.row for i in nodes["f_1"].items] == [4]
    assert nodes["a_1"].items == []


def test_boundary_excludes_content_columns():
    root, nodes = build_tree(ROWS, [0, 1, 2], 2)
    assert not any(n.value.startswith("x") for n in root.walk())


def test_row_ending_on_interior_node_gets_no_item():
    rows = [["a", "b"], ["a", ""]]
    root, nodes = build_tree(rows, [0, 1], 1)
    assert nodes["a_1"].items == []
    assert len(nodes["b_2"].items) == 1


def test_missing_parent_is_structural():
    rows = [["", "b"]]
    # rank 1 skipped for this row, so rank 2 has no parent
    with pytest.raises(StructuralError, match="parent not found"):
        build_tree(rows, [0, 1], 1)


def test_level_order_validation():
    with pytest.raises(StructuralError):
        build_tree(ROWS, [], 2)
    with pytest.raises(StructuralError):
        build_tree(ROWS, [0, 3], 2)


def test_custom_level_order():
    rows = [["leaf", "top"]]
    root, nodes = build_tree(rows, [1, 0], 1)
    assert root.children[0].value == "top"
    assert root.children[0].children[0].value == "leaf"


def test_last_value_key_merges_repeated_values():
    rows = [["a", "x"], ["b", "x"]]
    _, nodes = build_tree(rows, [0, 1], 1)
    assert len(nodes["x_2"].rows) == 2
    assert nodes["a_1"].children and not nodes["b_1"].children

    _, nodes = build_tree(rows, [0, 1], 1, key_func=full_prefix_key)
    assert nodes["a_x_2"].parent is nodes["a_1"]
    assert nodes["b_x_2"].parent is nodes["b_1"]


def test_attach_records_and_context():
    root, nodes = build_tree(ROWS, [0, 1, 2], 2)
    filled = attach_records(root, {0: "r0", 1: "r1", 2: "r2"})
    assert filled == 3
    assert nodes["c_3"].records == ["r0"]
    assert nodes["f_1"].records == [None]

    ctx = TreeImportContext(root=root, nodes=nodes)
    assert ctx.node_count == 7
    assert ctx.leaf_count == 4
    assert [len(level) for level in ctx.levels()] == [2, 2, 2]
    assert {n.value for n in ctx.leaves()} == {"c", "d", "e", "f"}


LAYOUTS = [
    pytest.param([0, 1, 2], last_value_key, id="default"),
    pytest.param([0, 1, 2], full_prefix_key, id="full-prefix"),
    pytest.param([0, 2], last_value_key, id="skip-column"),
    pytest.param([0, 2], full_prefix_key, id="skip-column-full-prefix"),
]


def _shape(root) -> dict:
    return {
        n.key: (
            n.parent.key if n.parent is not None else None,
            sorted(c.key for c in n.children),
            len(n.items),
        )
        for n in root.walk()
    }


@pytest.mark.parametrize("level_order,key_func", LAYOUTS)
def test_rebuilding_gives_the_same_tree(level_order, key_func):
    first, first_nodes = build_tree(ROWS, level_order, 2, key_func=key_func)
    second, second_nodes = build_tree(ROWS, level_order, 2, key_func=key_func)
    assert _shape(first) == _shape(second)
    assert set(first_nodes) == set(second_nodes)
    # the key table holds exactly the walked nodes
    assert {n.key for n in first.walk() if not n.is_root} == set(first_nodes)


@pytest.mark.parametrize("level_order,key_func", LAYOUTS)
def test_ranks_follow_parents(level_order, key_func):
    root, _ = build_tree(ROWS, level_order, 2, key_func=key_func)
    assert root.parent is None
    for node in root.walk():
        if node.is_root:
            continue
        assert node.rank == node.parent.rank + 1
        ancestors = list(node.ancestors())
        assert all(a is not node for a in ancestors)
        assert len(ancestors) == node.rank
        assert ancestors[-1] is root


def test_skipped_column_level_order():
    root, nodes = build_tree(ROWS, [0, 2], 2, key_func=full_prefix_key)
    assert set(nodes) == {"a_1", "f_1", "a_b_c_2", "a_b_d_2"}
    assert nodes["a_b_c_2"].parent is nodes["a_1"]
    # rows 2 and 3 stop at rank 1; only f is a leaf there
    assert [i.row for i in nodes["f_1"].items] == [3]
    assert nodes["a_1"].items == []
