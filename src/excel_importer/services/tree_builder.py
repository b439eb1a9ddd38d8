from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from ..errors import StructuralError
from ..excel.preprocess import transpose
from ..models.tree_node import TreeNode, TreeNodeItem

"""Single-pass tree construction from a prepared matrix.

For rank r (position in ``level_order``) and source row j, the node key is
``key_func(row_j[:col + 1], r + 1)`` where ``col = level_order[r]``. Nodes are
deduplicated by key; a new node's parent is looked up with the key of the
previous rank's column prefix. Cells matching ``column_end`` are skipped,
which lets rows stop at different depths.

The default key (``last_value_key``) only looks at the last cell of the
prefix: two branches sharing a value at the same rank collapse into one node.
Use ``full_prefix_key`` for trees where values repeat across branches.
"""

__all__ = [
    "KeyFunc",
    "ColumnEnd",
    "last_value_key",
    "full_prefix_key",
    "default_column_end",
    "KEY_FUNCS",
    "build_tree",
    "attach_records",
]

logger = logging.getLogger(__name__)

KeyFunc = Callable[[Sequence[str], int], str]
ColumnEnd = Callable[[str], bool]


def last_value_key(prefix: Sequence[str], rank: int) -> str:
    return f"{prefix[-1]}_{rank}"


def full_prefix_key(prefix: Sequence[str], rank: int) -> str:
    return "_".join(prefix) + f"_{rank}"


def default_column_end(cell: str) -> bool:
    return len(cell) == 0


KEY_FUNCS: dict[str, KeyFunc] = {
    "last_value": last_value_key,
    "full_prefix": full_prefix_key,
}


def build_tree(
    rows: Sequence[Sequence[str]],
    level_order: Sequence[int],
    tree_boundary: int,
    *,
    source_rows: Sequence[int] | None = None,
    key_func: KeyFunc = last_value_key,
    column_end: ColumnEnd = default_column_end,
) -> tuple[TreeNode, dict[str, TreeNode]]:
    """Build the hierarchy. Returns (root, key -> node table).

    ``source_rows[j]`` is the 0-based source index of ``rows[j]`` (defaults to j).
    Leaf nodes get one TreeNodeItem per source row that ends on them.
    """
    if source_rows is None:
        source_rows = list(range(len(rows)))
    if not level_order:
        raise StructuralError("level order must not be empty")
    for col in level_order:
        if col < 0 or col > tree_boundary:
            raise StructuralError(f"level column {col} outside tree boundary 0..{tree_boundary}")

    columns = transpose(rows)[: tree_boundary + 1]
    root = TreeNode()
    nodes: dict[str, TreeNode] = {}
    # deepest node reached by each row
    deepest: list[TreeNode | None] = [None] * len(rows)

    for rank, col in enumerate(level_order):
        if col >= len(columns):
            break
        for j, cell in enumerate(columns[col]):
            if column_end(cell):
                continue
            row = rows[j]
            key = key_func(row[: col + 1], rank + 1)
            node = nodes.get(key)
            if node is None:
                if rank == 0:
                    parent: TreeNode | None = root
                else:
                    prev = level_order[rank - 1]
                    parent = nodes.get(key_func(row[: prev + 1], rank))
                if parent is None:
                    raise StructuralError(
                        f"parent not found for {cell!r} (line {source_rows[j] + 1}, rank {rank + 1})"
                    )
                node = parent.add_child(key, cell)
                nodes[key] = node
            node.add_row(source_rows[j])
            deepest[j] = node

    for j, node in enumerate(deepest):
        if node is None:
            continue
        if node.is_leaf:
            node.items.append(TreeNodeItem(row=source_rows[j]))
        else:
            logger.warning(
                f"line {source_rows[j] + 1} ends at interior node {node.value!r} (rank {node.rank}); record not attached"
            )

    return root, nodes


def attach_records(root: TreeNode, records_by_row: dict[int, Any]) -> int:
    """Fill materialized records into leaf items. Returns the number filled."""
    filled = 0
    for node in root.walk():
        if not node.is_leaf:
            continue
        for item in node.items:
            if item.row not in records_by_row:
                logger.warning(f"line {item.line_number} has no materialized record")
                continue
            item.record = records_by_row[item.row]
            filled += 1
    return filled
