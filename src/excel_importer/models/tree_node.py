from __future__ import annotations

import weakref
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from .column_mapping import ColumnMapping
from .row_context import ImportEffect

"""Tree node model for hierarchical imports.

Ownership: a node owns its children; the parent link is a weak reference.
The tree itself is owned by TreeImportContext (root + key -> node table), so
every parent stays alive for the duration of a run.
"""

__all__ = [
    "TreeNodeItem",
    "TreeNode",
    "TreeImportContext",
]


@dataclass(eq=False)
class TreeNodeItem:
    row: int  # 0-based index in the source matrix
    record: Any = None

    @property
    def line_number(self) -> int:
        return self.row + 1


class TreeNode:
    """One deduplicated value of the hierarchy."""

    def __init__(self, key: str = "", value: str = "", rank: int = 0, parent: TreeNode | None = None) -> None:
        self.key = key
        self.value = value
        self.rank = rank
        self._parent = weakref.ref(parent) if parent is not None else None
        self.children: list[TreeNode] = []
        self.items: list[TreeNodeItem] = []
        # every source row that passes through this node, in discovery order
        self.rows: list[int] = []
        self.assigned_id: int | None = None
        self.effect = ImportEffect()

    def __repr__(self) -> str:
        return f"TreeNode(key={self.key!r}, rank={self.rank}, children={len(self.children)}, items={len(self.items)})"

    @property
    def parent(self) -> TreeNode | None:
        return self._parent() if self._parent is not None else None

    @property
    def is_root(self) -> bool:
        return self.rank == 0

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0

    @property
    def line_numbers(self) -> list[int]:
        return [r + 1 for r in self.rows]

    @property
    def records(self) -> list[Any]:
        return [item.record for item in self.items]

    @property
    def parent_id(self) -> int | None:
        parent = self.parent
        return parent.assigned_id if parent is not None else None

    def set_id(self, assigned_id: int) -> None:
        self.assigned_id = assigned_id

    def add_child(self, key: str, value: str) -> TreeNode:
        node = TreeNode(key=key, value=value, rank=self.rank + 1, parent=self)
        self.children.append(node)
        return node

    def add_row(self, row: int) -> None:
        if not self.rows or self.rows[-1] != row:
            self.rows.append(row)

    def ancestors(self) -> Iterator[TreeNode]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def path(self) -> list[str]:
        """Values from the top level down to this node (root excluded)."""
        values = [n.value for n in self.ancestors() if not n.is_root]
        values.reverse()
        if not self.is_root:
            values.append(self.value)
        return values

    def walk(self) -> Iterator[TreeNode]:
        """Pre-order traversal including self."""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass
class TreeImportContext:
    """Everything the tree pipeline derives from one matrix."""
    root: TreeNode
    nodes: dict[str, TreeNode] = field(default_factory=dict)
    rows: list[list[str]] = field(default_factory=list)
    source_rows: list[int] = field(default_factory=list)
    records: list[Any] = field(default_factory=list)
    mapping: ColumnMapping | None = None

    @property
    def node_count(self) -> int:
        return sum(1 for _ in self.root.walk())

    @property
    def leaf_count(self) -> int:
        return sum(1 for n in self.root.walk() if n.is_leaf and not n.is_root)

    def levels(self) -> list[list[TreeNode]]:
        """Nodes grouped by rank (index 0 = rank 1), in discovery order."""
        result: list[list[TreeNode]] = []
        current = list(self.root.children)
        while current:
            result.append(current)
            current = [child for node in current for child in node.children]
        return result

    def leaves(self) -> list[TreeNode]:
        return [n for n in self.root.walk() if n.is_leaf and not n.is_root]
