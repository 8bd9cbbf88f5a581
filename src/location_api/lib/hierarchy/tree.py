"""Assemble flat parent-pointer rows into nested trees.

The closure table answers "which rows belong to this subtree" in one query;
these helpers turn that flat result back into nested structures for the
subtree and root-forest responses.
"""

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class TreeNode:
    """A node with its nested children."""

    item: Any
    children: list["TreeNode"] = field(default_factory=list)


def _sort_key(node: TreeNode, sort_by: Callable[[Any], Any] | None) -> Any:
    return sort_by(node.item) if sort_by else 0


def build_forest(
    items: Iterable[Any],
    *,
    id_of: Callable[[Any], uuid.UUID],
    parent_of: Callable[[Any], uuid.UUID | None],
    sort_by: Callable[[Any], Any] | None = None,
) -> list[TreeNode]:
    """Nest items under their parents.

    Items whose parent is absent from ``items`` become roots, so a subtree
    query result yields exactly one root.

    Args:
        items: Flat rows.
        id_of: Returns a row's id.
        parent_of: Returns a row's parent id (or None).
        sort_by: Optional key applied to siblings and roots.

    Returns:
        Root nodes, each with nested children.
    """
    nodes = {id_of(item): TreeNode(item) for item in items}
    roots: list[TreeNode] = []
    for node_id, node in nodes.items():
        parent_id = parent_of(node.item)
        parent = nodes.get(parent_id) if parent_id is not None else None
        if parent is None or parent_id == node_id:
            roots.append(node)
        else:
            parent.children.append(node)

    stack = list(roots)
    while stack:
        node = stack.pop()
        node.children.sort(key=lambda n: _sort_key(n, sort_by))
        stack.extend(node.children)
    roots.sort(key=lambda n: _sort_key(n, sort_by))
    return roots


def build_subtree(
    items: Iterable[Any],
    root_id: uuid.UUID,
    *,
    id_of: Callable[[Any], uuid.UUID],
    parent_of: Callable[[Any], uuid.UUID | None],
    sort_by: Callable[[Any], Any] | None = None,
) -> TreeNode | None:
    """Return the nested tree rooted at ``root_id`` (None if the root is absent)."""
    for root in build_forest(items, id_of=id_of, parent_of=parent_of, sort_by=sort_by):
        if id_of(root.item) == root_id:
            return root
    return None
