"""Reconstruct a category forest from flat parent-pointer entries."""

from __future__ import annotations

from typing import Iterable

from .default_categories import ROOT_PARENT_ID
from .models import CategoryNode, CategoryTreeNode


def is_root_marker(parent_id: str | None) -> bool:
    """Return whether ``parent_id`` explicitly marks a top-level category."""

    return parent_id is None or parent_id == "" or parent_id == ROOT_PARENT_ID


def build_category_tree(nodes: Iterable[CategoryNode]) -> list[CategoryTreeNode]:
    """Return the ordered forest described by ``nodes``.

    Roots and children keep their input order. Entries whose parent is the
    root marker, missing from the input, or the entry itself become roots, so
    malformed taxonomies degrade to a flatter tree instead of failing. Entries
    caught in a longer parent cycle are promoted to roots as well, which keeps
    every input entry reachable exactly once.
    """

    placed = [
        CategoryTreeNode(id=node.id, name=node.name, parent_id=node.parent_id)
        for node in nodes
    ]
    index: dict[str, CategoryTreeNode] = {node.id: node for node in placed}

    roots: list[CategoryTreeNode] = []
    for tree_node in placed:
        parent = _resolve_parent(tree_node, index)
        if parent is None:
            roots.append(tree_node)
        else:
            parent.children.append(tree_node)
    return roots


def _resolve_parent(
    node: CategoryTreeNode, index: dict[str, CategoryTreeNode]
) -> CategoryTreeNode | None:
    if is_root_marker(node.parent_id):
        return None
    parent = index.get(node.parent_id or "")
    if parent is None or parent is node:
        return None

    # Walk the ancestor chain; the bound keeps malformed input from spinning.
    current: CategoryTreeNode | None = parent
    for _ in range(len(index)):
        if current is None or is_root_marker(current.parent_id):
            return parent
        if current is node:
            return None
        current = index.get(current.parent_id or "")
        if current is node:
            return None
    return parent
