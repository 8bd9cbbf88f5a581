"""Hierarchy library -- nest flat parent-pointer rows into trees."""

from location_api.lib.hierarchy.tree import TreeNode, build_forest, build_subtree

__all__ = ["TreeNode", "build_forest", "build_subtree"]
