from timeturn.tree.actions import ActionParseResult, apply_actions, parse_actions
from timeturn.tree.models import (
    ActionItem,
    NodeType,
    TaskNode,
    TaskTreeError,
    forest_from_dicts,
    forest_to_dicts,
    generate_node_id,
)
from timeturn.tree.parser import has_task_tree_structure, parse_task_tree, render_task_tree

__all__ = [
    "ActionItem",
    "ActionParseResult",
    "NodeType",
    "TaskNode",
    "TaskTreeError",
    "apply_actions",
    "forest_from_dicts",
    "forest_to_dicts",
    "generate_node_id",
    "has_task_tree_structure",
    "parse_actions",
    "parse_task_tree",
    "render_task_tree",
]
