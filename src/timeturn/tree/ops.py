from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

from timeturn.tree.models import NodeType, TaskNode, TaskTreeError, generate_node_id


def iter_nodes(nodes: list[TaskNode]) -> Iterator[TaskNode]:
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)


def flatten_tree(nodes: list[TaskNode]) -> list[TaskNode]:
    return list(iter_nodes(nodes))


def filter_nodes(nodes: list[TaskNode], predicate: Callable[[TaskNode], bool]) -> list[TaskNode]:
    return [node for node in iter_nodes(nodes) if predicate(node)]


def find_node_by_id(nodes: list[TaskNode], node_id: str) -> TaskNode | None:
    for node in iter_nodes(nodes):
        if node.id == node_id:
            return node
    return None


def find_parent(nodes: list[TaskNode], node_id: str) -> TaskNode | None:
    for node in iter_nodes(nodes):
        if any(child.id == node_id for child in node.children):
            return node
    return None


def add_node(nodes: list[TaskNode], parent_id: str | None, new_node: TaskNode) -> TaskNode | None:
    """Append ``new_node`` in place; ``parent_id=None`` makes it a new root."""
    if parent_id is None:
        nodes.append(new_node)
        return None
    parent = find_node_by_id(nodes, parent_id)
    if parent is None:
        raise TaskTreeError(f"Parent node not found: {parent_id}")
    parent.add_child(new_node)
    return parent


def add_nodes(nodes: list[TaskNode], parent_id: str | None, new_nodes: list[TaskNode]) -> None:
    if parent_id is not None:
        parent = find_node_by_id(nodes, parent_id)
        if parent is None:
            raise TaskTreeError(f"Parent node not found: {parent_id}")
        if parent.effective_type.is_leaf:
            raise TaskTreeError(
                f"{parent.effective_type.value} '{parent.display_title}' cannot hold children."
            )
    for node in new_nodes:
        add_node(nodes, parent_id, node)


def archive_node(nodes: list[TaskNode], node_id: str) -> TaskNode:
    target = find_node_by_id(nodes, node_id)
    if target is None:
        raise TaskTreeError(f"Node not found: {node_id}")
    for node in iter_nodes([target]):
        node.archived = True
    return target


def incomplete_tasks(nodes: list[TaskNode]) -> list[TaskNode]:
    return filter_nodes(nodes, lambda node: not node.archived and not node.children)


def tree_statistics(nodes: list[TaskNode]) -> dict[str, Any]:
    counts = {node_type.value: 0 for node_type in NodeType}
    archived_tasks = 0
    for node in iter_nodes(nodes):
        node_type = node.effective_type
        counts[node_type.value] += 1
        if node_type == NodeType.TASK and node.archived:
            archived_tasks += 1
    task_count = counts[NodeType.TASK.value]
    return {
        "goal_count": counts[NodeType.GOAL.value],
        "project_count": counts[NodeType.PROJECT.value],
        "milestone_count": counts[NodeType.MILESTONE.value],
        "task_count": task_count,
        "micro_task_count": counts[NodeType.MICRO_TASK.value],
        "completed_task_count": archived_tasks,
        "completion_rate": (archived_tasks / task_count) * 100 if task_count else 0.0,
    }


def fix_duplicate_ids(nodes: list[TaskNode]) -> bool:
    seen: set[str] = set()
    fixed = False
    for node in iter_nodes(nodes):
        if not node.id or node.id in seen:
            node.id = generate_node_id(node.effective_type)
            fixed = True
        seen.add(node.id)
    return fixed


def serialize_tree_for_chat(nodes: list[TaskNode], max_depth: int = 3, depth: int = 0) -> str:
    if depth > max_depth or not nodes:
        return ""
    lines: list[str] = []
    indent = "  " * depth
    for node in nodes:
        status = "[完了]" if node.archived else ""
        deadline = f" [期限: {node.end_date}]" if node.end_date else ""
        memo = f" (メモ: {node.memo})" if node.memo else ""
        label = f"{node.effective_type.value}: {node.display_title}"
        lines.append(f"{indent}- {label}{status}{deadline}{memo}\n")
        if node.children and depth < max_depth:
            lines.append(serialize_tree_for_chat(node.children, max_depth, depth + 1))
    return "".join(lines)


def serialize_tree_for_ai(nodes: list[TaskNode], max_depth: int = 3) -> str:
    def _serialize(node: TaskNode, depth: int) -> str:
        if depth > max_depth:
            return ""
        indent = "  " * depth
        child_info = f" ({len(node.children)}個のサブタスク)" if node.children else ""
        label = f"{node.effective_type.value}: {node.display_title}"
        result = f"{indent}- {label}{child_info}\n"
        if node.description:
            result += f"{indent}  説明: {node.description}\n"
        if depth < max_depth:
            for child in node.children:
                result += _serialize(child, depth + 1)
        return result

    return "【現在のタスクツリー】\n" + "".join(_serialize(node, 0) for node in nodes)
