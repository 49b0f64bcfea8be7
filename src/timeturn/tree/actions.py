from __future__ import annotations

import re
from dataclasses import dataclass, field

from timeturn.tree.models import (
    ActionItem,
    ActionType,
    NodeType,
    TaskNode,
    strip_type_prefix,
)
from timeturn.tree.ops import find_node_by_id, find_parent, iter_nodes

ACTION_TAG_PATTERN = re.compile(
    r"\[(ADD_GOAL|ADD_PROJECT|ADD_MILESTONE|ADD_TASK|ADD_MEMO)[:：]([^\]]*)\]"
)
ANY_ACTION_TAG_PATTERN = re.compile(r"\[ADD_[A-Z_]+[:：][^\]]*\]")
FIELD_SEPARATOR_PATTERN = re.compile(r"[:：]")
EXTRA_BLANK_LINES = re.compile(r"\n{3,}")

_ACTION_FOR_PARENT: dict[NodeType, ActionType] = {
    NodeType.GOAL: "add_project",
    NodeType.PROJECT: "add_milestone",
    NodeType.MILESTONE: "add_task",
}

_NODE_TYPE_FOR_ACTION: dict[str, NodeType] = {
    "add_goal": NodeType.GOAL,
    "add_project": NodeType.PROJECT,
    "add_milestone": NodeType.MILESTONE,
    "add_task": NodeType.TASK,
}


@dataclass(slots=True)
class ActionParseResult:
    clean_text: str
    actions: list[ActionItem] = field(default_factory=list)

    @property
    def resolved_actions(self) -> list[ActionItem]:
        return [
            action
            for action in self.actions
            if action.type == "add_goal" or action.parent_id is not None
        ]


def _split_once(body: str) -> tuple[str, str]:
    parts = FIELD_SEPARATOR_PATTERN.split(body, maxsplit=1)
    if len(parts) == 1:
        return "", parts[0].strip()
    return parts[0].strip(), parts[1].strip()


def _split_memo(value: str) -> tuple[str, str | None]:
    title, separator, memo = value.partition("|")
    if not separator:
        return value.strip(), None
    return title.strip(), memo.strip() or None


def resolve_node(nodes: list[TaskNode], search: str) -> TaskNode | None:
    """Find a node by id, then by case-insensitive partial title match."""
    needle = search.strip()
    if not needle:
        return None
    for node in iter_nodes(nodes):
        if node.id == needle:
            return node
    lowered = strip_type_prefix(needle).casefold()
    if not lowered:
        return None
    for node in iter_nodes(nodes):
        if lowered in node.display_title.casefold():
            return node
    for node in iter_nodes(nodes):
        title = node.display_title.casefold()
        if title and title in lowered:
            return node
    return None


def _classify(nodes: list[TaskNode], parent: TaskNode) -> tuple[ActionType, TaskNode] | None:
    target: TaskNode | None = parent
    while target is not None and target.effective_type.is_leaf:
        target = find_parent(nodes, target.id)
    if target is None:
        return None
    return _ACTION_FOR_PARENT[target.effective_type], target


def _build_action(tag: str, body: str, nodes: list[TaskNode]) -> ActionItem | None:
    if tag == "ADD_GOAL":
        title, memo = _split_memo(body.strip())
        if not title:
            return None
        return ActionItem(type="add_goal", title=title, memo=memo)

    if tag == "ADD_MEMO":
        search, memo = _split_once(body)
        if not search or not memo:
            return None
        node = resolve_node(nodes, search)
        return ActionItem(
            type="add_memo",
            parent_id=node.id if node else None,
            parent_title=node.display_title if node else search,
            memo=memo,
        )

    search, remainder = _split_once(body)
    title, memo = _split_memo(remainder)
    if not search or not title:
        return None
    action = ActionItem(
        type=tag.lower(),  # type: ignore[arg-type]
        parent_title=search,
        title=title,
        memo=memo,
    )
    parent = resolve_node(nodes, search)
    if parent is None:
        return action
    classified = _classify(nodes, parent)
    if classified is None:
        return action
    action.type, resolved = classified
    action.parent_id = resolved.id
    action.parent_title = resolved.display_title
    return action


def strip_action_tags(text: str) -> str:
    cleaned = ANY_ACTION_TAG_PATTERN.sub("", text)
    return EXTRA_BLANK_LINES.sub("\n\n", cleaned).strip()


def parse_actions(text: str, nodes: list[TaskNode]) -> ActionParseResult:
    """Pull ``[ADD_*:...]`` proposals out of a reply.

    Tags are always removed from the returned text, even when their target
    cannot be resolved. A tag pointing at a node of the wrong level is
    re-classified from the node's real type instead of being dropped.
    """
    actions: list[ActionItem] = []
    for match in ACTION_TAG_PATTERN.finditer(text):
        action = _build_action(match.group(1), match.group(2), nodes)
        if action is not None:
            actions.append(action)
    return ActionParseResult(clean_text=strip_action_tags(text), actions=actions)


def _apply_one(nodes: list[TaskNode], action: ActionItem) -> bool:
    if action.type == "add_goal":
        if not action.title:
            return False
        goal = TaskNode.create(NodeType.GOAL, action.title)
        goal.memo = action.memo
        nodes.append(goal)
        return True

    target = find_node_by_id(nodes, action.parent_id) if action.parent_id else None
    if target is None and action.parent_title:
        target = resolve_node(nodes, action.parent_title)
    if target is None:
        return False

    if action.type == "add_memo":
        target.memo = action.memo
        action.parent_id = target.id
        return True

    if not action.title:
        return False
    classified = _classify(nodes, target)
    if classified is None:
        return False
    action_type, parent = classified
    action.type = action_type
    action.parent_id = parent.id
    action.parent_title = parent.display_title
    node = TaskNode.create(_NODE_TYPE_FOR_ACTION[action_type], action.title)
    node.memo = action.memo
    parent.add_child(node)
    return True


def apply_actions(nodes: list[TaskNode], actions: list[ActionItem]) -> list[ActionItem]:
    """Commit the selected actions to ``nodes`` in one pass, in order.

    Targets that did not exist at parse time are looked up again, so a goal
    and the project proposed under it in the same reply both land.
    """
    for action in actions:
        if not action.selected:
            continue
        action.success = _apply_one(nodes, action)
    return actions
