from __future__ import annotations

import re
from dataclasses import dataclass

from timeturn.tree.models import AI_PROPOSED_DESCRIPTION, NodeType, TaskNode

TREE_GLYPHS = frozenset("│├└─┬┼┃┣┗━┠┖╰╭")
ASCII_TREE_GLYPHS = frozenset("|`+")
HORIZONTAL_CONNECTORS = "─━-"
IMPLICIT_GOAL_TITLE = "AIが提案した目標"

TYPE_MARKER_PATTERN = re.compile(r"(Goal|Project|Milestone|Task)[:：]")
NODE_LINE_PATTERN = re.compile(
    r"^(?P<prefix>[│├└─┬┼┃┣┗━┠┖╰╭|`+\-*・\s]*?)"
    r"(?:\*\*)?(?P<type>Goal|Project|Milestone|MicroTask|Task)(?:\*\*)?[:：](?:\*\*)?\s*"
    r"(?P<title>.+?)\s*$"
)


@dataclass(slots=True)
class ParsedLine:
    node_type: NodeType
    title: str
    prefix: str

    @property
    def indent(self) -> int:
        stripped = self.prefix
        for connector in HORIZONTAL_CONNECTORS:
            stripped = stripped.replace(connector, "")
        return len(stripped)


def has_task_tree_structure(text: str) -> bool:
    """A reply counts as tree-shaped only with two or more ``Type:`` markers."""
    return len(TYPE_MARKER_PATTERN.findall(text)) >= 2


def _parse_line(line: str) -> ParsedLine | None:
    if not line.strip():
        return None
    match = NODE_LINE_PATTERN.match(line.rstrip())
    if not match:
        return None
    title = match.group("title").strip().strip("*").strip()
    if not title:
        return None
    node_type = NodeType.parse(match.group("type"))
    if node_type is None:
        return None
    return ParsedLine(node_type=node_type, title=title, prefix=match.group("prefix"))


def _line_has_glyphs(line: str) -> bool:
    if any(char in TREE_GLYPHS for char in line):
        return True
    leading = line[: len(line) - len(line.lstrip(" \t|`+-"))]
    return any(char in ASCII_TREE_GLYPHS for char in leading)


def _new_node(parsed: ParsedLine) -> TaskNode:
    return TaskNode.create(parsed.node_type, parsed.title, description=AI_PROPOSED_DESCRIPTION)


def _parse_marker_form(parsed_lines: list[ParsedLine]) -> list[TaskNode]:
    roots: list[TaskNode] = []
    stack: list[tuple[TaskNode, int]] = []
    for parsed in parsed_lines:
        node = _new_node(parsed)
        indent = parsed.indent
        if indent == 0:
            roots.append(node)
            stack.clear()
        else:
            while stack and stack[-1][1] >= indent:
                stack.pop()
            if stack:
                stack[-1][0].add_child(node)
            else:
                roots.append(node)
        if not parsed.node_type.is_leaf:
            stack.append((node, indent))
    return roots


def _parse_flat_form(parsed_lines: list[ParsedLine]) -> list[TaskNode]:
    roots: list[TaskNode] = []
    last_goal: TaskNode | None = None
    last_project: TaskNode | None = None
    last_milestone: TaskNode | None = None

    def _implicit_goal() -> TaskNode:
        nonlocal last_goal
        goal = TaskNode.create(
            NodeType.GOAL, IMPLICIT_GOAL_TITLE, description=AI_PROPOSED_DESCRIPTION
        )
        roots.append(goal)
        last_goal = goal
        return goal

    for parsed in parsed_lines:
        node = _new_node(parsed)
        node_type = parsed.node_type

        if node_type == NodeType.GOAL:
            roots.append(node)
            last_goal = node
            last_project = None
            last_milestone = None
            continue

        if node_type == NodeType.PROJECT:
            parent = last_goal or _implicit_goal()
            parent.add_child(node)
            last_project = node
            last_milestone = None
            continue

        if node_type == NodeType.MILESTONE:
            parent = last_project or last_goal or _implicit_goal()
            parent.add_child(node)
            last_milestone = node
            continue

        parent = last_milestone or last_project or last_goal or _implicit_goal()
        parent.add_child(node)

    return roots


def parse_task_tree(text: str) -> list[TaskNode]:
    """Extract a detached task forest from an LLM reply.

    Replies drawn with tree glyphs are nested by indentation; plain
    ``Type: Title`` listings are nested by type order. Lines that do not
    look like nodes are ignored, so an empty list simply means no structure
    was found.
    """
    lines = text.splitlines()
    parsed_lines = [parsed for parsed in (_parse_line(line) for line in lines) if parsed]
    if not parsed_lines:
        return []
    if any(_line_has_glyphs(line) for line in lines):
        return _parse_marker_form(parsed_lines)
    return _parse_flat_form(parsed_lines)


def render_task_tree(nodes: list[TaskNode]) -> str:
    lines: list[str] = []

    def _render_children(children: list[TaskNode], prefix: str) -> None:
        for index, child in enumerate(children):
            is_last = index == len(children) - 1
            branch = "└─ " if is_last else "├─ "
            lines.append(f"{prefix}{branch}{child.effective_type.value}: {child.display_title}")
            _render_children(child.children, prefix + ("   " if is_last else "│  "))

    for root in nodes:
        lines.append(f"{root.effective_type.value}: {root.display_title}")
        _render_children(root.children, "")
    return "\n".join(lines)
