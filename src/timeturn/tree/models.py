from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

AI_PROPOSED_DESCRIPTION = "AIによって提案されたタスク"

TYPE_PREFIX_PATTERN = re.compile(r"^(Goal|Project|Milestone|Task|MicroTask)[:：]\s*")

ActionType = Literal["add_goal", "add_project", "add_milestone", "add_task", "add_memo"]


class TaskTreeError(RuntimeError):
    """Raised when a task-tree mutation would break the hierarchy."""


class NodeType(str, Enum):
    GOAL = "Goal"
    PROJECT = "Project"
    MILESTONE = "Milestone"
    TASK = "Task"
    MICRO_TASK = "MicroTask"

    @property
    def is_leaf(self) -> bool:
        return self in (NodeType.TASK, NodeType.MICRO_TASK)

    @classmethod
    def parse(cls, value: str | None) -> NodeType | None:
        if not value:
            return None
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        return None


def generate_node_id(node_type: NodeType | str) -> str:
    prefix = node_type.value if isinstance(node_type, NodeType) else str(node_type)
    return f"{prefix.lower()}-{int(time.time() * 1000)}-{uuid4().hex[:9]}"


def strip_type_prefix(title: str) -> str:
    return TYPE_PREFIX_PATTERN.sub("", title.strip(), count=1)


def infer_node_type(title: str) -> NodeType:
    """Guess a node type from a ``Type:`` title prefix; untagged titles are tasks."""
    match = TYPE_PREFIX_PATTERN.match(title.strip())
    if match:
        parsed = NodeType.parse(match.group(1))
        if parsed is not None:
            return parsed
    return NodeType.TASK


@dataclass(slots=True)
class TaskNode:
    id: str
    title: str
    type: NodeType | None = None
    description: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    children: list[TaskNode] = field(default_factory=list)
    memo: str | None = None
    archived: bool = False

    @classmethod
    def create(
        cls,
        node_type: NodeType,
        title: str,
        *,
        description: str | None = None,
    ) -> TaskNode:
        return cls(
            id=generate_node_id(node_type),
            title=title.strip(),
            type=node_type,
            description=description,
        )

    @property
    def effective_type(self) -> NodeType:
        return self.type if self.type is not None else infer_node_type(self.title)

    @property
    def display_title(self) -> str:
        return strip_type_prefix(self.title)

    def add_child(self, child: TaskNode) -> None:
        if self.effective_type.is_leaf:
            raise TaskTreeError(
                f"{self.effective_type.value} '{self.display_title}' cannot hold children."
            )
        self.children.append(child)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "title": self.title}
        if self.type is not None:
            payload["type"] = self.type.value
        if self.description is not None:
            payload["description"] = self.description
        if self.start_date is not None:
            payload["startDate"] = self.start_date
        if self.end_date is not None:
            payload["endDate"] = self.end_date
        if self.memo is not None:
            payload["memo"] = self.memo
        if self.archived:
            payload["archived"] = True
        if self.children or not self.effective_type.is_leaf:
            payload["children"] = [child.to_dict() for child in self.children]
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskNode:
        raw_children = data.get("children")
        children: list[TaskNode] = []
        if isinstance(raw_children, list):
            children = [cls.from_dict(item) for item in raw_children if isinstance(item, dict)]
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            type=NodeType.parse(data.get("type")),
            description=data.get("description"),
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            children=children,
            memo=data.get("memo"),
            archived=bool(data.get("archived", False)),
        )


def forest_to_dicts(nodes: list[TaskNode]) -> list[dict[str, Any]]:
    return [node.to_dict() for node in nodes]


def forest_from_dicts(payload: Any) -> list[TaskNode]:
    if not isinstance(payload, list):
        return []
    return [TaskNode.from_dict(item) for item in payload if isinstance(item, dict)]


@dataclass(slots=True)
class ActionItem:
    type: ActionType
    parent_id: str | None = None
    parent_title: str | None = None
    title: str | None = None
    memo: str | None = None
    selected: bool = True
    success: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "parentId": self.parent_id,
            "parentTitle": self.parent_title,
            "title": self.title,
            "memo": self.memo,
            "selected": self.selected,
            "success": self.success,
        }

    def describe(self) -> str:
        if self.type == "add_memo":
            return f"「{self.parent_title or '?'}」にメモ追加: {self.memo or ''}"
        if self.type == "add_goal":
            return f"目標「{self.title}」を追加"
        return f"「{self.parent_title or '?'}」に「{self.title}」を追加"
