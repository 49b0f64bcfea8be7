from __future__ import annotations

import random
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from timeturn.dialogue.patterns import PatternTable
from timeturn.dialogue.state import (
    DialogueStage,
    DialogueState,
    PromptKind,
    TurnDecision,
    advance,
    reset_state,
)
from timeturn.prompts import FEW_SHOT_EXAMPLES, PromptLibrary, build_greeting
from timeturn.providers.base import ChatMessage, ChatProvider
from timeturn.state.debounce import DebouncedWriter
from timeturn.state.store import StateStore
from timeturn.tree.actions import apply_actions, parse_actions
from timeturn.tree.models import ActionItem, TaskNode, forest_from_dicts, forest_to_dicts
from timeturn.tree.ops import add_nodes, fix_duplicate_ids, serialize_tree_for_ai
from timeturn.tree.parser import has_task_tree_structure, parse_task_tree

SessionEventHook = Callable[[dict[str, Any]], None]

_FEW_SHOT_KINDS = {PromptKind.INTEREST, PromptKind.HEARING_QUESTION}


def _messages_from_record(record: dict[str, Any] | None) -> list[ChatMessage]:
    if not record:
        return []
    raw_messages = record.get("messages")
    if not isinstance(raw_messages, list):
        return []
    messages: list[ChatMessage] = []
    for item in raw_messages:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role in ("user", "assistant") and isinstance(content, str):
            messages.append(ChatMessage(role=role, content=content))
    return messages


@dataclass(slots=True)
class TurnResult:
    success: bool
    stage: DialogueStage
    previous_stage: DialogueStage
    prompt_kind: PromptKind
    progress_percent: int
    reply: str | None = None
    error: str | None = None
    detected_field: str | None = None
    provider: str | None = None
    finish_reason: str | None = None
    has_tree: bool = False

    @property
    def stage_changed(self) -> bool:
        return self.stage != self.previous_stage


@dataclass(slots=True)
class MiniChatTurn:
    success: bool
    reply: str | None = None
    error: str | None = None
    actions: list[ActionItem] = field(default_factory=list)


class _StoredConversation(ABC):
    def __init__(
        self,
        store: StateStore,
        conversation_id: str,
        user_id: str,
        writer: DebouncedWriter | None,
        event_hook: SessionEventHook | None,
    ) -> None:
        self.store = store
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.writer = writer or DebouncedWriter()
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    @abstractmethod
    def _to_record(self) -> dict[str, Any]:
        """Return the JSON record persisted for this conversation."""

    def _schedule_persist(self) -> None:
        record = self._to_record()
        self.writer.schedule(
            f"conversation:{self.conversation_id}",
            lambda: self.store.set_conversation(self.conversation_id, record),
        )

    def load_tree(self) -> list[TaskNode]:
        return forest_from_dicts(self.store.get_tree(self.user_id))

    def save_tree(self, nodes: list[TaskNode]) -> None:
        fix_duplicate_ids(nodes)
        self.store.set_tree(self.user_id, forest_to_dicts(nodes))


class ConversationSession(_StoredConversation):
    """One goal-hearing conversation: stage controller, prompts, provider and storage."""

    def __init__(
        self,
        provider: ChatProvider,
        store: StateStore,
        *,
        conversation_id: str = "default",
        user_id: str = "local",
        prompts: PromptLibrary | None = None,
        patterns: PatternTable | None = None,
        writer: DebouncedWriter | None = None,
        few_shot: bool = True,
        tree_context_depth: int = 3,
        event_hook: SessionEventHook | None = None,
    ) -> None:
        super().__init__(store, conversation_id, user_id, writer, event_hook)
        self.provider = provider
        self.prompts = prompts or PromptLibrary()
        self.patterns = patterns
        self.few_shot = few_shot
        self.tree_context_depth = tree_context_depth
        record = store.get_conversation(conversation_id)
        self.state = DialogueState.from_dict(record) if record else reset_state()
        self.messages = _messages_from_record(record)

    def _to_record(self) -> dict[str, Any]:
        record = self.state.to_dict()
        record["messages"] = [message.to_dict() for message in self.messages]
        return record

    def last_assistant_message(self) -> str | None:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message.content
        return None

    def build_messages(self, decision: TurnDecision, user_message: str) -> list[ChatMessage]:
        system_prompt = self.prompts.render(decision.prompt)
        if decision.prompt.kind == PromptKind.TASK_OUTPUT:
            existing = self.load_tree()
            if existing:
                context = serialize_tree_for_ai(existing, max_depth=self.tree_context_depth)
                system_prompt = f"{system_prompt}\n\n{context}"
        messages = [ChatMessage(role="user", content=system_prompt)]
        if self.few_shot and decision.prompt.kind in _FEW_SHOT_KINDS:
            messages.extend(
                ChatMessage(role=role, content=content)  # type: ignore[arg-type]
                for role, content in FEW_SHOT_EXAMPLES
            )
        messages.extend(self.messages)
        messages.append(ChatMessage(role="user", content=user_message))
        return messages

    async def send(self, user_message: str) -> TurnResult:
        """Run one turn.

        A failed provider call leaves the stage, hearing progress, summary and
        history untouched so the same message can simply be sent again.
        """
        previous = self.state
        decision = advance(previous, user_message, self.last_assistant_message(), self.patterns)
        result = await self.provider.chat(self.build_messages(decision, user_message))
        if not result.success:
            self._emit(
                {
                    "event": "turn_failed",
                    "conversation": self.conversation_id,
                    "stage": previous.stage.value,
                    "error": result.error,
                }
            )
            return TurnResult(
                success=False,
                stage=previous.stage,
                previous_stage=previous.stage,
                prompt_kind=decision.prompt.kind,
                progress_percent=previous.progress.percent,
                error=result.error,
                provider=result.provider,
            )

        reply = result.content or ""
        self.state = decision.state
        self.messages.append(ChatMessage(role="user", content=user_message))
        self.messages.append(ChatMessage(role="assistant", content=reply))
        self._schedule_persist()
        if decision.detected_field is not None:
            self._emit(
                {
                    "event": "hearing_field_detected",
                    "conversation": self.conversation_id,
                    "field": decision.detected_field,
                    "percent": self.state.progress.percent,
                }
            )
        if self.state.stage != previous.stage:
            self._emit(
                {
                    "event": "stage_transition",
                    "conversation": self.conversation_id,
                    "from": previous.stage.value,
                    "to": self.state.stage.value,
                }
            )
        return TurnResult(
            success=True,
            stage=self.state.stage,
            previous_stage=previous.stage,
            prompt_kind=decision.prompt.kind,
            progress_percent=self.state.progress.percent,
            reply=reply,
            detected_field=decision.detected_field,
            provider=result.provider,
            finish_reason=result.finish_reason,
            has_tree=has_task_tree_structure(reply),
        )

    def reset(self) -> None:
        self.state = reset_state()
        self.messages = []
        self._emit({"event": "conversation_reset", "conversation": self.conversation_id})
        self._schedule_persist()

    def proposed_tree(self) -> list[TaskNode]:
        reply = self.last_assistant_message()
        if not reply or not has_task_tree_structure(reply):
            return []
        return parse_task_tree(reply)

    def merge_proposal(self, parent_id: str | None = None) -> list[TaskNode]:
        """Append the last proposed forest to the stored tree; nothing is written if empty."""
        proposal = self.proposed_tree()
        if not proposal:
            return []
        nodes = self.load_tree()
        add_nodes(nodes, parent_id, proposal)
        self.save_tree(nodes)
        self._emit(
            {
                "event": "tree_merged",
                "conversation": self.conversation_id,
                "roots": len(proposal),
                "parent_id": parent_id,
            }
        )
        return proposal


class MiniChatSession(_StoredConversation):
    """Tree-aware assistant that proposes tree edits as inline action tags."""

    def __init__(
        self,
        provider: ChatProvider,
        store: StateStore,
        *,
        conversation_id: str = "mini-chat",
        user_id: str = "local",
        prompts: PromptLibrary | None = None,
        writer: DebouncedWriter | None = None,
        tree_context_depth: int = 3,
        rng: random.Random | None = None,
        event_hook: SessionEventHook | None = None,
    ) -> None:
        super().__init__(store, conversation_id, user_id, writer, event_hook)
        self.provider = provider
        self.prompts = prompts or PromptLibrary()
        self.tree_context_depth = tree_context_depth
        self.rng = rng
        self.messages = _messages_from_record(store.get_conversation(conversation_id))

    def _to_record(self) -> dict[str, Any]:
        return {"messages": [message.to_dict() for message in self.messages]}

    def greeting(self) -> str | None:
        """Open an empty conversation with a check-in; returns None once history exists."""
        if self.messages:
            return None
        text = build_greeting(self.load_tree(), self.rng)
        self.messages.append(ChatMessage(role="assistant", content=text))
        self._schedule_persist()
        return text

    async def send(self, user_message: str) -> MiniChatTurn:
        nodes = self.load_tree()
        system_prompt = self.prompts.mini_chat(nodes, max_depth=self.tree_context_depth)
        messages = [
            ChatMessage(role="user", content=system_prompt),
            *self.messages,
            ChatMessage(role="user", content=user_message),
        ]
        result = await self.provider.chat(messages)
        if not result.success:
            return MiniChatTurn(success=False, error=result.error)

        parsed = parse_actions(result.content or "", nodes)
        self.messages.append(ChatMessage(role="user", content=user_message))
        self.messages.append(ChatMessage(role="assistant", content=parsed.clean_text))
        self._schedule_persist()
        if parsed.actions:
            self._emit(
                {
                    "event": "actions_proposed",
                    "conversation": self.conversation_id,
                    "count": len(parsed.actions),
                }
            )
        return MiniChatTurn(success=True, reply=parsed.clean_text, actions=parsed.actions)

    def apply(self, actions: list[ActionItem]) -> list[ActionItem]:
        """Commit the selected actions to the stored tree in a single write."""
        nodes = self.load_tree()
        applied = apply_actions(nodes, actions)
        if any(action.success for action in applied):
            self.save_tree(nodes)
        self._emit(
            {
                "event": "actions_applied",
                "conversation": self.conversation_id,
                "applied": sum(1 for action in applied if action.success),
                "failed": sum(1 for action in applied if action.success is False),
            }
        )
        return applied
