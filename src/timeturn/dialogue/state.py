from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from timeturn.dialogue.patterns import HEARING_FIELDS, PatternTable

DEFAULT_PATTERNS = PatternTable.default()


class DialogueStage(str, Enum):
    NORMAL = "normal"
    HEARING = "hearing"
    PROPOSAL = "proposal"
    OUTPUT = "output"

    @classmethod
    def parse(cls, value: Any) -> DialogueStage:
        try:
            return cls(str(value))
        except ValueError:
            return cls.NORMAL


class PromptKind(str, Enum):
    CHAT = "chat"
    INTEREST = "interest"
    HEARING_QUESTION = "hearing_question"
    HEARING_COMPLETE = "hearing_complete"
    TASK_OUTPUT = "task_output"


@dataclass(slots=True, frozen=True)
class HearingProgress:
    why: bool = False
    current: bool = False
    target: bool = False
    timeline: bool = False

    @property
    def done_count(self) -> int:
        return sum(1 for name in HEARING_FIELDS if getattr(self, name))

    @property
    def percent(self) -> int:
        return self.done_count * 100 // len(HEARING_FIELDS)

    @property
    def complete(self) -> bool:
        return self.done_count == len(HEARING_FIELDS)

    def next_missing(self) -> str | None:
        for name in HEARING_FIELDS:
            if not getattr(self, name):
                return name
        return None

    def mark(self, name: str) -> HearingProgress:
        return replace(self, **{name: True})

    def to_dict(self) -> dict[str, bool]:
        return {name: getattr(self, name) for name in HEARING_FIELDS}

    @classmethod
    def from_dict(cls, data: Any) -> HearingProgress:
        if not isinstance(data, dict):
            return cls()
        return cls(**{name: bool(data.get(name, False)) for name in HEARING_FIELDS})


@dataclass(slots=True, frozen=True)
class HearingSummary:
    goal: str | None = None
    why: str | None = None
    current: str | None = None
    target: str | None = None
    timeline: str | None = None

    def record(self, name: str, value: str) -> HearingSummary:
        if getattr(self, name) is not None:
            return self
        return replace(self, **{name: value})

    def to_dict(self) -> dict[str, str]:
        payload: dict[str, str] = {}
        for name in ("goal", *HEARING_FIELDS):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload

    @classmethod
    def from_dict(cls, data: Any) -> HearingSummary:
        if not isinstance(data, dict):
            return cls()
        values = {}
        for name in ("goal", *HEARING_FIELDS):
            value = data.get(name)
            values[name] = str(value) if value is not None else None
        return cls(**values)


@dataclass(slots=True, frozen=True)
class DialogueState:
    stage: DialogueStage = DialogueStage.NORMAL
    progress: HearingProgress = field(default_factory=HearingProgress)
    summary: HearingSummary = field(default_factory=HearingSummary)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "hearingProgress": self.progress.to_dict(),
            "hearingSummary": self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> DialogueState:
        if not isinstance(data, dict):
            return cls()
        return cls(
            stage=DialogueStage.parse(data.get("stage", DialogueStage.NORMAL.value)),
            progress=HearingProgress.from_dict(data.get("hearingProgress")),
            summary=HearingSummary.from_dict(data.get("hearingSummary")),
        )


@dataclass(slots=True, frozen=True)
class PromptSelection:
    kind: PromptKind
    summary: HearingSummary
    next_field: str | None = None


@dataclass(slots=True, frozen=True)
class TurnDecision:
    state: DialogueState
    prompt: PromptSelection
    detected_field: str | None = None


def reset_state() -> DialogueState:
    return DialogueState()


def detect_field(
    progress: HearingProgress,
    user_message: str,
    last_assistant_message: str | None,
    patterns: PatternTable | None = None,
) -> str | None:
    """Return the single unset hearing field this turn answers, if any.

    Fields are checked in the fixed order why, current, target, timeline and
    the first hit wins. Nothing is detected when the assistant's previous
    message was a curiosity aside.
    """
    table = patterns or DEFAULT_PATTERNS
    previous = last_assistant_message or ""
    if previous and table.curiosity.search(previous):
        return None
    for name in HEARING_FIELDS:
        if getattr(progress, name):
            continue
        field_patterns = table.fields[name]
        if previous and field_patterns.question.search(previous):
            return name
        if field_patterns.answer.search(user_message):
            return name
    return None


def advance(
    state: DialogueState,
    user_message: str,
    last_assistant_message: str | None = None,
    patterns: PatternTable | None = None,
) -> TurnDecision:
    """Decide the next dialogue state and which prompt to send for this turn."""
    table = patterns or DEFAULT_PATTERNS

    if state.stage == DialogueStage.NORMAL:
        if table.motivation.search(user_message):
            summary = state.summary.record("goal", user_message)
            next_state = DialogueState(
                stage=DialogueStage.HEARING,
                progress=state.progress,
                summary=summary,
            )
            return TurnDecision(
                state=next_state,
                prompt=PromptSelection(
                    kind=PromptKind.INTEREST,
                    summary=summary,
                    next_field=state.progress.next_missing(),
                ),
            )
        return TurnDecision(
            state=state,
            prompt=PromptSelection(kind=PromptKind.CHAT, summary=state.summary),
        )

    if state.stage == DialogueStage.HEARING:
        detected = detect_field(state.progress, user_message, last_assistant_message, table)
        progress = state.progress
        summary = state.summary
        if detected is not None:
            progress = progress.mark(detected)
            summary = summary.record(detected, user_message)
        if progress.complete:
            next_state = DialogueState(
                stage=DialogueStage.PROPOSAL, progress=progress, summary=summary
            )
            return TurnDecision(
                state=next_state,
                prompt=PromptSelection(kind=PromptKind.HEARING_COMPLETE, summary=summary),
                detected_field=detected,
            )
        next_state = DialogueState(stage=DialogueStage.HEARING, progress=progress, summary=summary)
        return TurnDecision(
            state=next_state,
            prompt=PromptSelection(
                kind=PromptKind.HEARING_QUESTION,
                summary=summary,
                next_field=progress.next_missing(),
            ),
            detected_field=detected,
        )

    if state.stage == DialogueStage.PROPOSAL:
        if table.affirmative.search(user_message):
            next_state = replace(state, stage=DialogueStage.OUTPUT)
            return TurnDecision(
                state=next_state,
                prompt=PromptSelection(kind=PromptKind.TASK_OUTPUT, summary=state.summary),
            )
        return TurnDecision(
            state=state,
            prompt=PromptSelection(kind=PromptKind.HEARING_COMPLETE, summary=state.summary),
        )

    return TurnDecision(
        state=state,
        prompt=PromptSelection(kind=PromptKind.TASK_OUTPUT, summary=state.summary),
    )
