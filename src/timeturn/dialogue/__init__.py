from timeturn.dialogue.patterns import HEARING_FIELDS, PatternTable, load_pattern_table
from timeturn.dialogue.state import (
    DialogueStage,
    DialogueState,
    HearingProgress,
    HearingSummary,
    PromptKind,
    PromptSelection,
    TurnDecision,
    advance,
    detect_field,
    reset_state,
)

__all__ = [
    "HEARING_FIELDS",
    "DialogueStage",
    "DialogueState",
    "HearingProgress",
    "HearingSummary",
    "PatternTable",
    "PromptKind",
    "PromptSelection",
    "TurnDecision",
    "advance",
    "detect_field",
    "load_pattern_table",
    "reset_state",
]
