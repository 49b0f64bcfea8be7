from timeturn.prompts.library import (
    FEW_SHOT_EXAMPLES,
    FIELD_QUESTIONS,
    PromptLibrary,
    build_greeting,
    format_summary,
)

__all__ = [
    "FEW_SHOT_EXAMPLES",
    "FIELD_QUESTIONS",
    "PromptLibrary",
    "build_greeting",
    "format_summary",
]
