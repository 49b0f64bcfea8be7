from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

HEARING_FIELDS: tuple[str, ...] = ("why", "current", "target", "timeline")

MOTIVATION_PATTERNS: tuple[str, ...] = (
    r"したい",
    r"やりたい",
    r"成したい",
    r"学びたい",
    r"なりたい",
    r"始めたい",
    r"作りたい",
    r"行きたい",
    r"身につけたい",
    r"受かりたい",
    r"目標",
    r"挑戦",
    r"タスク",
    r"分解",
    r"計画",
    r"ステップ",
)

AFFIRMATIVE_PATTERNS: tuple[str, ...] = (
    r"うん",
    r"お願い",
    r"いいね",
    r"そうだね",
    r"やろう",
    r"はい",
    r"yes",
    r"ok",
    r"オッケー",
    r"よろしく",
)

CURIOSITY_MARKERS: tuple[str, ...] = (
    r"ちなみに",
    r"ところで",
    r"余談",
    r"ふと気になった",
)

QUESTION_PATTERNS: dict[str, tuple[str, ...]] = {
    "why": (r"なんで", r"なぜ", r"どうして", r"理由", r"きっかけ", r"動機"),
    "current": (
        r"今の",
        r"現状",
        r"現在",
        r"今は",
        r"どのくらいでき",
        r"どれくらいでき",
        r"レベル",
        r"経験",
    ),
    "target": (
        r"目指",
        r"ゴール",
        r"どうなりたい",
        r"理想",
        r"どこまで",
        r"どんな状態",
        r"達成したら",
    ),
    "timeline": (
        r"いつまで",
        r"期限",
        r"締め?切",
        r"期間",
        r"いつ頃",
        r"いつごろ",
        r"何[ヶかカケ]月",
    ),
}

ANSWER_PATTERNS: dict[str, tuple[str, ...]] = {
    "why": (r"から[。!！]?$", r"ために", r"ので", r"理由は", r"きっかけは"),
    "current": (
        r"今は",
        r"現在",
        r"現状",
        r"初心者",
        r"未経験",
        r"経験",
        r"やったこと",
        r"\d+\s*点",
        r"\d+\s*級",
        r"全然",
    ),
    "target": (
        r"なりたい",
        r"目指",
        r"ゴール",
        r"できるように",
        r"合格",
        r"取りたい",
        r"取得",
    ),
    "timeline": (
        r"\d{4}\s*年",
        r"\d{1,2}\s*月",
        r"\d+\s*(?:日|週間|[ヶかカケ]月|年)(?:後|以内|で)",
        r"まで",
        r"年内",
        r"来年",
        r"今年",
        r"来月",
        r"半年",
    ),
}


def _compile(sources: tuple[str, ...] | list[str], *, ignore_case: bool = False) -> re.Pattern[str]:
    flags = re.IGNORECASE if ignore_case else 0
    if not sources:
        return re.compile(r"(?!)")
    return re.compile("|".join(f"(?:{source})" for source in sources), flags)


@dataclass(slots=True)
class FieldPatterns:
    question: re.Pattern[str]
    answer: re.Pattern[str]


@dataclass(slots=True)
class PatternTable:
    """Trigger phrases the dialogue controller matches against."""

    motivation: re.Pattern[str]
    affirmative: re.Pattern[str]
    curiosity: re.Pattern[str]
    fields: dict[str, FieldPatterns] = field(default_factory=dict)

    @classmethod
    def from_sources(
        cls,
        *,
        motivation: tuple[str, ...] | list[str] = MOTIVATION_PATTERNS,
        affirmative: tuple[str, ...] | list[str] = AFFIRMATIVE_PATTERNS,
        curiosity: tuple[str, ...] | list[str] = CURIOSITY_MARKERS,
        questions: dict[str, tuple[str, ...]] | None = None,
        answers: dict[str, tuple[str, ...]] | None = None,
    ) -> PatternTable:
        question_sources = {**QUESTION_PATTERNS, **(questions or {})}
        answer_sources = {**ANSWER_PATTERNS, **(answers or {})}
        return cls(
            motivation=_compile(motivation),
            affirmative=_compile(affirmative, ignore_case=True),
            curiosity=_compile(curiosity),
            fields={
                name: FieldPatterns(
                    question=_compile(question_sources.get(name, ())),
                    answer=_compile(answer_sources.get(name, ())),
                )
                for name in HEARING_FIELDS
            },
        )

    @classmethod
    def default(cls) -> PatternTable:
        return cls.from_sources()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatternTable:
        questions: dict[str, tuple[str, ...]] = {}
        answers: dict[str, tuple[str, ...]] = {}
        for name in HEARING_FIELDS:
            section = data.get(name, {})
            if not isinstance(section, dict):
                continue
            if isinstance(section.get("question"), list):
                questions[name] = tuple(str(item) for item in section["question"])
            if isinstance(section.get("answer"), list):
                answers[name] = tuple(str(item) for item in section["answer"])
        return cls.from_sources(
            motivation=tuple(data.get("motivation", MOTIVATION_PATTERNS)),
            affirmative=tuple(data.get("affirmative", AFFIRMATIVE_PATTERNS)),
            curiosity=tuple(data.get("curiosity", CURIOSITY_MARKERS)),
            questions=questions,
            answers=answers,
        )


def load_pattern_table(path: Path | None) -> PatternTable:
    if path is None or not path.exists():
        return PatternTable.default()
    return PatternTable.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))
