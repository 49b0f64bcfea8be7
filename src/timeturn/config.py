from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

ProviderName = Literal["gemini", "openai", "anthropic"]
PROVIDER_NAMES: tuple[str, ...] = ("gemini", "openai", "anthropic")


@dataclass(slots=True)
class ProviderConfig:
    primary: ProviderName = "gemini"
    fallback: ProviderName = "gemini"
    max_retries: int = 0
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class ModelsConfig:
    gemini_model: str = "gemini-2.5-flash"
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-sonnet-4-5"
    temperature: float = 0.7
    max_output_tokens: int = 2000


@dataclass(slots=True)
class DialogueConfig:
    persist_debounce_seconds: float = 0.5
    few_shot_examples: bool = True
    tree_context_depth: int = 3
    patterns_file: str = ""


@dataclass(slots=True)
class StorageConfig:
    user_id: str = "local"


@dataclass(slots=True)
class TimeturnConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def default(cls) -> TimeturnConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> TimeturnConfig:
        return cls(
            provider=ProviderConfig(**data.get("provider", {})),
            models=ModelsConfig(**data.get("models", {})),
            dialogue=DialogueConfig(**data.get("dialogue", {})),
            storage=StorageConfig(**data.get("storage", {})),
        )

    def to_dict(self) -> dict:
        return {
            "provider": {
                "primary": self.provider.primary,
                "fallback": self.provider.fallback,
                "max_retries": self.provider.max_retries,
                "retry_backoff_seconds": self.provider.retry_backoff_seconds,
                "timeout_seconds": self.provider.timeout_seconds,
            },
            "models": {
                "gemini_model": self.models.gemini_model,
                "openai_model": self.models.openai_model,
                "anthropic_model": self.models.anthropic_model,
                "temperature": self.models.temperature,
                "max_output_tokens": self.models.max_output_tokens,
            },
            "dialogue": {
                "persist_debounce_seconds": self.dialogue.persist_debounce_seconds,
                "few_shot_examples": self.dialogue.few_shot_examples,
                "tree_context_depth": self.dialogue.tree_context_depth,
                "patterns_file": self.dialogue.patterns_file,
            },
            "storage": {
                "user_id": self.storage.user_id,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        if not rendered:
            return "0.0"
        return rendered if "." in rendered else f"{rendered}.0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: TimeturnConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = ["provider", "models", "dialogue", "storage"]
    for section in section_order:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> TimeturnConfig:
    if not path.exists():
        return TimeturnConfig.default()
    return TimeturnConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: TimeturnConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
