from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

Role = Literal["user", "assistant"]
ProviderEventHook = Callable[[dict[str, Any]], None]


class ProviderExecutionError(RuntimeError):
    """Raised when an LLM provider request fails."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retriable = retriable


class ProviderTimeoutError(ProviderExecutionError):
    """Raised when a provider request exceeds the configured timeout."""


class ProviderConfigError(ProviderExecutionError):
    """Raised when a provider cannot be used as configured, e.g. a missing API key."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message, provider=provider, retriable=False)


@dataclass(slots=True, frozen=True)
class ChatMessage:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class ChatResult:
    success: bool
    provider: str
    content: str | None = None
    error: str | None = None
    finish_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "provider": self.provider}
        if self.content is not None:
            payload["content"] = self.content
        if self.error is not None:
            payload["error"] = self.error
        if self.finish_reason is not None:
            payload["finishReason"] = self.finish_reason
        return payload


@dataclass(slots=True)
class Completion:
    content: str
    finish_reason: str | None = None
    provider: str | None = None


class ChatProvider(ABC):
    name: str = "provider"

    def __init__(self, event_hook: ProviderEventHook | None = None) -> None:
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    @abstractmethod
    async def complete(self, messages: list[ChatMessage]) -> Completion:
        """Send the ordered turns and return the model's reply."""

    async def chat(self, messages: list[ChatMessage]) -> ChatResult:
        """Like ``complete`` but reports provider failures in the result instead of raising."""
        try:
            completion = await self.complete(messages)
        except ProviderExecutionError as exc:
            return ChatResult(success=False, provider=exc.provider or self.name, error=str(exc))
        return ChatResult(
            success=True,
            provider=completion.provider or self.name,
            content=completion.content,
            finish_reason=completion.finish_reason,
        )
