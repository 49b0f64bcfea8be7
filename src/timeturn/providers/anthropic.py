from __future__ import annotations

import os

import httpx

from timeturn.providers.base import (
    ChatMessage,
    ChatProvider,
    Completion,
    ProviderConfigError,
    ProviderEventHook,
    ProviderExecutionError,
)
from timeturn.providers.http import post_json

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


def _merge_consecutive(messages: list[ChatMessage]) -> list[dict[str, str]]:
    # The Messages API rejects two turns in a row from the same role.
    merged: list[dict[str, str]] = []
    for message in messages:
        if merged and merged[-1]["role"] == message.role:
            merged[-1]["content"] = f"{merged[-1]['content']}\n\n{message.content}"
            continue
        merged.append(message.to_dict())
    return merged


class AnthropicProvider(ChatProvider):
    name = "anthropic"

    def __init__(
        self,
        *,
        model: str = "claude-sonnet-4-5",
        api_key: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        event_hook: ProviderEventHook | None = None,
    ) -> None:
        super().__init__(event_hook)
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _resolve_api_key(self) -> str:
        api_key = self.api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ProviderConfigError("ANTHROPIC_API_KEY is not set.", provider=self.name)
        return api_key

    def build_payload(self, messages: list[ChatMessage]) -> dict:
        return {
            "model": self.model,
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "messages": _merge_consecutive(messages),
        }

    async def complete(self, messages: list[ChatMessage]) -> Completion:
        api_key = self._resolve_api_key()
        self._emit({"event": "provider_request", "provider": self.name, "model": self.model})
        data = await post_json(
            self.name,
            ANTHROPIC_MESSAGES_URL,
            payload=self.build_payload(messages),
            headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
            timeout=self.timeout_seconds,
            transport=self.transport,
        )
        blocks = data.get("content")
        text = ""
        if isinstance(blocks, list):
            text = "".join(
                block.get("text", "")
                for block in blocks
                if isinstance(block, dict) and block.get("type", "text") == "text"
            )
        finish_reason = data.get("stop_reason")
        self._emit(
            {
                "event": "provider_response",
                "provider": self.name,
                "finish_reason": finish_reason,
                "chars": len(text),
            }
        )
        if not text:
            raise ProviderExecutionError(
                "Anthropic returned an empty reply.", provider=self.name, retriable=True
            )
        return Completion(content=text, finish_reason=finish_reason)
