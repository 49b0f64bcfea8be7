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

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiProvider(ChatProvider):
    name = "gemini"

    def __init__(
        self,
        *,
        model: str = "gemini-2.5-flash",
        api_key: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 2000,
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
        api_key = self.api_key or os.environ.get("GEMINI_API_KEY")
        if not api_key:
            raise ProviderConfigError("GEMINI_API_KEY is not set.", provider=self.name)
        return api_key

    def build_payload(self, messages: list[ChatMessage]) -> dict:
        return {
            "contents": [
                {
                    "role": "model" if message.role == "assistant" else "user",
                    "parts": [{"text": message.content}],
                }
                for message in messages
            ],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

    async def complete(self, messages: list[ChatMessage]) -> Completion:
        api_key = self._resolve_api_key()
        self._emit({"event": "provider_request", "provider": self.name, "model": self.model})
        data = await post_json(
            self.name,
            f"{GEMINI_API_BASE}/{self.model}:generateContent",
            payload=self.build_payload(messages),
            params={"key": api_key},
            timeout=self.timeout_seconds,
            transport=self.transport,
        )
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise ProviderExecutionError(
                "No response from API", provider=self.name, retriable=True
            )
        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(
            part.get("text", "") for part in parts if isinstance(part, dict)
        )
        finish_reason = candidate.get("finishReason")
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
                "Gemini returned an empty reply.", provider=self.name, retriable=True
            )
        return Completion(content=text, finish_reason=finish_reason)
