from __future__ import annotations

import asyncio
import os
from typing import Any

import openai
from openai import OpenAI

from timeturn.providers.base import (
    ChatMessage,
    ChatProvider,
    Completion,
    ProviderConfigError,
    ProviderEventHook,
    ProviderExecutionError,
    ProviderTimeoutError,
)


class OpenAIProvider(ChatProvider):
    """Chat completions through the official SDK, run off the event loop."""

    name = "openai"

    def __init__(
        self,
        *,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 2000,
        timeout_seconds: float = 60.0,
        client: Any | None = None,
        event_hook: ProviderEventHook | None = None,
    ) -> None:
        super().__init__(event_hook)
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_seconds = timeout_seconds
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        api_key = self.api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is not set.", provider=self.name)
        self._client = OpenAI(api_key=api_key, timeout=self.timeout_seconds, max_retries=0)
        return self._client

    @staticmethod
    def _extract_choice(payload: Any) -> tuple[str, str | None]:
        choices = getattr(payload, "choices", None)
        if not choices:
            return "", None
        choice = choices[0]
        message = getattr(choice, "message", None)
        content = getattr(message, "content", None)
        text = content if isinstance(content, str) else ""
        return text, getattr(choice, "finish_reason", None)

    async def complete(self, messages: list[ChatMessage]) -> Completion:
        client = self._get_client()
        self._emit({"event": "provider_request", "provider": self.name, "model": self.model})

        def _request() -> Any:
            return client.chat.completions.create(
                model=self.model,
                messages=[message.to_dict() for message in messages],
                temperature=self.temperature,
                max_tokens=self.max_output_tokens,
            )

        try:
            payload = await asyncio.to_thread(_request)
        except openai.APITimeoutError as exc:
            raise ProviderTimeoutError(
                f"OpenAI request timed out after {self.timeout_seconds:.1f}s",
                provider=self.name,
            ) from exc
        except openai.APIStatusError as exc:
            raise ProviderExecutionError(
                f"OpenAI API error {exc.status_code}: {exc.message}",
                provider=self.name,
                status_code=exc.status_code,
                retriable=exc.status_code == 429 or exc.status_code >= 500,
            ) from exc
        except openai.OpenAIError as exc:
            raise ProviderExecutionError(
                f"OpenAI request failed: {exc}", provider=self.name, retriable=True
            ) from exc

        text, finish_reason = self._extract_choice(payload)
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
                "OpenAI returned an empty reply.", provider=self.name, retriable=True
            )
        return Completion(content=text, finish_reason=finish_reason)
