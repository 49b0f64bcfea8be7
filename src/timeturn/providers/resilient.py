from __future__ import annotations

import asyncio
from dataclasses import dataclass

from timeturn.providers.base import (
    ChatMessage,
    ChatProvider,
    Completion,
    ProviderEventHook,
    ProviderExecutionError,
    ProviderTimeoutError,
)


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 0
    backoff_seconds: float = 0.5
    timeout_seconds: float = 60.0


class ResilientProvider(ChatProvider):
    """Wraps primary/fallback providers with timeout, retry, and failover."""

    def __init__(
        self,
        primary_name: str,
        primary_provider: ChatProvider,
        fallback_name: str,
        fallback_provider: ChatProvider,
        retry_policy: RetryPolicy | None = None,
        event_hook: ProviderEventHook | None = None,
    ) -> None:
        super().__init__(event_hook)
        self.name = primary_name
        self.primary_name = primary_name
        self.primary_provider = primary_provider
        self.fallback_name = fallback_name
        self.fallback_provider = fallback_provider
        self.retry_policy = retry_policy or RetryPolicy()

    async def _attempt(self, provider: ChatProvider, messages: list[ChatMessage]) -> Completion:
        try:
            return await asyncio.wait_for(
                provider.complete(messages), timeout=self.retry_policy.timeout_seconds
            )
        except TimeoutError as exc:
            raise ProviderTimeoutError(
                f"Provider request timed out after {self.retry_policy.timeout_seconds:.1f}s",
                retriable=True,
            ) from exc

    async def complete(self, messages: list[ChatMessage]) -> Completion:
        attempts: list[tuple[str, ChatProvider]] = [(self.primary_name, self.primary_provider)]
        if self.fallback_name != self.primary_name:
            attempts.append((self.fallback_name, self.fallback_provider))

        errors: list[str] = []
        last_error: ProviderExecutionError | None = None
        for index, (provider_name, provider) in enumerate(attempts):
            if index > 0:
                self._emit(
                    {
                        "event": "provider_failover_start",
                        "provider": provider_name,
                        "previous": attempts[index - 1][0],
                    }
                )
            for attempt in range(self.retry_policy.max_retries + 1):
                if attempt > 0:
                    delay = self.retry_policy.backoff_seconds * (2 ** (attempt - 1))
                    self._emit(
                        {
                            "event": "provider_retry",
                            "provider": provider_name,
                            "attempt": attempt,
                            "delay_seconds": delay,
                        }
                    )
                    await asyncio.sleep(delay)
                try:
                    completion = await self._attempt(provider, messages)
                    if provider_name != self.primary_name:
                        self._emit(
                            {
                                "event": "provider_fallback_success",
                                "provider": provider_name,
                                "attempt": attempt,
                            }
                        )
                    completion.provider = completion.provider or provider_name
                    return completion
                except ProviderExecutionError as exc:
                    last_error = exc
                    errors.append(f"{provider_name}[{attempt}]: {exc}")
                    self._emit(
                        {
                            "event": "provider_attempt_failed",
                            "provider": provider_name,
                            "attempt": attempt,
                            "error": str(exc),
                            "retriable": exc.retriable,
                        }
                    )
                    if not exc.retriable:
                        break
                except Exception as exc:
                    last_error = ProviderExecutionError(
                        f"Unexpected {provider_name} error: {exc}", provider=provider_name
                    )
                    errors.append(f"{provider_name}[{attempt}]: {exc}")
                    self._emit(
                        {
                            "event": "provider_attempt_failed",
                            "provider": provider_name,
                            "attempt": attempt,
                            "error": str(exc),
                            "retriable": True,
                        }
                    )

        if len(errors) == 1 and last_error is not None:
            message = str(last_error)
        else:
            message = "All provider attempts failed. " + "; ".join(errors[-6:])
        raise ProviderExecutionError(message, provider=self.primary_name, retriable=False)

