from timeturn.providers.anthropic import AnthropicProvider
from timeturn.providers.base import (
    ChatMessage,
    ChatProvider,
    ChatResult,
    Completion,
    ProviderConfigError,
    ProviderExecutionError,
    ProviderTimeoutError,
)
from timeturn.providers.gemini import GeminiProvider
from timeturn.providers.openai_provider import OpenAIProvider
from timeturn.providers.resilient import ResilientProvider, RetryPolicy

__all__ = [
    "AnthropicProvider",
    "ChatMessage",
    "ChatProvider",
    "ChatResult",
    "Completion",
    "GeminiProvider",
    "OpenAIProvider",
    "ProviderConfigError",
    "ProviderExecutionError",
    "ProviderTimeoutError",
    "ResilientProvider",
    "RetryPolicy",
]
