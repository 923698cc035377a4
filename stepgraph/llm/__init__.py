"""LLM - completion providers with timeout and retry policy."""

from stepgraph.llm.provider import (
    CompletionMetadata,
    CompletionOptions,
    CompletionResult,
    LLMErrorCode,
    LLMProvider,
    LLMProviderError,
)
from stepgraph.llm.errors import (
    MAX_LLM_TIMEOUT_MS,
    map_provider_error,
    sanitize_timeout,
    with_retry,
    with_timeout,
)
from stepgraph.llm.providers import (
    AnthropicProvider,
    OpenAIProvider,
    create_provider,
    resolve_provider_name,
)

__all__ = [
    "AnthropicProvider",
    "CompletionMetadata",
    "CompletionOptions",
    "CompletionResult",
    "LLMErrorCode",
    "LLMProvider",
    "LLMProviderError",
    "MAX_LLM_TIMEOUT_MS",
    "OpenAIProvider",
    "create_provider",
    "map_provider_error",
    "resolve_provider_name",
    "sanitize_timeout",
    "with_retry",
    "with_timeout",
]
