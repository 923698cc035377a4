"""
Completion providers backed by the OpenAI and Anthropic SDKs.

Requires OPENAI_API_KEY or ANTHROPIC_API_KEY environment variables
unless a client is injected.
"""

import logging
import os
import threading
import time
from typing import Any, Optional

from stepgraph.llm.errors import map_provider_error, sanitize_timeout, with_timeout
from stepgraph.llm.provider import (
    CompletionMetadata,
    CompletionOptions,
    CompletionResult,
    LLMErrorCode,
    LLMProvider,
    LLMProviderError,
)

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "anthropic")

DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 4000


class SDKProvider(LLMProvider):
    """Shared request flow: lazy client, timeout budget, error mapping."""

    default_model = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        default_temperature: float = DEFAULT_TEMPERATURE,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        client: Any = None,
    ):
        self.api_key = api_key
        self.default_model = default_model or self.default_model
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                self._client = self._create_client()
            except Exception as e:
                raise map_provider_error(self.name, e, LLMErrorCode.SDK_INITIALIZATION_FAILED) from e
            logger.info(f"[LLM] Initialized {self.name} client ({self.default_model})")
        return self._client

    def _create_client(self) -> Any:
        raise NotImplementedError

    def _invoke(self, model: str, prompt: str, temperature: float, max_tokens: int, timeout_s: float) -> Any:
        raise NotImplementedError

    def _normalize(self, response: Any) -> CompletionResult:
        raise NotImplementedError

    def generate_completion(self, prompt: str, options: CompletionOptions) -> CompletionResult:
        timeout_ms = sanitize_timeout(options.timeout_ms)
        model = options.model or self.default_model
        temperature = options.temperature if options.temperature is not None else self.default_temperature
        max_tokens = options.max_tokens or self.default_max_tokens
        client = self.client
        started = time.monotonic()

        def request(cancel: threading.Event) -> Any:
            response = self._invoke(model, prompt, temperature, max_tokens, timeout_ms / 1000)
            if cancel.is_set():
                return None
            return response

        try:
            response = with_timeout(request, timeout_ms, self.name, f"{self.name}.generate_completion")
            result = self._normalize(response)
        except LLMProviderError:
            raise
        except Exception as e:
            raise map_provider_error(self.name, e) from e

        result.metadata.model = model
        if not result.metadata.response_time:
            result.metadata.response_time = round((time.monotonic() - started) * 1000, 1)
        logger.debug(
            f"[LLM] {self.name} completion: {result.metadata.tokens_used} tokens "
            f"in {result.metadata.response_time}ms (client {type(client).__name__})"
        )
        return result


class OpenAIProvider(SDKProvider):
    name = "openai"
    default_model = "gpt-4-turbo-preview"

    def _create_client(self) -> Any:
        from openai import OpenAI

        return OpenAI(api_key=self.api_key or os.environ.get("OPENAI_API_KEY"))

    def _invoke(self, model: str, prompt: str, temperature: float, max_tokens: int, timeout_s: float) -> Any:
        return self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout_s,
        )

    def _normalize(self, response: Any) -> CompletionResult:
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            content = None
        if not content:
            raise LLMProviderError(LLMErrorCode.INVALID_RESPONSE, "OpenAI response did not include completion text")
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", 0) or 0
        return CompletionResult(
            completion=content,
            metadata=CompletionMetadata(provider=self.name, model="", tokens_used=tokens),
        )


class AnthropicProvider(SDKProvider):
    name = "anthropic"
    default_model = "claude-3-opus-20240229"

    def _create_client(self) -> Any:
        from anthropic import Anthropic

        return Anthropic(api_key=self.api_key or os.environ.get("ANTHROPIC_API_KEY"))

    def _invoke(self, model: str, prompt: str, temperature: float, max_tokens: int, timeout_s: float) -> Any:
        return self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
            timeout=timeout_s,
        )

    def _normalize(self, response: Any) -> CompletionResult:
        blocks = getattr(response, "content", None) or []
        text = "".join(getattr(block, "text", "") for block in blocks)
        if not text:
            raise LLMProviderError(LLMErrorCode.INVALID_RESPONSE, "Anthropic response did not include completion text")
        usage = getattr(response, "usage", None)
        tokens = (getattr(usage, "input_tokens", 0) or 0) + (getattr(usage, "output_tokens", 0) or 0)
        return CompletionResult(
            completion=text,
            metadata=CompletionMetadata(provider=self.name, model="", tokens_used=tokens),
        )


def resolve_provider_name(name: Optional[str] = None) -> str:
    """
    Pick a provider: explicit name, then LLM_PROVIDER, then whichever API
    key is present ("auto").
    """
    candidate = (name or os.environ.get("LLM_PROVIDER") or "auto").lower()
    if candidate == "auto":
        if os.environ.get("OPENAI_API_KEY"):
            return "openai"
        if os.environ.get("ANTHROPIC_API_KEY"):
            return "anthropic"
        raise LLMProviderError(
            LLMErrorCode.SDK_INITIALIZATION_FAILED,
            "No API keys found. Set OPENAI_API_KEY or ANTHROPIC_API_KEY.",
        )
    if candidate not in SUPPORTED_PROVIDERS:
        raise LLMProviderError(
            LLMErrorCode.MODEL_NOT_AVAILABLE,
            f'Unsupported LLM provider "{candidate}"',
            details={"supported": list(SUPPORTED_PROVIDERS)},
        )
    return candidate


def create_provider(name: Optional[str] = None, **config: Any) -> LLMProvider:
    provider_name = resolve_provider_name(name)
    if provider_name == "openai":
        return OpenAIProvider(**config)
    return AnthropicProvider(**config)
