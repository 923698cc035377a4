"""
Completion provider interface.

Providers turn a prompt into a completion and report failures as
:class:`LLMProviderError` with one of a fixed set of codes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from stepgraph.errors import StepGraphError


class LLMErrorCode(str, Enum):
    PROVIDER_ERROR = "PROVIDER_ERROR"
    SDK_TIMEOUT = "SDK_TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    SDK_INITIALIZATION_FAILED = "SDK_INITIALIZATION_FAILED"
    MODEL_NOT_AVAILABLE = "MODEL_NOT_AVAILABLE"


class LLMProviderError(StepGraphError):
    """A completion call failed; ``code`` is one of :class:`LLMErrorCode`."""

    code = LLMErrorCode.PROVIDER_ERROR.value

    def __init__(
        self,
        code: LLMErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=LLMErrorCode(code).value, details=details)
        self.error_code = LLMErrorCode(code)


@dataclass
class CompletionOptions:
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    timeout_ms: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CompletionMetadata:
    provider: str
    model: str
    tokens_used: int = 0
    response_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "tokensUsed": self.tokens_used,
            "responseTime": self.response_time,
        }


@dataclass
class CompletionResult:
    completion: str
    metadata: CompletionMetadata


class LLMProvider(ABC):
    """Abstract base for completion providers."""

    name: str = "llm"

    @abstractmethod
    def generate_completion(self, prompt: str, options: CompletionOptions) -> CompletionResult:
        """
        Complete ``prompt``.

        Raises:
            LLMProviderError: on any provider failure.
        """
        pass
