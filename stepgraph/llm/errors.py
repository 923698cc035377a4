"""
Timeout and retry policy for completion calls.

Timeouts cancel the in-flight call through a ``threading.Event`` and
raise ``SDK_TIMEOUT``. Retries back off exponentially and only cover
the retriable codes; everything else fails on first occurrence.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional, TypeVar

from stepgraph.llm.provider import LLMErrorCode, LLMProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_LLM_TIMEOUT_MS = 3 * 60 * 1000
MIN_RETRY_DELAY_MS = 500

RETRIABLE_CODES = frozenset(
    {LLMErrorCode.PROVIDER_ERROR, LLMErrorCode.SDK_TIMEOUT, LLMErrorCode.INVALID_RESPONSE}
)


def sanitize_timeout(timeout_ms: Optional[float] = None) -> float:
    """Validate a timeout budget; None means the maximum window."""
    if timeout_ms is None or timeout_ms != timeout_ms:
        return MAX_LLM_TIMEOUT_MS
    if timeout_ms <= 0:
        raise LLMProviderError(
            LLMErrorCode.SDK_TIMEOUT, f"Timeout must be greater than 0ms, received {timeout_ms}"
        )
    if timeout_ms > MAX_LLM_TIMEOUT_MS:
        raise LLMProviderError(
            LLMErrorCode.SDK_TIMEOUT,
            f"Timeout {timeout_ms}ms exceeds the maximum allowed {MAX_LLM_TIMEOUT_MS}ms window",
        )
    return timeout_ms


def with_timeout(
    operation: Callable[[threading.Event], T],
    timeout_ms: Optional[float],
    provider: str,
    context: str = "LLM request",
) -> T:
    """
    Run ``operation(cancel_event)`` with a time budget.

    When the budget expires the event is set so the operation can stop,
    and ``SDK_TIMEOUT`` is raised without waiting for it.
    """
    budget = sanitize_timeout(timeout_ms)
    cancel = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"llm-{provider}")
    future = executor.submit(operation, cancel)
    try:
        return future.result(timeout=budget / 1000)
    except FutureTimeoutError as e:
        cancel.set()
        future.cancel()
        raise LLMProviderError(
            LLMErrorCode.SDK_TIMEOUT,
            f"{context} exceeded {budget}ms for provider {provider}",
            details={"provider": provider, "timeoutMs": budget},
        ) from e
    finally:
        executor.shutdown(wait=False)


def map_provider_error(
    provider: str,
    error: BaseException,
    fallback_code: LLMErrorCode = LLMErrorCode.PROVIDER_ERROR,
) -> LLMProviderError:
    """Coerce any exception into an :class:`LLMProviderError`."""
    if isinstance(error, LLMProviderError):
        return error

    code = fallback_code
    candidate = getattr(error, "code", None)
    if isinstance(candidate, str) and candidate in LLMErrorCode.__members__:
        code = LLMErrorCode(candidate)

    mapped = LLMProviderError(code, str(error) or "Unknown LLM provider error", details={"provider": provider})
    mapped.__cause__ = error
    return mapped


def with_retry(
    operation: Callable[[], T],
    provider: str,
    max_attempts: int = 3,
    initial_delay_ms: float = 2000,
    on_retry: Optional[Callable[[int, LLMProviderError], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``operation`` until it succeeds or a non-retriable error occurs.

    Args:
        operation: Zero-argument callable performing the request.
        provider: Provider name for error details.
        max_attempts: Total attempts, at least one.
        initial_delay_ms: First backoff delay, doubled after each retry.
        on_retry: Called with (attempt, error) before each backoff.
        sleep: Sleep function taking seconds.
    """
    attempts = max(1, max_attempts)
    delay_ms = max(MIN_RETRY_DELAY_MS, initial_delay_ms)

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as e:
            mapped = map_provider_error(provider, e)
            if mapped.error_code not in RETRIABLE_CODES or attempt >= attempts:
                if mapped is e:
                    raise
                raise mapped from e
            logger.warning(
                f"[LLM] {provider} attempt {attempt}/{attempts} failed ({mapped.code}); "
                f"retrying in {delay_ms}ms"
            )
            if on_retry:
                on_retry(attempt, mapped)
            sleep(delay_ms / 1000)
            delay_ms *= 2

    raise LLMProviderError(
        LLMErrorCode.PROVIDER_ERROR,
        "LLM retry attempts exhausted",
        details={"provider": provider, "attempts": attempts},
    )
