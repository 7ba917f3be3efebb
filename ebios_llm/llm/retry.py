"""Retry with exponential backoff around a single provider call.

Only rate limits and transport failures are retried. Authentication and
configuration failures can never succeed on a second try, and anything
unrecognized fails fast so programming errors are not masked as transient.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from ebios_llm.logging_config import get_logger

from .base import JsonSchema, LLMClient, LLMResponse
from .errors import (
    AuthenticationError,
    ConfigurationError,
    LLMError,
    ProxyUnavailableError,
    RateLimitError,
    TransportError,
)
from .providers import provider_label

logger = get_logger("retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]

_FATAL_HINTS = re.compile(r"\b(401|403)\b|api key|cors", re.IGNORECASE)
_RETRYABLE_HINTS = re.compile(r"\b429\b|\brate\b|rate[\s_-]?limit|timeout|timed out|network", re.IGNORECASE)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings supplied per call site."""

    max_attempts: int = 3
    initial_delay_ms: float = 1000
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms cannot be negative")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the zero-based ``attempt`` failed."""
        return self.initial_delay_ms * self.backoff_factor**attempt / 1000


class ErrorKind(str, Enum):
    """How the retry controller treats a failure."""

    FATAL = "fatal"
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


def classify_error(error: BaseException) -> ErrorKind:
    """Classify by error type, falling back to message hints for foreign exceptions."""
    if isinstance(error, (ConfigurationError, AuthenticationError, ProxyUnavailableError)):
        return ErrorKind.FATAL
    if isinstance(error, (RateLimitError, TransportError)):
        return ErrorKind.RETRYABLE
    if isinstance(error, LLMError):
        return ErrorKind.NON_RETRYABLE

    if isinstance(error, (TimeoutError, ConnectionError)):
        return ErrorKind.RETRYABLE

    message = str(error)
    if _FATAL_HINTS.search(message):
        return ErrorKind.FATAL
    if _RETRYABLE_HINTS.search(message):
        return ErrorKind.RETRYABLE
    return ErrorKind.NON_RETRYABLE


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    provider: str = "",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Await ``fn`` up to ``policy.max_attempts`` times, backing off between retryable failures."""
    label = provider_label(provider) if provider else "LLM"

    for attempt in range(policy.max_attempts):
        try:
            return await fn()
        except Exception as exc:
            kind = classify_error(exc)
            if kind is not ErrorKind.RETRYABLE:
                raise
            if attempt == policy.max_attempts - 1:
                logger.error(f"[{label}] Attempt {attempt + 1}/{policy.max_attempts} failed, giving up: {exc}")
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"[{label}] Attempt {attempt + 1}/{policy.max_attempts} failed ({exc}). "
                f"Retrying in {delay:.1f}s"
            )
            await sleep(delay)

    raise AssertionError("unreachable: retry loop exited without returning or raising")


class RetryClient:
    """Wraps an LLM client so every call goes through the retry controller."""

    def __init__(
        self,
        inner: LLMClient,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.inner = inner
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def provider(self) -> str:
        return self.inner.provider

    @property
    def model(self) -> str:
        return self.inner.model

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    async def generate_content(
        self,
        prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonSchema | None = None,
    ) -> LLMResponse:
        return await call_with_retry(
            lambda: self.inner.generate_content(prompt, system_instruction, response_schema),
            self.policy,
            provider=self.provider,
            sleep=self._sleep,
        )

    async def generate_json(
        self,
        prompt: str,
        system_instruction: str | None,
        response_schema: JsonSchema | None,
    ) -> Any:
        return await call_with_retry(
            lambda: self.inner.generate_json(prompt, system_instruction, response_schema),
            self.policy,
            provider=self.provider,
            sleep=self._sleep,
        )
