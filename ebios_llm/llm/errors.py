"""Error taxonomy for the LLM invocation layer.

Every error carries a plain-language message naming the provider where one is
known, so callers can surface ``str(error)`` directly.
"""

from __future__ import annotations


class LLMError(Exception):
    """Base class for every failure raised by the invocation layer."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider

    @property
    def user_message(self) -> str:
        """Message suitable for display to an end user."""
        return str(self)


class ConfigurationError(LLMError):
    """Missing API key, base URL, or model. Never retried."""


class AuthenticationError(LLMError):
    """Provider rejected the credentials (HTTP 401/403). Never retried."""

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None):
        super().__init__(message, provider)
        self.status_code = status_code


class RateLimitError(LLMError):
    """Provider throttled the request (HTTP 429). Retryable."""

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = 429):
        super().__init__(message, provider)
        self.status_code = status_code


class TransportError(LLMError):
    """Network failure or timeout before a provider response was read. Retryable."""


class ProxyUnavailableError(TransportError):
    """A CORS-restricted provider needs a proxy that is not running. Never retried."""


class ProviderError(LLMError):
    """Any other non-2xx answer, or a response envelope we cannot read."""

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None):
        super().__init__(message, provider)
        self.status_code = status_code


class EmptyResponseError(LLMError):
    """The provider answered successfully but returned no content."""

    def __init__(self, message: str, provider: str | None = None, finish_reason: str | None = None):
        super().__init__(message, provider)
        self.finish_reason = finish_reason


class MalformedJsonError(LLMError):
    """No JSON value could be recovered from the response text."""

    def __init__(self, message: str, provider: str | None = None, truncated: bool = False):
        super().__init__(message, provider)
        self.truncated = truncated


class ValidationError(LLMError):
    """Parsed JSON fails structural or domain post-conditions."""

    def __init__(self, issues: list[str], provider: str | None = None, message: str | None = None):
        self.issues = list(issues)
        if message is None:
            rendered = "\n  - ".join(self.issues) if self.issues else "unknown issue"
            message = f"Response failed validation:\n  - {rendered}"
        super().__init__(message, provider)


_EMPTY_REASON_HINTS: dict[str, str] = {
    "content_filter": "refused to generate content (content filter). Rephrase the request.",
    "safety": "blocked the response for safety reasons. Rephrase the request.",
    "recitation": "flagged potential recitation. Rephrase the request.",
    "length": "hit the token limit before producing content. Shorten the prompt or raise the token limit.",
    "max_tokens": "hit the token limit before producing content. Shorten the prompt or raise the token limit.",
    "stop": "finished normally but returned empty content. The prompt or JSON schema may be the cause.",
    "end_turn": "finished normally but returned empty content. The prompt or JSON schema may be the cause.",
    "tool_calls": "tried to call tools instead of producing text.",
    "tool_use": "tried to call tools instead of producing text.",
}


def empty_response_error(label: str, provider: str, finish_reason: str | None) -> EmptyResponseError:
    """Build the empty-response error for a provider-stated finish reason."""
    hint = _EMPTY_REASON_HINTS.get((finish_reason or "").lower())
    if hint:
        message = f"{label} {hint} (finish reason: {finish_reason})"
    else:
        message = (
            f"{label} returned an empty response. Reason: {finish_reason or 'unknown'}. "
            "Check the prompt and the model parameters."
        )
    return EmptyResponseError(message, provider=provider, finish_reason=finish_reason)
