"""LLM provider factory and shared exports."""

import asyncio

from .base import LLMClient, LLMRequest, LLMResponse, TokenUsage
from .errors import (
    AuthenticationError,
    ConfigurationError,
    EmptyResponseError,
    LLMError,
    MalformedJsonError,
    ProviderError,
    ProxyUnavailableError,
    RateLimitError,
    TransportError,
    ValidationError,
)
from .providers import PROVIDER_DEFAULTS, PROVIDERS, ProviderId
from .retry import RetryClient, RetryPolicy, Sleep
from .transport import Environment, Transport

OPENAI_COMPATIBLE = ("openai", "mistral", "deepseek", "qwen", "xai", "groq", "lmstudio")


def create_client(
    provider: ProviderId,
    model: str | None = None,
    api_key: str | None = None,
    base_url: str | None = None,
    *,
    transport: Transport,
    retry_policy: RetryPolicy | None = None,
    sleep: Sleep = asyncio.sleep,
) -> RetryClient:
    """Create an LLM client for the given provider, wrapped with retry logic.

    The caller owns ``transport`` and closes it when done with the client.
    """
    if provider not in PROVIDERS:
        raise ConfigurationError(
            f"Unknown LLM provider: {provider}. Supported: {', '.join(PROVIDERS)}",
            provider=provider,
        )

    resolved_model = model or PROVIDER_DEFAULTS[provider]

    match provider:
        case "gemini":
            from .gemini import GeminiClient

            inner = GeminiClient(
                model=resolved_model, transport=transport, api_key=api_key, base_url=base_url
            )
        case "anthropic":
            from .anthropic import AnthropicClient

            inner = AnthropicClient(
                model=resolved_model, transport=transport, api_key=api_key, base_url=base_url
            )
        case "ollama":
            from .ollama import OllamaClient

            inner = OllamaClient(
                model=resolved_model,
                transport=transport,
                base_url=base_url,
                api_key=api_key,
            )
        case _ if provider in OPENAI_COMPATIBLE:
            from .openai import OpenAICompatibleClient

            inner = OpenAICompatibleClient(
                provider=provider,
                model=resolved_model,
                transport=transport,
                api_key=api_key,
                base_url=base_url,
            )
        case _:
            raise LLMError(f"No adapter registered for provider: {provider}", provider=provider)

    return RetryClient(inner, policy=retry_policy, sleep=sleep)


__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "EmptyResponseError",
    "Environment",
    "LLMClient",
    "LLMError",
    "LLMRequest",
    "LLMResponse",
    "MalformedJsonError",
    "OPENAI_COMPATIBLE",
    "PROVIDER_DEFAULTS",
    "ProviderError",
    "ProviderId",
    "ProxyUnavailableError",
    "RateLimitError",
    "RetryClient",
    "RetryPolicy",
    "TokenUsage",
    "Transport",
    "TransportError",
    "ValidationError",
    "create_client",
]
