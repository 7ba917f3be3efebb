"""Provider-agnostic LLM interface and shared types."""

from dataclasses import dataclass, field
from typing import Any, Protocol

JsonSchema = dict[str, Any]


@dataclass(frozen=True)
class LLMRequest:
    """A single generation request, immutable for the duration of a call."""

    user_prompt: str
    system_instruction: str | None = None
    response_schema: JsonSchema | None = None


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting reported by the provider, when available."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass
class LLMResponse:
    """Raw provider output before any JSON extraction."""

    text: str
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


class LLMClient(Protocol):
    """Protocol that all LLM providers must implement."""

    provider: str
    model: str

    async def generate_content(
        self,
        prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonSchema | None = None,
    ) -> LLMResponse:
        """Send one request and return the raw text response."""
        ...

    async def generate_json(
        self,
        prompt: str,
        system_instruction: str | None,
        response_schema: JsonSchema | None,
    ) -> Any:
        """Generate content and recover a JSON value from it."""
        ...
