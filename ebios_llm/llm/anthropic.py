"""Anthropic Messages API adapter."""

from typing import Any

from ebios_llm.logging_config import get_logger

from .base import JsonSchema, LLMResponse, TokenUsage
from .errors import ConfigurationError, ProviderError, empty_response_error
from .extract import parse_json_from_text
from .prompting import compile_request, prepare_json_call
from .providers import get_spec
from .transport import Transport

logger = get_logger("anthropic")

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4000


class AnthropicClient:
    """Anthropic LLM provider."""

    provider = "anthropic"
    label = "Anthropic"

    def __init__(
        self,
        model: str,
        transport: Transport,
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        if not api_key:
            raise ConfigurationError(
                "Anthropic API key is not configured. Add it in the provider settings.",
                provider=self.provider,
            )
        self.model = model
        self.api_key = api_key
        self.base_url = (base_url or get_spec(self.provider).default_base_url).rstrip("/")
        self.max_tokens = max_tokens
        self.transport = transport

    async def generate_content(
        self,
        prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonSchema | None = None,
    ) -> LLMResponse:
        """Send one message; the system instruction travels outside the message list."""
        request = compile_request(prompt, system_instruction, response_schema)
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": request.user_prompt}],
            "max_tokens": self.max_tokens,
            "temperature": 0.2,
        }
        if request.system_instruction:
            body["system"] = request.system_instruction

        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        url = f"{self.base_url}/v1/messages"
        logger.debug(f"[Anthropic] POST {url} model={self.model}")

        data = await self.transport.post_json(self.provider, url, headers, body)
        if not isinstance(data, dict) or "content" not in data:
            raise ProviderError(
                f"Anthropic returned a malformed response: {str(data)[:200]}",
                provider=self.provider,
            )

        stop_reason = data.get("stop_reason")
        text = _extract_anthropic_text(data.get("content"))
        if not text.strip():
            raise empty_response_error(self.label, self.provider, stop_reason)

        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens")
        output_tokens = usage.get("output_tokens")
        return LLMResponse(
            text=text,
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=(input_tokens or 0) + (output_tokens or 0),
            ),
            finish_reason=stop_reason,
            raw=data,
        )

    async def generate_json(
        self,
        prompt: str,
        system_instruction: str | None,
        response_schema: JsonSchema | None,
    ) -> Any:
        prompt, system_instruction = prepare_json_call(prompt, system_instruction, response_schema)
        response = await self.generate_content(prompt, system_instruction, response_schema)
        return parse_json_from_text(self.label, response.text)


def _extract_anthropic_text(blocks: Any) -> str:
    """Extract text content from Anthropic response blocks."""
    if not blocks:
        return ""

    text_parts: list[str] = []
    for block in blocks:
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
            text_parts.append(block["text"])

    return "\n".join(text_parts)
