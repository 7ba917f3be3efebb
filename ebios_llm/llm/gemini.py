"""Google Gemini adapter for the ``generateContent`` REST endpoint."""

import json
from typing import Any

from ebios_llm.logging_config import get_logger

from .base import JsonSchema, LLMResponse, TokenUsage
from .errors import (
    ConfigurationError,
    EmptyResponseError,
    MalformedJsonError,
    ProviderError,
    empty_response_error,
)
from .extract import parse_json_from_text
from .prompting import build_json_system_instruction, build_json_user_prompt, prepare_json_call
from .providers import get_spec
from .transport import Transport

logger = get_logger("gemini")

# Schema keywords the Gemini response schema subset rejects.
_UNSUPPORTED_SCHEMA_KEYS = ("description", "examples", "default", "$schema", "additionalProperties")
_BLOCKING_FINISH_REASONS = ("SAFETY", "RECITATION")
_ACCEPTED_FINISH_REASONS = ("STOP", "MAX_TOKENS")


def simplify_schema(schema: Any) -> Any:
    """Recursively drop schema keywords that Gemini does not accept."""
    if not isinstance(schema, dict):
        return schema

    simplified = {key: value for key, value in schema.items() if key not in _UNSUPPORTED_SCHEMA_KEYS}

    if isinstance(simplified.get("properties"), dict):
        simplified["properties"] = {
            name: simplify_schema(value) for name, value in simplified["properties"].items()
        }
    if "items" in simplified:
        simplified["items"] = simplify_schema(simplified["items"])
    for combinator in ("oneOf", "anyOf", "allOf"):
        if isinstance(simplified.get(combinator), list):
            simplified[combinator] = [simplify_schema(item) for item in simplified[combinator]]

    return simplified


class GeminiClient:
    """Google Gemini LLM provider."""

    provider = "gemini"
    label = "Gemini"

    def __init__(
        self,
        model: str,
        transport: Transport,
        api_key: str | None = None,
        base_url: str | None = None,
        max_output_tokens: int = 32000,
    ):
        if not api_key:
            raise ConfigurationError(
                "Gemini API key is not configured. Add it in the provider settings.",
                provider=self.provider,
            )
        # ``-latest`` aliases are no longer served.
        self.model = model.replace("-latest", "")
        self.api_key = api_key
        self.base_url = (base_url or get_spec(self.provider).default_base_url).rstrip("/")
        self.max_output_tokens = max_output_tokens
        self.transport = transport

    def build_request_body(
        self,
        prompt: str,
        system_instruction: str | None,
        response_schema: JsonSchema | None,
    ) -> dict[str, Any]:
        user_prompt = build_json_user_prompt(prompt) if response_schema else prompt
        system = build_json_system_instruction(system_instruction, response_schema)

        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "temperature": 0.2,
                "maxOutputTokens": self.max_output_tokens,
                "topP": 0.8,
                "topK": 40,
            },
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if response_schema:
            body["generationConfig"]["responseMimeType"] = "application/json"
            body["generationConfig"]["responseSchema"] = simplify_schema(response_schema)
        return body

    async def generate_content(
        self,
        prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonSchema | None = None,
    ) -> LLMResponse:
        """Call ``generateContent`` and return the first candidate's text."""
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        body = self.build_request_body(prompt, system_instruction, response_schema)
        logger.debug(f"[Gemini] POST {url} prompt_chars={len(prompt)}")

        data = await self.transport.post_json(self.provider, url, headers, body)
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason") if isinstance(data, dict) else None
            if block_reason:
                raise empty_response_error(self.label, self.provider, "SAFETY")
            raise EmptyResponseError(
                "Gemini returned no response candidate. Check the request and your API quota.",
                provider=self.provider,
            )

        candidate = candidates[0] or {}
        finish_reason = candidate.get("finishReason")
        if finish_reason in _BLOCKING_FINISH_REASONS:
            raise empty_response_error(self.label, self.provider, finish_reason)
        if finish_reason and finish_reason not in _ACCEPTED_FINISH_REASONS:
            raise ProviderError(
                f"Gemini finished with unexpected status {finish_reason}. Check the request parameters.",
                provider=self.provider,
            )
        if finish_reason == "MAX_TOKENS":
            logger.warning("Gemini response hit the token limit and may be truncated")

        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise empty_response_error(self.label, self.provider, finish_reason)

        usage = data.get("usageMetadata") or {}
        return LLMResponse(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.get("promptTokenCount"),
                completion_tokens=usage.get("candidatesTokenCount"),
                total_tokens=usage.get("totalTokenCount"),
            ),
            finish_reason=finish_reason,
            raw=data,
        )

    async def generate_json(
        self,
        prompt: str,
        system_instruction: str | None,
        response_schema: JsonSchema | None,
    ) -> Any:
        """Generate with the native schema, falling back once to a textual schema."""
        call_prompt, call_system = prepare_json_call(prompt, system_instruction, response_schema)
        try:
            response = await self.generate_content(call_prompt, call_system, response_schema)
            return parse_json_from_text(self.label, response.text)
        except (EmptyResponseError, MalformedJsonError) as exc:
            if not response_schema:
                raise
            logger.warning(f"Gemini structured output failed, retrying without native schema: {exc}")
            original_error = exc

        fallback_system = (
            f"{system_instruction or ''}\n\n"
            "IMPORTANT: You MUST answer only with a JSON value that matches exactly this structure:\n"
            f"{json.dumps(response_schema, indent=2, ensure_ascii=False)}\n\n"
            "Do not add any text before or after the JSON."
        ).strip()
        fallback_prompt, fallback_system = prepare_json_call(prompt, fallback_system, None)
        try:
            response = await self.generate_content(fallback_prompt, fallback_system)
            return parse_json_from_text(self.label, response.text)
        except (EmptyResponseError, MalformedJsonError) as fallback_error:
            logger.error(f"Gemini fallback without native schema also failed: {fallback_error}")
            raise original_error from fallback_error
