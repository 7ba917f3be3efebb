"""Ollama native ``/api/chat`` adapter."""

from typing import Any

from .base import JsonSchema, LLMResponse, TokenUsage
from .errors import ConfigurationError, TransportError, empty_response_error
from .extract import parse_json_from_text
from .prompting import compile_request, prepare_json_call
from .transport import Transport


class OllamaClient:
    """Local Ollama server."""

    provider = "ollama"
    label = "Ollama"

    def __init__(
        self,
        model: str,
        transport: Transport,
        base_url: str | None = None,
        api_key: str | None = None,
        num_predict: int = 4000,
    ):
        if not base_url:
            raise ConfigurationError(
                "Ollama base URL is not configured (for example http://localhost:11434).",
                provider=self.provider,
            )
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.num_predict = num_predict
        self.transport = transport

    async def generate_content(
        self,
        prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonSchema | None = None,
    ) -> LLMResponse:
        request = compile_request(prompt, system_instruction, response_schema)
        messages: list[dict[str, str]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.append({"role": "user", "content": request.user_prompt})

        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": 0.2, "num_predict": self.num_predict},
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            data = await self.transport.post_json(self.provider, f"{self.base_url}/api/chat", headers, body)
        except TransportError as exc:
            raise TransportError(
                f"Ollama: cannot connect to {self.base_url}. Check that Ollama is running and reachable. ({exc})",
                provider=self.provider,
            ) from exc

        if not isinstance(data, dict):
            data = {}
        message = data.get("message") or {}
        text = message.get("content") or ""
        if not text.strip():
            raise empty_response_error(self.label, self.provider, data.get("done_reason"))

        prompt_tokens = data.get("prompt_eval_count")
        completion_tokens = data.get("eval_count")
        return LLMResponse(
            text=text,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=(prompt_tokens or 0) + (completion_tokens or 0),
            ),
            finish_reason=data.get("done_reason"),
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
