"""OpenAI-compatible chat completions adapter.

Serves every provider that speaks the ``/chat/completions`` message-array
envelope: OpenAI, Mistral, DeepSeek, Qwen, xAI, Groq and LM Studio.
"""

from typing import Any

from ebios_llm.logging_config import get_logger

from .base import JsonSchema, LLMResponse, TokenUsage
from .errors import AuthenticationError, ConfigurationError, ProviderError, empty_response_error
from .extract import parse_json_from_text
from .prompting import compile_request, prepare_json_call
from .providers import get_spec
from .transport import Transport

logger = get_logger("openai")

DEFAULT_MAX_TOKENS = 16000
DEFAULT_TEMPERATURE = 0.2

# Model-name fragments that take ``max_completion_tokens`` instead of ``max_tokens``.
_COMPLETION_TOKEN_MODELS = ("gpt-5", "gpt-4o", "gpt-o3", "o1-")
# Model-name fragments that only accept ``temperature = 1``.
_FIXED_TEMPERATURE_MODELS = ("gpt-5", "o1-")
# Parameters gpt-5 rejects.
_GPT5_UNSUPPORTED = ("max_tokens", "response_format", "top_p", "frequency_penalty", "presence_penalty")


def token_limit_field(model: str) -> str:
    """Name of the output token limit field the model accepts."""
    if any(fragment in model for fragment in _COMPLETION_TOKEN_MODELS):
        return "max_completion_tokens"
    return "max_tokens"


def temperature_for(model: str) -> float:
    if any(fragment in model for fragment in _FIXED_TEMPERATURE_MODELS):
        return 1
    return DEFAULT_TEMPERATURE


def supports_native_json(provider: str, model: str) -> bool:
    """Whether ``response_format: json_object`` can be sent for this model."""
    return provider == "openai" and "o1-" not in model and "gpt-5" not in model


def chat_completions_url(provider: str, base_url: str) -> str:
    base = base_url.rstrip("/")
    if provider == "qwen":
        if base.endswith("/compatible-mode/v1"):
            return f"{base}/chat/completions"
        return f"{base}/compatible-mode/v1/chat/completions"
    return f"{base}/v1/chat/completions"


def build_request_body(
    provider: str,
    model: str,
    messages: list[dict[str, str]],
    response_schema: JsonSchema | None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> dict[str, Any]:
    """Provider-native body with model-family quirks normalized."""
    body: dict[str, Any] = {"model": model, "messages": messages}
    if provider != "openai":
        body["stream"] = False

    if "gpt-5" in model:
        body["temperature"] = 1
        body["max_completion_tokens"] = max_tokens
        body["reasoning_effort"] = "medium"
        body["verbosity"] = "medium"
        for key in _GPT5_UNSUPPORTED:
            body.pop(key, None)
        return body

    body["temperature"] = temperature_for(model)
    body[token_limit_field(model)] = max_tokens
    if response_schema and supports_native_json(provider, model):
        body["response_format"] = {"type": "json_object"}
    return body


class OpenAICompatibleClient:
    """Chat completions adapter for the OpenAI-compatible provider family."""

    def __init__(
        self,
        provider: str,
        model: str,
        transport: Transport,
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        spec = get_spec(provider)
        self.provider = provider
        self.label = spec.label
        self.model = model
        self.api_key = api_key
        # Local servers have no usable default; their address must be configured.
        self.base_url = base_url or (None if spec.is_local else spec.default_base_url)
        self.max_tokens = max_tokens
        self.transport = transport

        if spec.requires_api_key and not api_key:
            raise ConfigurationError(
                f"{self.label} API key is not configured. Add it in the provider settings.",
                provider=provider,
            )
        if not self.base_url:
            raise ConfigurationError(f"{self.label} base URL is not configured.", provider=provider)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate_content(
        self,
        prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonSchema | None = None,
    ) -> LLMResponse:
        """Send one chat completion and return its text."""
        request = compile_request(prompt, system_instruction, response_schema)
        messages: list[dict[str, str]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.append({"role": "user", "content": request.user_prompt})

        body = build_request_body(self.provider, self.model, messages, request.response_schema, self.max_tokens)
        url = chat_completions_url(self.provider, self.base_url)
        logger.debug(f"[{self.label}] POST {url} model={self.model} prompt_chars={len(request.user_prompt)}")

        try:
            data = await self.transport.post_json(self.provider, url, self._headers(), body)
        except AuthenticationError as exc:
            raise self._explain_auth_error(exc) from exc

        return self._parse_response(data)

    async def generate_json(
        self,
        prompt: str,
        system_instruction: str | None,
        response_schema: JsonSchema | None,
    ) -> Any:
        prompt, system_instruction = prepare_json_call(prompt, system_instruction, response_schema)
        response = await self.generate_content(prompt, system_instruction, response_schema)
        return parse_json_from_text(self.label, response.text)

    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices, list):
            raise ProviderError(
                f"{self.label} returned a malformed response without choices: {str(data)[:200]}",
                provider=self.provider,
            )

        choice = choices[0] or {}
        finish_reason = choice.get("finish_reason")
        text = _extract_openai_text(choice.get("message"))
        if not text.strip():
            raise empty_response_error(self.label, self.provider, finish_reason)

        usage = data.get("usage") or {}
        return LLMResponse(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens"),
                completion_tokens=usage.get("completion_tokens"),
                total_tokens=usage.get("total_tokens"),
            ),
            finish_reason=finish_reason,
            raw=data,
        )

    def _explain_auth_error(self, exc: AuthenticationError) -> AuthenticationError:
        """Qwen reports model access problems as 403s; point at models that usually work."""
        message = str(exc)
        if self.provider == "qwen" and exc.status_code == 403:
            if "Model.AccessDenied" in message:
                message = (
                    f"Qwen: model {self.model} is not accessible with your API key. "
                    "Try 'qwen-turbo' or 'qwen-plus', which are usually available."
                )
            elif "AccessDenied.Unpurchased" in message:
                message = (
                    f"Qwen: your account has no access to model {self.model}. "
                    "Enable it in DashScope or use 'qwen-turbo'."
                )
        return AuthenticationError(message, provider=self.provider, status_code=exc.status_code)


def _extract_openai_text(message: Any) -> str:
    """Extract text content from a chat completion message."""
    if not isinstance(message, dict):
        return ""

    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        text_parts: list[str] = []
        for part in content:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                text_parts.append(part["text"])
            elif isinstance(part, str):
                text_parts.append(part)
        return "\n".join(text_parts)

    return str(content)
