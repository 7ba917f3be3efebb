"""Static facts about each supported provider."""

from dataclasses import dataclass
from typing import Literal

ProviderId = Literal[
    "gemini",
    "openai",
    "mistral",
    "anthropic",
    "deepseek",
    "qwen",
    "xai",
    "groq",
    "ollama",
    "lmstudio",
]


@dataclass(frozen=True)
class ProviderSpec:
    """Defaults and capabilities for one provider."""

    id: str
    label: str
    default_model: str
    default_base_url: str
    requires_api_key: bool = True
    # Origin rejects browser requests (no permissive CORS headers).
    cors_restricted: bool = False

    @property
    def is_local(self) -> bool:
        return not self.requires_api_key


PROVIDERS: dict[str, ProviderSpec] = {
    spec.id: spec
    for spec in (
        ProviderSpec("gemini", "Gemini", "gemini-2.5-flash", "https://generativelanguage.googleapis.com"),
        ProviderSpec("openai", "OpenAI", "gpt-4o", "https://api.openai.com", cors_restricted=True),
        ProviderSpec("mistral", "Mistral", "mistral-large-2407", "https://api.mistral.ai", cors_restricted=True),
        ProviderSpec(
            "anthropic",
            "Anthropic",
            "claude-sonnet-4-20250514",
            "https://api.anthropic.com",
            cors_restricted=True,
        ),
        ProviderSpec("deepseek", "DeepSeek", "deepseek-chat", "https://api.deepseek.com", cors_restricted=True),
        ProviderSpec(
            "qwen",
            "Qwen",
            "qwen-max",
            "https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
            cors_restricted=True,
        ),
        ProviderSpec("xai", "xAI", "grok-2-latest", "https://api.x.ai", cors_restricted=True),
        ProviderSpec(
            "groq",
            "Groq",
            "llama-3.3-70b-versatile",
            "https://api.groq.com/openai",
            cors_restricted=True,
        ),
        ProviderSpec("ollama", "Ollama", "llama3.3", "http://localhost:11434", requires_api_key=False),
        ProviderSpec("lmstudio", "LM Studio", "local-model", "http://localhost:1234", requires_api_key=False),
    )
}

PROVIDER_DEFAULTS: dict[str, str] = {pid: spec.default_model for pid, spec in PROVIDERS.items()}

PROXY_REQUIRED_PROVIDERS: frozenset[str] = frozenset(
    pid for pid, spec in PROVIDERS.items() if spec.cors_restricted
)


def get_spec(provider: str) -> ProviderSpec:
    """Look up a provider, raising ``KeyError`` with the supported ids on a miss."""
    try:
        return PROVIDERS[provider]
    except KeyError:
        raise KeyError(
            f"Unsupported LLM provider: {provider}. Supported: {', '.join(PROVIDERS)}"
        ) from None


def provider_label(provider: str) -> str:
    spec = PROVIDERS.get(provider)
    return spec.label if spec else provider
