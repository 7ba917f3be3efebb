"""Configuration management using Pydantic Settings."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ebios_llm.llm.providers import PROVIDERS, ProviderId, get_spec
from ebios_llm.llm.retry import RetryPolicy
from ebios_llm.llm.transport import (
    DEFAULT_LOCAL_PROXY_URL,
    DEFAULT_PROBE_TIMEOUT_S,
    DEFAULT_PROXY_PATH,
    DEFAULT_REQUEST_TIMEOUT_S,
    Environment,
)
from ebios_llm.logging_config import get_logger

logger = get_logger("config")

# XDG config directory for user configuration
XDG_CONFIG_PATH = Path.home() / ".config" / "ebios-llm"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="EBIOS_LLM_",
        env_file=[
            XDG_CONFIG_PATH / "config.env",  # User config (lower priority)
            ".env",  # Project .env (higher priority)
        ],
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Selected provider
    provider: ProviderId = Field(default="gemini", description="LLM provider to use")
    api_key: str | None = Field(default=None, description="API key for the selected provider")
    model: str | None = Field(default=None, description="Model for the selected provider")
    base_url: str | None = Field(default=None, description="Base URL override for the selected provider")
    providers_file: Path | None = Field(default=None, description="YAML file with per-provider settings")

    # Routing
    browser_origin: str | None = Field(
        default=None,
        description="Origin of the page issuing calls; unset means a server process",
    )
    proxy_path: str = Field(default=DEFAULT_PROXY_PATH, description="Same-origin proxy path")
    local_proxy_url: str = Field(default=DEFAULT_LOCAL_PROXY_URL, description="Local companion proxy")
    proxy_probe_timeout_s: float = Field(default=DEFAULT_PROBE_TIMEOUT_S, gt=0, le=5)

    # Calls
    request_timeout_s: float = Field(default=DEFAULT_REQUEST_TIMEOUT_S, gt=0)
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_initial_delay_ms: float = Field(default=1000, ge=0)
    retry_backoff_factor: float = Field(default=2.0, ge=1)
    batch_delay_s: float = Field(default=1.0, ge=0, description="Delay between sequential batch calls")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay_ms=self.retry_initial_delay_ms,
            backoff_factor=self.retry_backoff_factor,
        )

    @property
    def environment(self) -> Environment:
        return Environment(origin=self.browser_origin)


class ProviderConfig(BaseModel):
    """Credentials and model for one provider."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    provider_id: ProviderId
    api_key: str | None = None
    base_url: str | None = None
    model: str = ""

    @field_validator("model")
    @classmethod
    def drop_retired_aliases(cls, value: str, info: ValidationInfo) -> str:
        """Gemini ``-latest`` aliases are no longer served."""
        if info.data.get("provider_id") == "gemini" and "-latest" in value:
            logger.warning(f"Replacing retired Gemini model alias {value}")
            return value.replace("-latest", "")
        return value

    @property
    def masked_api_key(self) -> str:
        if not self.api_key:
            return "(not set)"
        if len(self.api_key) <= 8:
            return "****"
        return f"{self.api_key[:4]}...{self.api_key[-4:]}"

    def errors(self) -> list[str]:
        """Missing fields that would make a call fail, as readable messages."""
        spec = get_spec(self.provider_id)
        problems: list[str] = []
        if spec.is_local:
            if not self.base_url:
                problems.append(f"{spec.label} base URL is missing")
        elif not self.api_key:
            problems.append(f"{spec.label} API key is missing")
        if not self.model:
            problems.append(f"{spec.label} model is not specified")
        return problems


class ProviderOverride(BaseModel):
    """One provider entry in the YAML providers file."""

    model_config = ConfigDict(extra="forbid")

    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None


def default_provider_configs() -> dict[str, ProviderConfig]:
    return {
        pid: ProviderConfig(
            provider_id=pid,
            api_key=None,
            base_url=spec.default_base_url,
            model=spec.default_model,
        )
        for pid, spec in PROVIDERS.items()
    }


def load_providers_file(path: Path) -> tuple[str | None, dict[str, dict[str, Any]]]:
    """Load the selected provider and per-provider overrides from YAML."""
    if not path.exists():
        raise ValueError(f"Providers file not found: {path}")

    with open(path) as file_handle:
        data = yaml.safe_load(file_handle) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Invalid {path.name}: top-level structure must be a mapping")

    selected = data.get("provider")
    if selected is not None and selected not in PROVIDERS:
        raise ValueError(f"Invalid {path.name}: unknown provider '{selected}'")

    raw_providers = data.get("providers") or {}
    if not isinstance(raw_providers, dict):
        raise ValueError(f"Invalid {path.name}: 'providers' must be a mapping")

    overrides: dict[str, dict[str, Any]] = {}
    validation_errors: list[str] = []
    for raw_name, raw_entry in raw_providers.items():
        name = str(raw_name).strip()
        if name not in PROVIDERS:
            validation_errors.append(f"{name}: unknown provider")
            continue
        if not isinstance(raw_entry, dict):
            validation_errors.append(f"{name}: provider configuration must be a mapping")
            continue
        try:
            parsed = ProviderOverride.model_validate(raw_entry)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            validation_errors.append(f"{name}: {details}")
            continue
        overrides[name] = parsed.model_dump(exclude_none=True)

    if validation_errors:
        rendered = "\n  - ".join(validation_errors)
        raise ValueError(f"Invalid {path.name} entries:\n  - {rendered}")

    return selected, overrides


@dataclass(frozen=True)
class ConfigSnapshot:
    """Read-only view of the store at one point in time."""

    provider: str
    providers: Mapping[str, ProviderConfig]

    @property
    def selected(self) -> ProviderConfig:
        return self.providers[self.provider]


Listener = Callable[[ConfigSnapshot], None]


class ConfigStore:
    """Owns provider configuration and notifies listeners on every change."""

    def __init__(self, provider: str = "gemini", providers: Mapping[str, ProviderConfig] | None = None):
        get_spec(provider)
        self._provider = provider
        self._providers: dict[str, ProviderConfig] = default_provider_configs()
        if providers:
            self._providers.update(providers)
        self._listeners: list[Listener] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConfigStore":
        """Build a store from defaults, the optional providers file, then the environment."""
        store = cls()
        if settings.providers_file:
            selected, overrides = load_providers_file(settings.providers_file)
            for name, changes in overrides.items():
                store._providers[name] = _updated(store._providers[name], changes)
            if selected:
                store._provider = selected

        if "provider" in settings.model_fields_set or not settings.providers_file:
            store._provider = settings.provider

        env_changes = {
            key: value
            for key, value in (
                ("api_key", settings.api_key),
                ("model", settings.model),
                ("base_url", settings.base_url),
            )
            if value
        }
        if env_changes:
            store._providers[store._provider] = _updated(store._providers[store._provider], env_changes)
        return store

    def get_config(self) -> ConfigSnapshot:
        return ConfigSnapshot(provider=self._provider, providers=dict(self._providers))

    def get_provider_config(self, provider: str | None = None) -> ProviderConfig:
        return self._providers[provider or self._provider]

    def set_provider(self, provider: str) -> None:
        get_spec(provider)
        self._provider = provider
        self._notify()

    def update_provider(self, provider: str, **changes: Any) -> ProviderConfig:
        get_spec(provider)
        updated = _updated(self._providers[provider], changes)
        self._providers[provider] = updated
        self._notify()
        return updated

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to changes; returns a callable that unsubscribes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def is_config_valid(self, provider: str | None = None) -> bool:
        return not self.get_config_errors(provider)

    def get_config_errors(self, provider: str | None = None) -> list[str]:
        return self.get_provider_config(provider).errors()

    def _notify(self) -> None:
        snapshot = self.get_config()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Configuration listener failed")


def _updated(config: ProviderConfig, changes: Mapping[str, Any]) -> ProviderConfig:
    return ProviderConfig.model_validate({**config.model_dump(), **changes})


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get application settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
