"""Caller-facing entry point: one cached adapter, schema checks, critique loop."""

import asyncio
import json
from collections.abc import Sequence
from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from ebios_llm.config import ConfigSnapshot, ConfigStore, ProviderConfig, Settings
from ebios_llm.llm import RetryClient, create_client
from ebios_llm.llm.base import JsonSchema, LLMResponse
from ebios_llm.llm.critique import DEFAULT_MAX_ATTEMPTS, Checker, generate_with_critique
from ebios_llm.llm.errors import ConfigurationError, ValidationError
from ebios_llm.llm.providers import provider_label
from ebios_llm.llm.retry import Sleep
from ebios_llm.llm.transport import Transport
from ebios_llm.logging_config import get_logger
from ebios_llm.validation import sanitize_value, validate_payload_text

logger = get_logger("gateway")


def plausibility_schema(schema: JsonSchema) -> JsonSchema:
    """Reduce a response schema to its top-level type and required keys.

    Enum and nested-field checks belong to the per-workshop validators, whose
    messages are written to be fed back to the model.
    """
    reduced: JsonSchema = {}
    schema_type = schema.get("type")
    if isinstance(schema_type, str):
        reduced["type"] = schema_type.lower()
    elif isinstance(schema_type, list):
        reduced["type"] = [str(item).lower() for item in schema_type]
    if isinstance(schema.get("required"), list) and schema["required"]:
        reduced["required"] = list(schema["required"])
    return reduced


def check_against_schema(value: Any, schema: JsonSchema | None) -> list[str]:
    """Issues found checking ``value`` against the reduced schema."""
    if not schema:
        return []
    reduced = plausibility_schema(schema)
    try:
        validator = Draft7Validator(reduced)
        errors = sorted(validator.iter_errors(value), key=lambda err: list(err.path))
    except SchemaError as exc:
        raise ConfigurationError(f"Invalid response schema: {exc.message}") from exc
    return [f"{'/'.join(map(str, err.path)) or '<root>'}: {err.message}" for err in errors]


class LLMGateway:
    """Generates text and JSON with the configured provider."""

    def __init__(
        self,
        store: ConfigStore,
        settings: Settings | None = None,
        transport: Transport | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.store = store
        self.settings = settings or Settings()
        self._owns_transport = transport is None
        self.transport = transport or Transport(
            self.settings.environment,
            proxy_path=self.settings.proxy_path,
            local_proxy_url=self.settings.local_proxy_url,
            probe_timeout_s=self.settings.proxy_probe_timeout_s,
            timeout_s=self.settings.request_timeout_s,
        )
        self._sleep = sleep
        self._cached: tuple[tuple[str, str], RetryClient] | None = None
        self._watched = self._fingerprint(store.get_config())
        self._unsubscribe = store.add_listener(self._on_config_change)

    @staticmethod
    def _fingerprint(snapshot: ConfigSnapshot) -> tuple[str, ProviderConfig]:
        return snapshot.provider, snapshot.selected

    def _on_config_change(self, snapshot: ConfigSnapshot) -> None:
        fingerprint = self._fingerprint(snapshot)
        if fingerprint == self._watched:
            return
        self._watched = fingerprint
        if self._cached is not None:
            logger.debug(f"Configuration changed, dropping cached {provider_label(self._cached[0][0])} adapter")
        self._cached = None

    @property
    def cached_client(self) -> RetryClient | None:
        return self._cached[1] if self._cached else None

    def get_client(self, provider: str | None = None) -> RetryClient:
        """Return the adapter for the selected provider, creating it on first use.

        Passing ``provider`` builds an uncached adapter for that provider instead.
        """
        config = self.store.get_provider_config(provider)
        errors = config.errors()
        if errors:
            raise ConfigurationError(
                f"{'; '.join(errors)}. Update the provider settings before calling it.",
                provider=config.provider_id,
            )

        if provider is not None and provider != self.store.get_config().provider:
            return self._build(config)

        key = (config.provider_id, config.model)
        if self._cached is not None and self._cached[0] == key:
            return self._cached[1]

        self._cached = None
        client = self._build(config)
        self._cached = (key, client)
        return client

    def _build(self, config: ProviderConfig) -> RetryClient:
        client = create_client(
            provider=config.provider_id,
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            transport=self.transport,
            retry_policy=self.settings.retry_policy,
            sleep=self._sleep,
        )
        logger.debug(f"Created {provider_label(config.provider_id)} adapter for model {config.model}")
        return client

    async def generate_content(
        self,
        prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonSchema | None = None,
        *,
        provider: str | None = None,
    ) -> LLMResponse:
        _require_prompt(prompt)
        client = self.get_client(provider)
        return await client.generate_content(prompt, system_instruction, response_schema)

    async def generate_json(
        self,
        prompt: str,
        system_instruction: str | None = None,
        response_schema: JsonSchema | None = None,
        *,
        provider: str | None = None,
        sanitize: bool = True,
    ) -> Any:
        """Generate, extract and sanity-check a JSON value.

        Raises ``ValidationError`` when the value is too large to accept, or does
        not have the schema's top-level type or required keys.
        """
        _require_prompt(prompt)
        client = self.get_client(provider)
        value = await client.generate_json(prompt, system_instruction, response_schema)

        issues = validate_payload_text(json.dumps(value, ensure_ascii=False))
        if not issues:
            issues = check_against_schema(value, response_schema)
        if issues:
            raise ValidationError(issues, provider=client.provider)
        return sanitize_value(value) if sanitize else value

    async def generate_validated(
        self,
        prompt: str,
        system_instruction: str | None,
        response_schema: JsonSchema | None,
        checker: Checker | Sequence[Checker],
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        provider: str | None = None,
    ) -> Any:
        """Generate JSON and re-prompt with feedback until ``checker`` reports no issues."""
        checkers = [checker] if callable(checker) else list(checker)
        selected = provider or self.store.get_config().provider

        async def generate(call_prompt: str) -> Any:
            return await self.generate_json(call_prompt, system_instruction, response_schema, provider=provider)

        result = await generate_with_critique(
            generate,
            prompt,
            checkers,
            max_attempts=max_attempts,
            provider=selected,
        )
        return result.value

    async def close(self) -> None:
        self._unsubscribe()
        self._cached = None
        if self._owns_transport:
            await self.transport.aclose()

    async def __aenter__(self) -> "LLMGateway":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def _require_prompt(prompt: str) -> None:
    if not prompt or not prompt.strip():
        raise ValueError("prompt must be a non-empty string")
