"""Tests for settings, the providers file and the configuration store."""

import logging

import pydantic
import pytest

from ebios_llm import config
from ebios_llm.config import ConfigStore, ProviderConfig, Settings, load_providers_file
from ebios_llm.logging_config import ROOT_LOGGER


def test_settings_read_prefixed_environment(clean_env, monkeypatch) -> None:
    """EBIOS_LLM_* variables should populate settings."""
    monkeypatch.setenv("EBIOS_LLM_PROVIDER", "openai")
    monkeypatch.setenv("EBIOS_LLM_API_KEY", "sk-env")
    monkeypatch.setenv("EBIOS_LLM_RETRY_MAX_ATTEMPTS", "5")

    settings = Settings(_env_file=None)

    assert settings.provider == "openai"
    assert settings.api_key == "sk-env"
    assert settings.retry_policy.max_attempts == 5
    assert not settings.environment.in_browser


def test_settings_read_project_env_file(clean_env) -> None:
    """A .env file in the working directory should be honoured."""
    (clean_env / ".env").write_text("EBIOS_LLM_PROVIDER=mistral\nEBIOS_LLM_MODEL=mistral-small\n")

    settings = Settings()

    assert settings.provider == "mistral"
    assert settings.model == "mistral-small"


def test_get_settings_singleton(clean_env, monkeypatch) -> None:
    """Singleton loader should build settings once."""
    monkeypatch.setenv("EBIOS_LLM_PROVIDER", "groq")
    monkeypatch.setattr(config, "_settings", None)

    first = config.get_settings()

    assert first.provider == "groq"
    assert config.get_settings() is first


def test_from_settings_applies_environment_to_selected_provider(settings) -> None:
    settings = settings.model_copy(update={"provider": "anthropic", "api_key": "ak-env", "model": "claude-x"})

    store = ConfigStore.from_settings(settings)
    snapshot = store.get_config()

    assert snapshot.provider == "anthropic"
    assert snapshot.selected.api_key == "ak-env"
    assert snapshot.selected.model == "claude-x"
    assert snapshot.providers["openai"].api_key is None


def test_from_settings_loads_providers_file(clean_env) -> None:
    path = clean_env / "providers.yaml"
    path.write_text(
        "provider: deepseek\n"
        "providers:\n"
        "  deepseek:\n"
        "    api_key: ds-key\n"
        "  ollama:\n"
        "    base_url: http://gpu-box:11434\n"
        "    model: qwen2.5\n"
    )

    store = ConfigStore.from_settings(Settings(_env_file=None, providers_file=path))

    assert store.get_config().provider == "deepseek"
    assert store.is_config_valid()
    assert store.get_provider_config("ollama").base_url == "http://gpu-box:11434"
    assert store.get_provider_config("ollama").model == "qwen2.5"


def test_providers_file_errors_are_aggregated(tmp_path) -> None:
    path = tmp_path / "providers.yaml"
    path.write_text(
        "providers:\n"
        "  nope:\n"
        "    api_key: x\n"
        "  openai: just-a-string\n"
        "  gemini:\n"
        "    temperature: 0.2\n"
    )

    with pytest.raises(ValueError) as exc_info:
        load_providers_file(path)

    message = str(exc_info.value)
    assert "nope: unknown provider" in message
    assert "openai: provider configuration must be a mapping" in message
    assert "gemini: temperature" in message


def test_providers_file_rejects_unknown_selected_provider(tmp_path) -> None:
    path = tmp_path / "providers.yaml"
    path.write_text("provider: cohere\n")

    with pytest.raises(ValueError, match="unknown provider 'cohere'"):
        load_providers_file(path)


class TestProviderConfig:
    def test_retired_gemini_alias_is_replaced(self) -> None:
        cfg = ProviderConfig(provider_id="gemini", api_key="k", model="gemini-1.5-flash-latest")

        assert cfg.model == "gemini-1.5-flash"

    def test_latest_suffix_kept_for_other_providers(self) -> None:
        cfg = ProviderConfig(provider_id="xai", api_key="k", model="grok-2-latest")

        assert cfg.model == "grok-2-latest"

    def test_masked_api_key(self) -> None:
        assert ProviderConfig(provider_id="openai").masked_api_key == "(not set)"
        assert ProviderConfig(provider_id="openai", api_key="short").masked_api_key == "****"
        assert ProviderConfig(provider_id="openai", api_key="sk-1234567890").masked_api_key == "sk-1...7890"

    def test_errors(self) -> None:
        assert ProviderConfig(provider_id="openai", model="gpt-4o").errors() == ["OpenAI API key is missing"]
        assert ProviderConfig(provider_id="ollama").errors() == [
            "Ollama base URL is missing",
            "Ollama model is not specified",
        ]


class TestConfigStore:
    def test_local_providers_are_configured_by_default(self) -> None:
        store = ConfigStore()

        assert store.is_config_valid("ollama")
        assert store.is_config_valid("lmstudio")
        assert store.get_config_errors("gemini") == ["Gemini API key is missing"]

    def test_listeners_receive_snapshots_until_unsubscribed(self) -> None:
        store = ConfigStore()
        seen = []
        unsubscribe = store.add_listener(lambda snapshot: seen.append(snapshot.provider))

        store.set_provider("qwen")
        store.update_provider("qwen", api_key="q")
        unsubscribe()
        store.set_provider("gemini")

        assert seen == ["qwen", "qwen"]

    def test_failing_listener_does_not_block_others(self, caplog, monkeypatch) -> None:
        # The CLI turns propagation off once it has installed its handler.
        monkeypatch.setattr(logging.getLogger(ROOT_LOGGER), "propagate", True)
        store = ConfigStore()
        seen = []

        def broken(snapshot):
            raise RuntimeError("listener bug")

        store.add_listener(broken)
        store.add_listener(lambda snapshot: seen.append(snapshot.provider))

        store.set_provider("openai")

        assert seen == ["openai"]
        assert "Configuration listener failed" in caplog.text

    def test_update_returns_new_config_and_snapshot_is_a_copy(self) -> None:
        store = ConfigStore()
        before = store.get_config()

        updated = store.update_provider("gemini", api_key="g-key")

        assert updated.api_key == "g-key"
        assert before.providers["gemini"].api_key is None
        assert store.get_provider_config("gemini") is updated

    def test_unknown_provider_is_rejected(self) -> None:
        store = ConfigStore()

        with pytest.raises(KeyError):
            store.set_provider("cohere")


def test_log_level_is_normalized(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("EBIOS_LLM_LOG_LEVEL", "warning")

    assert Settings(_env_file=None).log_level == "WARNING"


def test_unknown_log_level_is_rejected(clean_env, monkeypatch) -> None:
    monkeypatch.setenv("EBIOS_LLM_LOG_LEVEL", "chatty")

    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None)
