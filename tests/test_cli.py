"""Tests for the command-line interface."""

import json

import httpx
import pytest
from conftest import json_response
from typer.testing import CliRunner

from ebios_llm import cli
from ebios_llm.gateway import LLMGateway

runner = CliRunner()


@pytest.fixture
def cli_settings(settings, monkeypatch):
    settings = settings.model_copy(update={"provider": "openai", "api_key": "sk-1234567890"})
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return settings


@pytest.fixture
def answer_with(monkeypatch, make_transport):
    """Route CLI gateways through a mock that answers every call with ``content``."""

    def install(content: str) -> list[dict]:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return json_response({"choices": [{"message": {"content": content}, "finish_reason": "stop"}]})

        transport = make_transport(handler)
        monkeypatch.setattr(
            cli, "LLMGateway", lambda store, settings: LLMGateway(store, settings, transport=transport)
        )
        return bodies

    return install


def test_version() -> None:
    result = runner.invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert "EBIOS LLM CLI v" in result.output


def test_config_shows_masked_key(cli_settings) -> None:
    result = runner.invoke(cli.app, ["config"])

    assert result.exit_code == 0
    assert "Provider: OpenAI" in result.output
    assert "sk-1...7890" in result.output
    assert "Configuration valid" in result.output


def test_config_reports_missing_key(settings, monkeypatch) -> None:
    settings = settings.model_copy(update={"provider": "anthropic"})
    monkeypatch.setattr(cli, "get_settings", lambda: settings)

    result = runner.invoke(cli.app, ["config"])

    assert result.exit_code == 1
    assert "Anthropic API key is missing" in result.output


def test_generate_text(cli_settings, answer_with) -> None:
    answer_with("Phishing campaign against the accounting team.")

    result = runner.invoke(cli.app, ["generate", "Describe an attack path"])

    assert result.exit_code == 0
    assert "Phishing campaign" in result.output


def test_generate_workshop_step(cli_settings, answer_with) -> None:
    bodies = answer_with(json.dumps([{"type": "Préventive", "description": "Enforce MFA"}]))

    result = runner.invoke(cli.app, ["generate", "Propose security measures", "--step", "5"])

    assert result.exit_code == 0
    assert "Enforce MFA" in result.output
    assert len(bodies) == 1


def test_generate_failure_exits_nonzero(cli_settings, answer_with) -> None:
    answer_with("")

    result = runner.invoke(cli.app, ["generate", "x", "--step", "2"])

    assert result.exit_code == 1
    assert "empty content" in result.output


def test_min_items_requires_step(cli_settings) -> None:
    result = runner.invoke(cli.app, ["generate", "x", "--min-items", "3"])

    assert result.exit_code == 1
    assert "--min-items requires --step" in result.output


def test_test_rejects_unknown_provider(cli_settings) -> None:
    result = runner.invoke(cli.app, ["test", "--provider", "cohere"])

    assert result.exit_code == 1
    assert "Unknown provider 'cohere'" in result.output


def test_test_single_provider(cli_settings, answer_with) -> None:
    answer_with(json.dumps({"status": "ok", "message": "Test passed"}))

    result = runner.invoke(cli.app, ["test", "--provider", "openai"])

    assert result.exit_code == 0
    assert "PASS" in result.output


def test_log_level_comes_from_settings(settings, monkeypatch) -> None:
    settings = settings.model_copy(update={"provider": "openai", "api_key": "sk-1234567890", "log_level": "ERROR"})
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    levels: list[str] = []
    monkeypatch.setattr(cli, "setup_logging", levels.append)

    runner.invoke(cli.app, ["config"])
    runner.invoke(cli.app, ["--verbose", "config"])

    assert levels == ["ERROR", "DEBUG"]
