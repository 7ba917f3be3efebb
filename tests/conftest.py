"""Shared fixtures: in-memory HTTP and settings that never touch the network."""

import json
import os
from collections.abc import Callable

import httpx
import pytest

from ebios_llm.config import Settings
from ebios_llm.llm.transport import Environment, Transport


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content)


@pytest.fixture
def make_transport() -> Callable[..., Transport]:
    """Build a Transport whose HTTP client answers through ``handler``."""

    def factory(handler, origin: str | None = None, **kwargs) -> Transport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return Transport(Environment(origin=origin), client=client, **kwargs)

    return factory


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run from an empty directory with no EBIOS_LLM_* variables set."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("EBIOS_LLM_"):
            monkeypatch.delenv(name)
    return tmp_path


@pytest.fixture
def settings(clean_env) -> Settings:
    """Settings isolated from the developer's environment and .env files."""
    return Settings(_env_file=None, retry_initial_delay_ms=0, batch_delay_s=0)
