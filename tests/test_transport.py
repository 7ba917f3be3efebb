"""Tests for CORS-aware routing and HTTP error mapping."""

import asyncio

import httpx
import pytest
from conftest import json_response

from ebios_llm.llm.errors import (
    AuthenticationError,
    ProviderError,
    ProxyUnavailableError,
    RateLimitError,
    TransportError,
)
from ebios_llm.llm.providers import PROVIDERS, PROXY_REQUIRED_PROVIDERS
from ebios_llm.llm.transport import Environment, needs_proxy, plan_route

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
HEADERS = {"Content-Type": "application/json", "Authorization": "Bearer sk-test"}


class TestEnvironment:
    @pytest.mark.parametrize(
        "origin",
        ["http://localhost:5173", "http://127.0.0.1:3000", "http://192.168.1.20:8080"],
    )
    def test_local_development(self, origin):
        assert Environment(origin).is_local_development

    def test_deployed(self):
        env = Environment("https://ebios.example.com")
        assert env.in_browser
        assert not env.is_local_development

    def test_server_process(self):
        env = Environment()
        assert not env.in_browser
        assert not env.is_local_development


class TestPlanRoute:
    @pytest.mark.parametrize("provider", sorted(set(PROVIDERS) - PROXY_REQUIRED_PROVIDERS))
    @pytest.mark.parametrize("origin", [None, "https://ebios.example.com", "http://localhost:5173"])
    def test_unrestricted_providers_never_use_proxy(self, provider, origin):
        route = plan_route(provider, "https://provider.example/v1", HEADERS, Environment(origin))

        assert route.url == "https://provider.example/v1"
        assert not route.via_proxy

    def test_restricted_provider_direct_from_server(self):
        route = plan_route("openai", OPENAI_URL, HEADERS, Environment())

        assert route.url == OPENAI_URL
        assert route.headers == HEADERS

    def test_deployed_uses_same_origin_proxy(self):
        route = plan_route("anthropic", "https://api.anthropic.com/v1/messages",
                           {"x-api-key": "ak-test"}, Environment("https://ebios.example.com/"))

        assert route.via_proxy
        assert route.url == "https://ebios.example.com/api/llm-proxy?provider=anthropic"
        assert route.headers == {"Content-Type": "application/json", "x-api-key": "ak-test"}

    def test_local_development_uses_companion_proxy(self):
        route = plan_route(
            "openai",
            OPENAI_URL,
            HEADERS,
            Environment("http://localhost:5173"),
            local_proxy_available=True,
        )

        assert route.url == "http://localhost:3001/api/llm-proxy?provider=openai"
        assert route.headers["x-api-key"] == "Bearer sk-test"

    def test_local_development_without_proxy_is_actionable(self):
        with pytest.raises(ProxyUnavailableError) as exc_info:
            plan_route("groq", OPENAI_URL, HEADERS, Environment("http://localhost:5173"))

        message = str(exc_info.value)
        assert "CORS" in message
        assert "Groq" in message
        assert "localhost:3001" in message

    def test_needs_proxy_depends_only_on_provider_and_environment(self):
        assert needs_proxy("openai", Environment("https://ebios.example.com"))
        assert not needs_proxy("openai", Environment())
        assert not needs_proxy("gemini", Environment("https://ebios.example.com"))


class TestTransport:
    def test_probe_happens_only_for_local_restricted_calls(self, make_transport):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            if request.url.path == "/api/health":
                return json_response({"status": "ok"})
            return json_response({"ok": True})

        transport = make_transport(handler, origin="http://localhost:5173")
        asyncio.run(transport.post_json("gemini", "https://generativelanguage.googleapis.com/x", {}, {}))
        asyncio.run(transport.post_json("openai", OPENAI_URL, HEADERS, {"model": "gpt-4o"}))

        assert seen == [
            "https://generativelanguage.googleapis.com/x",
            "http://localhost:3001/api/health",
            "http://localhost:3001/api/llm-proxy?provider=openai",
        ]

    def test_unreachable_local_proxy_raises(self, make_transport):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        transport = make_transport(handler, origin="http://localhost:5173")

        with pytest.raises(ProxyUnavailableError):
            asyncio.run(transport.post_json("mistral", "https://api.mistral.ai/v1/chat/completions", HEADERS, {}))

    @pytest.mark.parametrize(
        ("status", "error_type"),
        [(401, AuthenticationError), (403, AuthenticationError), (429, RateLimitError), (500, ProviderError)],
    )
    def test_status_mapping(self, make_transport, status, error_type):
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response({"error": {"message": "Nope", "type": "invalid_request_error"}}, status)

        transport = make_transport(handler)

        with pytest.raises(error_type) as exc_info:
            asyncio.run(transport.post_json("openai", OPENAI_URL, HEADERS, {}))

        message = str(exc_info.value)
        assert "OpenAI" in message
        assert "Nope (invalid_request_error)" in message

    def test_network_error_becomes_transport_error(self, make_transport):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        transport = make_transport(handler)

        with pytest.raises(TransportError, match="timed out"):
            asyncio.run(transport.post_json("openai", OPENAI_URL, HEADERS, {}))

    def test_non_json_body_is_a_provider_error(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(ProviderError, match="not JSON"):
            asyncio.run(transport.post_json("openai", OPENAI_URL, HEADERS, {}))
