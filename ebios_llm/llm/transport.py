"""
HTTP transport with CORS-aware routing.

Some providers reject requests carrying a browser origin. When the layer runs
on behalf of a browser page, calls to those providers go through a
same-origin proxy (deployed) or a local companion proxy (development). The
route depends only on the provider and the execution environment, never on
request content.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from ebios_llm.logging_config import get_logger

from .errors import (
    AuthenticationError,
    ProviderError,
    ProxyUnavailableError,
    RateLimitError,
    TransportError,
)
from .providers import PROXY_REQUIRED_PROVIDERS, provider_label

logger = get_logger("transport")

DEFAULT_PROXY_PATH = "/api/llm-proxy"
DEFAULT_LOCAL_PROXY_URL = "http://localhost:3001"
LOCAL_PROXY_HEALTH_PATH = "/api/health"
DEFAULT_PROBE_TIMEOUT_S = 0.5
DEFAULT_REQUEST_TIMEOUT_S = 120.0


@dataclass(frozen=True)
class Environment:
    """Where requests originate from.

    ``origin`` is the browser page origin (``https://host[:port]``) the layer
    serves, or ``None`` for a plain server-side process that CORS does not
    apply to.
    """

    origin: str | None = None

    @property
    def in_browser(self) -> bool:
        return bool(self.origin)

    @property
    def hostname(self) -> str:
        if not self.origin:
            return ""
        return httpx.URL(self.origin).host

    @property
    def is_local_development(self) -> bool:
        host = self.hostname
        return host in ("localhost", "127.0.0.1") or host.startswith("192.168.")


@dataclass(frozen=True)
class Route:
    """Resolved destination for one provider call."""

    url: str
    headers: dict[str, str]
    via_proxy: bool = False


def needs_proxy(provider: str, environment: Environment) -> bool:
    """True when a call to this provider cannot go straight to its origin."""
    return environment.in_browser and provider in PROXY_REQUIRED_PROVIDERS


def _proxy_headers(headers: dict[str, str]) -> dict[str, str]:
    api_key = headers.get("x-api-key") or headers.get("Authorization") or ""
    return {"Content-Type": "application/json", "x-api-key": api_key}


def plan_route(
    provider: str,
    url: str,
    headers: dict[str, str],
    environment: Environment,
    *,
    proxy_path: str = DEFAULT_PROXY_PATH,
    local_proxy_url: str = DEFAULT_LOCAL_PROXY_URL,
    local_proxy_available: bool = False,
) -> Route:
    """
    Decide where a provider call is sent.

    Raises:
        ProxyUnavailableError: local development, restricted provider, and the
            companion proxy did not answer its probe.
    """
    if not needs_proxy(provider, environment):
        return Route(url=url, headers=headers)

    query = f"?provider={provider}"
    if not environment.is_local_development:
        origin = (environment.origin or "").rstrip("/")
        return Route(url=f"{origin}{proxy_path}{query}", headers=_proxy_headers(headers), via_proxy=True)

    if local_proxy_available:
        return Route(
            url=f"{local_proxy_url.rstrip('/')}{proxy_path}{query}",
            headers=_proxy_headers(headers),
            via_proxy=True,
        )

    label = provider_label(provider)
    raise ProxyUnavailableError(
        f"CORS error: {label} blocks direct browser requests and the local proxy at "
        f"{local_proxy_url} is not running. Start it with 'npm run dev:proxy' in another "
        "terminal, then retry.",
        provider=provider,
    )


def decode_error_message(response: httpx.Response) -> str:
    """Best-effort provider-supplied error message from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip()[:500]

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            code = error.get("code") or error.get("type")
            return f"{error['message']} ({code})" if isinstance(code, str) else error["message"]
        if isinstance(error, str):
            return error
        if isinstance(payload.get("message"), str):
            return payload["message"]
    return response.text.strip()[:500]


def raise_for_provider_status(provider: str, response: httpx.Response) -> None:
    """Map a non-2xx provider response onto the error taxonomy."""
    if response.is_success:
        return

    label = provider_label(provider)
    status = response.status_code
    detail = decode_error_message(response) or response.reason_phrase

    if status in (401, 403):
        raise AuthenticationError(
            f"{label} rejected the API key ({status}): {detail}. "
            f"Check the {label} API key and model permissions in your configuration.",
            provider=provider,
            status_code=status,
        )
    if status == 429:
        raise RateLimitError(
            f"{label} rate limit exceeded (429): {detail}. Wait a moment before retrying.",
            provider=provider,
        )
    raise ProviderError(f"{label} error: {status} - {detail}", provider=provider, status_code=status)


class Transport:
    """Async HTTP client that applies the routing rules to every provider call."""

    def __init__(
        self,
        environment: Environment | None = None,
        *,
        proxy_path: str = DEFAULT_PROXY_PATH,
        local_proxy_url: str = DEFAULT_LOCAL_PROXY_URL,
        probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S,
        timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ):
        self.environment = environment or Environment()
        self.proxy_path = proxy_path
        self.local_proxy_url = local_proxy_url
        self.probe_timeout_s = probe_timeout_s
        self.timeout_s = timeout_s
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def probe_local_proxy(self) -> bool:
        """Check whether the local companion proxy answers within the probe timeout."""
        probe_url = f"{self.local_proxy_url.rstrip('/')}{LOCAL_PROXY_HEALTH_PATH}"
        try:
            response = await self._client.get(probe_url, timeout=self.probe_timeout_s)
        except httpx.HTTPError as exc:
            logger.warning(f"Local proxy not reachable at {probe_url}: {exc}")
            return False
        return response.is_success

    async def resolve(self, provider: str, url: str, headers: dict[str, str]) -> Route:
        """Resolve the route, probing the local proxy only when the decision needs it."""
        local_available = False
        if needs_proxy(provider, self.environment) and self.environment.is_local_development:
            local_available = await self.probe_local_proxy()

        route = plan_route(
            provider,
            url,
            headers,
            self.environment,
            proxy_path=self.proxy_path,
            local_proxy_url=self.local_proxy_url,
            local_proxy_available=local_available,
        )
        if route.via_proxy:
            logger.info(f"[{provider_label(provider)}] Routing through proxy {route.url}")
        return route

    async def post_json(
        self,
        provider: str,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
    ) -> dict[str, Any]:
        """POST a provider-native body and return the decoded JSON response."""
        route = await self.resolve(provider, url, headers)
        label = provider_label(provider)

        try:
            response = await self._client.post(route.url, headers=route.headers, json=body)
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"{label} request timed out after {self.timeout_s}s: {exc}", provider=provider
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                f"{label} network error contacting {route.url}: {exc}. "
                "Check your connection and that the service is reachable.",
                provider=provider,
            ) from exc

        raise_for_provider_status(provider, response)

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{label} returned a response body that is not JSON: {response.text[:200]!r}",
                provider=provider,
                status_code=response.status_code,
            ) from exc

    async def aclose(self) -> None:
        await self._client.aclose()
