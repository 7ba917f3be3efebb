"""Connectivity probes for the configured providers."""

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ebios_llm.gateway import LLMGateway
from ebios_llm.llm.errors import LLMError
from ebios_llm.llm.providers import PROVIDERS, provider_label
from ebios_llm.logging_config import get_logger

logger = get_logger("diagnostics")

PROBE_PROMPT = 'Reply with a simple JSON object containing only: {"status": "ok", "message": "Test passed"}'
PROBE_SYSTEM = "You are an assistant that answers only with valid JSON."
PROBE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "status": {"type": "string"},
        "message": {"type": "string"},
    },
    "required": ["status", "message"],
}


@dataclass(frozen=True)
class ProviderTestResult:
    provider: str
    success: bool
    error: str | None = None
    duration_ms: int | None = None


async def test_provider(gateway: LLMGateway, provider: str) -> ProviderTestResult:
    """Send the fixed JSON probe to one provider and report whether it answered ``status: ok``."""
    label = provider_label(provider)
    errors = gateway.store.get_config_errors(provider)
    if errors:
        return ProviderTestResult(provider=provider, success=False, error="; ".join(errors))

    logger.info(f"Testing {label}")
    started = time.perf_counter()
    try:
        result = await gateway.generate_json(PROBE_PROMPT, PROBE_SYSTEM, PROBE_SCHEMA, provider=provider)
    except LLMError as exc:
        logger.warning(f"{label} test failed: {exc}")
        return ProviderTestResult(provider=provider, success=False, error=exc.user_message)
    duration_ms = int((time.perf_counter() - started) * 1000)

    if not isinstance(result, dict) or result.get("status") != "ok":
        return ProviderTestResult(
            provider=provider,
            success=False,
            error=f"Unexpected answer from {label}: {str(result)[:200]}",
            duration_ms=duration_ms,
        )

    logger.info(f"{label} answered in {duration_ms}ms")
    return ProviderTestResult(provider=provider, success=True, duration_ms=duration_ms)


async def _run_sequentially(
    gateway: LLMGateway, providers: Iterable[str]
) -> dict[str, ProviderTestResult]:
    results: dict[str, ProviderTestResult] = {}
    for index, provider in enumerate(providers):
        if index:
            await asyncio.sleep(gateway.settings.batch_delay_s)
        results[provider] = await test_provider(gateway, provider)
    return results


async def test_all_providers(gateway: LLMGateway) -> dict[str, ProviderTestResult]:
    return await _run_sequentially(gateway, PROVIDERS)


async def test_configured_providers(gateway: LLMGateway) -> dict[str, ProviderTestResult]:
    """Test only the providers whose credentials or base URL are filled in."""
    configured = [pid for pid in PROVIDERS if gateway.store.is_config_valid(pid)]
    logger.info(f"Configured providers: {', '.join(configured) or 'none'}")
    return await _run_sequentially(gateway, configured)


# Keep pytest from collecting these when imported into a test module.
test_provider.__test__ = False  # type: ignore[attr-defined]
test_all_providers.__test__ = False  # type: ignore[attr-defined]
test_configured_providers.__test__ = False  # type: ignore[attr-defined]
