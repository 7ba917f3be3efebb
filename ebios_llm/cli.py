"""
EBIOS LLM CLI.

Usage:
    ebios-llm config                          # Show the selected provider and check its settings
    ebios-llm test                            # Probe every provider that has credentials
    ebios-llm test --provider mistral         # Probe one provider
    ebios-llm test --all                      # Probe all ten providers
    ebios-llm generate "prompt"               # Generate text
    ebios-llm generate "prompt" --schema s.json   # Generate JSON matching a schema file
    ebios-llm generate "prompt" --step 2      # Generate a workshop 2 answer with critique
"""

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from ebios_llm import __version__
from ebios_llm.config import XDG_CONFIG_PATH, ConfigStore, Settings, get_settings
from ebios_llm.diagnostics import ProviderTestResult, test_all_providers, test_configured_providers, test_provider
from ebios_llm.gateway import LLMGateway
from ebios_llm.llm.errors import LLMError
from ebios_llm.llm.providers import PROVIDERS, provider_label
from ebios_llm.logging_config import setup_logging
from ebios_llm.workshops import get_workshop_schema, workshop_checker

console = Console()

app = typer.Typer(
    name="ebios-llm",
    help="EBIOS LLM - multi-provider generation for risk-analysis workshops",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="markdown",
)


def _load_settings() -> Settings:
    """Load settings with a user-friendly error on failure."""
    try:
        return get_settings()
    except Exception as e:
        console.print(
            "[red]Configuration error.[/red] "
            "Check your config file or EBIOS_LLM_* environment variables.\n"
        )
        for error in getattr(e, "errors", lambda: [])():
            loc = ".".join(str(part) for part in error["loc"])
            console.print(f"  [red]✗[/red] {loc}: {error['msg']}")
        if not getattr(e, "errors", None):
            console.print(f"  [red]✗[/red] {e}")
        console.print("\n[dim]Run 'ebios-llm config' to verify.[/dim]")
        raise typer.Exit(code=1) from None


def _load_store(settings: Settings) -> ConfigStore:
    try:
        return ConfigStore.from_settings(settings)
    except ValueError as e:
        console.print(f"[red]Failed to load provider settings:[/red] {e}")
        raise typer.Exit(code=1) from None


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"EBIOS LLM CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging output."
    ),
    version: bool | None = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit."
    ),
):
    """
    EBIOS LLM - multi-provider generation for risk-analysis workshops
    """
    setup_logging("DEBUG" if verbose else _load_settings().log_level)


@app.command()
def config() -> None:
    """Verify configuration and show settings."""
    console.print("[bold]Verifying configuration...[/bold]\n")

    console.print("[dim]Config search paths:[/dim]")
    xdg_config = XDG_CONFIG_PATH / "config.env"
    xdg_status = "[green](exists)[/green]" if xdg_config.exists() else "[dim](not found)[/dim]"
    console.print(f"  1. {xdg_config} {xdg_status}")
    local_env = Path(".env")
    local_status = "[green](exists)[/green]" if local_env.exists() else "[dim](not found)[/dim]"
    console.print(f"  2. {local_env.absolute()} {local_status}")
    console.print()

    settings = _load_settings()
    store = _load_store(settings)
    console.print("[green]✓[/green] Settings loaded")

    snapshot = store.get_config()
    selected = snapshot.selected
    console.print(f"  Provider: {provider_label(snapshot.provider)}")
    console.print(f"  Model: {selected.model or '(not set)'}")
    console.print(f"  API key: {selected.masked_api_key}")
    console.print(f"  Base URL: {selected.base_url or '(default)'}")
    if settings.providers_file:
        console.print(f"  Providers file: {settings.providers_file}")

    environment = settings.environment
    if environment.in_browser:
        mode = "local development" if environment.is_local_development else "deployed"
        console.print(f"  Origin: {environment.origin} ({mode})")
    else:
        console.print("  Origin: none (direct calls)")

    console.print()
    errors = store.get_config_errors()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  [red]✗[/red] {error}")
        raise typer.Exit(code=1)
    console.print("[green]✓ Configuration valid[/green]")


async def _run_tests(gateway: LLMGateway, provider: str | None, all_providers: bool) -> dict[str, ProviderTestResult]:
    async with gateway:
        if provider:
            return {provider: await test_provider(gateway, provider)}
        if all_providers:
            return await test_all_providers(gateway)
        return await test_configured_providers(gateway)


@app.command("test")
def test_providers(
    provider: str | None = typer.Option(None, "--provider", "-p", help="Test one provider"),
    all_providers: bool = typer.Option(False, "--all", help="Test all providers, configured or not"),
) -> None:
    """Send a small JSON probe to providers and report which ones answer."""
    if provider and all_providers:
        console.print("[red]Use only one of --provider or --all.[/red]")
        raise typer.Exit(code=1)
    if provider and provider not in PROVIDERS:
        console.print(f"[red]Unknown provider '{provider}'.[/red] Supported: {', '.join(PROVIDERS)}")
        raise typer.Exit(code=1)

    settings = _load_settings()
    gateway = LLMGateway(_load_store(settings), settings)
    results = asyncio.run(_run_tests(gateway, provider, all_providers))

    if not results:
        console.print("[yellow]No configured providers to test.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title="Provider Test Results")
    table.add_column("Provider", style="cyan", no_wrap=True)
    table.add_column("Result", style="bold", no_wrap=True)
    table.add_column("Time", style="green", no_wrap=True)
    table.add_column("Details", style="dim", overflow="fold")

    failures = 0
    for result in results.values():
        status_label = "[green]PASS[/green]" if result.success else "[red]FAIL[/red]"
        duration = f"{result.duration_ms} ms" if result.duration_ms is not None else "-"
        table.add_row(provider_label(result.provider), status_label, duration, result.error or "-")
        failures += not result.success

    console.print(table)
    if failures:
        console.print(f"\n[red]{failures} of {len(results)} provider(s) failed[/red]")
        raise typer.Exit(code=1)
    console.print("\n[green]✓ All provider tests passed[/green]")


def _read_schema(path: Path) -> dict[str, Any]:
    try:
        schema = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        console.print(f"[red]Failed to read schema {path}:[/red] {e}")
        raise typer.Exit(code=1) from None
    if not isinstance(schema, dict):
        console.print(f"[red]Schema {path} must be a JSON object[/red]")
        raise typer.Exit(code=1)
    return schema


async def _generate(
    gateway: LLMGateway,
    prompt: str,
    system: str | None,
    schema: dict[str, Any] | None,
    step: int | None,
    min_items: int | None,
) -> Any:
    async with gateway:
        if step is not None:
            return await gateway.generate_validated(
                prompt,
                system,
                schema or get_workshop_schema(step),
                workshop_checker(step, min_items=min_items),
            )
        if schema is not None:
            return await gateway.generate_json(prompt, system, schema)
        response = await gateway.generate_content(prompt, system)
        return response.text


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="User prompt"),
    system: str | None = typer.Option(None, "--system", "-s", help="System instruction"),
    schema_file: Path | None = typer.Option(None, "--schema", help="JSON schema file for a JSON answer"),
    step: int | None = typer.Option(None, "--step", min=1, max=5, help="Workshop step to validate against"),
    min_items: int | None = typer.Option(None, "--min-items", min=1, help="Minimum items for --step"),
) -> None:
    """Generate text, or JSON when a schema or workshop step is given."""
    if min_items is not None and step is None:
        console.print("[red]--min-items requires --step.[/red]")
        raise typer.Exit(code=1)

    schema = _read_schema(schema_file) if schema_file else None
    settings = _load_settings()
    gateway = LLMGateway(_load_store(settings), settings)

    try:
        result = asyncio.run(_generate(gateway, prompt, system, schema, step, min_items))
    except LLMError as e:
        console.print(f"[red]✗ {e.user_message}[/red]")
        raise typer.Exit(code=1) from None
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from None

    if isinstance(result, str):
        console.print(result)
    else:
        console.print_json(json.dumps(result, ensure_ascii=False))


def cli() -> None:
    """Entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[dim]Aborted.[/dim]")
        raise SystemExit(130) from None
    except Exception as e:
        console.print(f"\n[red]Unexpected error:[/red] {e}")
        console.print("[dim]Run with --verbose for more details.[/dim]")
        raise SystemExit(1) from e


if __name__ == "__main__":
    cli()
