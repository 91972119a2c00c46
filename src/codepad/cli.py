"""Command line interface for codepad."""

import asyncio
import sys
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .config import LOG_LEVELS, settings
from .frontend.terminal_chat import TerminalChat
from .providers.registry import ProviderRegistry
from .server import run_server
from .services.model_catalog import ModelCatalog
from .session.chat import ChatSession
from .session.credentials import EnvCredentialStore
from .utils.logging_setup import setup_logging


console = Console()


def _registry() -> ProviderRegistry:
    return ProviderRegistry.with_base_urls(settings.providers.base_url_overrides())


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug mode")
@click.option("--log-level", default=None, type=click.Choice(LOG_LEVELS, case_sensitive=False), help="Set log level")
def cli(debug: bool, log_level: Optional[str]):
    """Codepad - streaming chat over multiple LLM providers."""
    settings.debug = debug
    if debug:
        settings.logging.level = "DEBUG"
    elif log_level:
        settings.logging.level = log_level.upper()

    setup_logging(
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        log_file=settings.logging.file,
        secrets=settings.secret_values(),
    )


@cli.command()
@click.option("--host", default=None, help="Server host")
@click.option("--port", default=None, type=int, help="Server port")
def serve(host: Optional[str], port: Optional[int]):
    """Start the HTTP chat server."""
    click.echo("Starting Codepad server...")

    try:
        asyncio.run(run_server(host=host, port=port))
    except KeyboardInterrupt:
        click.echo("\nServer stopped by user")
    except Exception as e:
        click.echo(f"Server error: {e}", err=True)
        sys.exit(1)


@cli.command()
def providers():
    """List known providers."""
    credentials = EnvCredentialStore(settings.providers)
    table = Table(title="Providers")
    table.add_column("id")
    table.add_column("name")
    table.add_column("format")
    table.add_column("default model")
    table.add_column("key")

    for p in _registry():
        if not p.requires_api_key:
            key = "not needed"
        else:
            key = "set" if credentials.get_api_key(p.id) else "missing"
        table.add_row(p.id, p.name, p.wire_format.value, p.default_model or "-", key)

    console.print(table)


@cli.command()
@click.argument("provider")
def models(provider: str):
    """List models offered by PROVIDER."""
    registry = _registry()
    if provider not in registry:
        raise click.ClickException(f"Unknown provider '{provider}'. Known: {', '.join(registry.ids())}")

    catalog = ModelCatalog(registry, EnvCredentialStore(settings.providers), ttl=settings.models_cache_ttl)
    found = asyncio.run(catalog.list_models(provider))
    if not found:
        click.echo(f"No models available for {provider}")
        return

    table = Table(title=f"Models ({provider})")
    table.add_column("id")
    table.add_column("name")
    for m in found:
        table.add_row(m.id, m.display_name)
    console.print(table)


@cli.command()
@click.option("--provider", default=None, help="Provider id (openai, openrouter, anthropic, ollama, ...)")
@click.option("--model", default=None, help="Model id")
@click.option("--stream/--no-stream", default=None, help="Stream tokens as they arrive")
@click.option("--temperature", default=None, type=click.FloatRange(min=0), help="Sampling temperature")
@click.option("--max-tokens", default=None, type=click.IntRange(min=1), help="Maximum tokens in the reply")
def chat(
    provider: Optional[str],
    model: Optional[str],
    stream: Optional[bool],
    temperature: Optional[float],
    max_tokens: Optional[int],
):
    """Interactive chat in the terminal."""

    async def run_chat() -> None:
        async with ChatSession(settings, registry=_registry()) as session:
            session.select(
                provider_id=provider,
                model=model,
                stream=stream,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            await TerminalChat(session, console=console).run()

    try:
        asyncio.run(run_chat())
    except KeyboardInterrupt:
        click.echo("\nBye")
    except Exception as e:
        click.echo(f"Chat error: {e}", err=True)
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
