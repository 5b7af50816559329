"""CLI commands for threadbridge."""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from threadbridge import __logo__, __version__

app = typer.Typer(
    name="threadbridge",
    help=f"{__logo__} threadbridge - chat threads backed by assistant conversations",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} threadbridge v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """threadbridge - chat threads backed by assistant conversations."""
    pass


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _mask(secret: str) -> str:
    if not secret:
        return "[dim]not configured[/dim]"
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"


# ============================================================================
# Init
# ============================================================================


@app.command()
def init(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """Create a config file with default settings."""
    from threadbridge.config.loader import get_config_path, save_config
    from threadbridge.config.schema import Config

    path = config_path or get_config_path()
    if path.exists():
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        return

    save_config(Config(), path)
    console.print(f"[green]✓[/green] Created config at {path}")
    console.print("Set discord.token and openai.assistantId, then run [cyan]threadbridge run[/cyan]")


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """Start the bridge."""
    from threadbridge.bridge.service import Bridge
    from threadbridge.bus.queue import MessageBus
    from threadbridge.channels.discord import DiscordChannel
    from threadbridge.config.loader import load_config
    from threadbridge.providers.base import AssistantServiceError
    from threadbridge.providers.openai_assistants import OpenAIAssistantProvider
    from threadbridge.reaper.service import IdleReaper

    _configure_logging(verbose)
    config = load_config(config_path)

    missing = config.missing_required()
    if missing:
        console.print(f"[red]Missing required settings: {', '.join(missing)}[/red]")
        raise typer.Exit(1)

    console.print(f"{__logo__} Starting threadbridge...")

    bus = MessageBus()
    channel = DiscordChannel(config.discord, bus)
    provider = OpenAIAssistantProvider(
        assistant_id=config.openai.assistant_id,
        api_key=config.openai.api_key,
        project_id=config.openai.project_id,
        api_base=config.openai.api_base,
        vector_store_id=config.openai.vector_store_id,
    )
    bridge = Bridge(
        bus,
        channel,
        provider,
        replay_window=config.bridge.replay_window,
        locale=config.bridge.locale,
        poll_interval_s=config.bridge.poll_interval_s,
        run_timeout_s=config.bridge.run_timeout_s,
    )
    reaper = IdleReaper(
        bridge.registry,
        provider,
        channel,
        with_archival=config.reaper.with_archival,
        locale=config.bridge.locale,
    )

    async def _run() -> None:
        try:
            assistant_name = await provider.verify()
        except AssistantServiceError as e:
            console.print(f"[red]Assistant {config.openai.assistant_id} unavailable: {e}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] Assistant: {assistant_name}")

        await reaper.start()
        try:
            await asyncio.gather(bridge.run(), channel.start())
        finally:
            reaper.stop()
            bridge.stop()
            bus.close()
            await channel.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# Status
# ============================================================================


@app.command()
def status(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """Show the effective configuration."""
    from threadbridge.config.loader import get_config_path, load_config
    from threadbridge.config.schema import IDLE_SWEEP_INTERVAL_S, IDLE_TTL_S

    path = config_path or get_config_path()
    config = load_config(path)

    console.print(f"{__logo__} threadbridge status\n")
    console.print(f"Config: {path} {'[green]✓[/green]' if path.exists() else '[dim](not found, environment only)[/dim]'}")

    table = Table(title="Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")

    table.add_row("Discord token", _mask(config.discord.token))
    table.add_row("OpenAI API key", _mask(config.openai.api_key) if config.openai.api_key else "[dim]from OPENAI_API_KEY[/dim]")
    table.add_row("Assistant", config.openai.assistant_id or "[dim]not configured[/dim]")
    table.add_row("Vector store", config.openai.vector_store_id or "[dim]none[/dim]")
    table.add_row("Replay window", str(config.bridge.replay_window))
    table.add_row("Locale", config.bridge.locale)
    table.add_row("Idle sweep", f"every {IDLE_SWEEP_INTERVAL_S}s, ttl {IDLE_TTL_S}s")
    table.add_row("Archive idle threads", "✓" if config.reaper.with_archival else "✗")
    console.print(table)

    missing = config.missing_required()
    if missing:
        console.print(f"[yellow]Missing required settings: {', '.join(missing)}[/yellow]")


if __name__ == "__main__":
    app()
