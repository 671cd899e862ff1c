"""
Main CLI application for streamchat.

Usage:
    streamchat chat [--endpoint ID] [--profile NAME]
    streamchat send MESSAGE [--image PATH ...]
    streamchat config show|validate|test
    streamchat version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from streamchat import __version__
from streamchat.config import StreamChatConfig, load_config

app = typer.Typer(name="streamchat", help="Streaming chat client for OpenAI-compatible APIs")
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Return the first config file found in the usual places."""
    candidates = [
        Path.cwd() / "streamchat.yaml",
        Path.cwd() / "streamchat.yml",
        Path.home() / ".config" / "streamchat" / "config.yaml",
        Path.home() / ".streamchat" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load(profile: str | None = None, endpoint: str | None = None) -> StreamChatConfig:
    overrides = {"active": endpoint} if endpoint else None
    try:
        cfg = load_config(_get_config_path(), profile=profile, cli_overrides=overrides)
    except (TypeError, ValueError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)
    logging.basicConfig(
        level=cfg.logging.level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    return cfg


def _setup_stack(cfg: StreamChatConfig):
    """Wire up images, builder, client and credentials for the active endpoint."""
    from streamchat.credentials import EnvCredentialStore
    from streamchat.images import ImageStore
    from streamchat.llm.client import StreamingChatClient
    from streamchat.llm.request_builder import RequestBuilder
    from streamchat.llm.types import ImageDetail
    from streamchat.session import ChatSession

    try:
        endpoint = cfg.active_endpoint()
    except KeyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    images = ImageStore(cfg.images.storage_dir)
    builder = RequestBuilder(images, detail=ImageDetail(cfg.images.detail))
    client = StreamingChatClient(timeout=cfg.network.to_timeout())
    credentials = EnvCredentialStore(cfg.endpoints)

    session = ChatSession(
        endpoint=endpoint,
        client=client,
        builder=builder,
        credentials=credentials,
        max_image_count=cfg.images.max_image_count,
    )
    return session, images


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    endpoint: Optional[str] = typer.Option(None, help="Endpoint ID"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Start an interactive chat session."""
    from streamchat.cli.chat import ChatHandler
    from streamchat.llm.titles import TitleGenerator

    cfg = _load(profile, endpoint)
    session, images = _setup_stack(cfg)
    handler = ChatHandler(
        session,
        images,
        titles=TitleGenerator(timeout=cfg.network.to_timeout()),
        console=console,
    )
    asyncio.run(handler.run_loop())


@app.command()
def send(
    message: str = typer.Argument("", help="Message text"),
    image: Optional[List[Path]] = typer.Option(None, "--image", "-i", help="Image file to attach"),
    endpoint: Optional[str] = typer.Option(None, help="Endpoint ID"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Send one message and stream the reply."""
    from streamchat.cli.output import OutputFormatter

    cfg = _load(profile, endpoint)
    session, images = _setup_stack(cfg)
    formatter = OutputFormatter(console)

    try:
        attachments = [images.import_file(p) for p in image or []]
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    async def _run() -> bool:
        try:
            async for event in session.send(message, attachments):
                if event.delta:
                    console.print(event.delta, end="", markup=False)
                if event.error is not None:
                    console.print()
                    formatter.format_error(event.error)
                    return False
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            return False
        finally:
            await images.delete_many(a.id for a in attachments)
        console.print()
        return True

    if not asyncio.run(_run()):
        raise typer.Exit(1)


@config_app.command("show")
def config_show():
    """Show effective config."""
    from streamchat.cli.output import OutputFormatter

    cfg = _load()
    formatter = OutputFormatter(console)
    try:
        active_id = cfg.active_endpoint().id
    except KeyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    formatter.format_endpoint_list(cfg.endpoints, active_id)
    formatter.format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Check that the config loads and names a usable endpoint."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
        endpoint = cfg.active_endpoint()
        console.print("[green]Config is valid.[/green]")
        if config_path:
            console.print(f"  Loaded from: {config_path}")
        else:
            console.print("  [dim]No config file found, using defaults.[/dim]")
        console.print(f"  Active endpoint: {endpoint.name} ({endpoint.model_id})")
        console.print(f"  Endpoints: {len(cfg.endpoints)}")
        console.print(f"  Read timeout: {cfg.network.read_timeout_seconds}s")
    except (KeyError, TypeError, ValueError) as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)


@config_app.command("test")
def config_test(
    endpoint: Optional[str] = typer.Option(None, help="Endpoint ID"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Send a probe message to the endpoint and report the result."""
    from streamchat.cli.output import OutputFormatter
    from streamchat.session import probe_configuration

    cfg = _load(profile, endpoint)
    session, _images = _setup_stack(cfg)
    result = asyncio.run(
        probe_configuration(session.endpoint, session.client, session.builder, session.credentials)
    )
    OutputFormatter(console).format_test_result(result)
    if not result.successful:
        raise typer.Exit(1)


@app.command()
def version():
    """Show version."""
    console.print(f"streamchat v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
