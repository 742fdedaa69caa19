"""
Main CLI application for gptchat.

Usage:
    gptchat chat [--profile NAME] [--no-stream]
    gptchat ask QUESTION [--no-stream]
    gptchat models
    gptchat config show
    gptchat version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from gptchat import __version__
from gptchat.config import GptChatConfig, load_config
from gptchat.errors import ChatClientError

app = typer.Typer(name="gptchat", help="Chat with an OpenAI-compatible API")
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "gptchat.yaml",
        Path.cwd() / "gptchat.yml",
        Path.home() / ".config" / "gptchat" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load(
    profile: str | None,
    model: str | None = None,
    markdown: bool | None = None,
    debug: bool = False,
) -> GptChatConfig:
    overrides: dict[str, Any] = {}
    if model:
        overrides["request.model"] = model
    if markdown is not None:
        overrides["conversation.markdown_to_html"] = markdown
    if debug:
        overrides["client.debug"] = True
    cfg = load_config(_get_config_path(), profile=profile, cli_overrides=overrides)
    _setup_logging(cfg.client.debug)
    return cfg


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    model: Optional[str] = typer.Option(None, help="Model to request"),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Stream replies"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
):
    """Start an interactive chat session."""
    from gptchat.cli.chat import ChatHandler
    from gptchat.llm.client import ChatClient

    cfg = _load(profile, model, markdown=False, debug=debug)

    async def _run():
        handler = ChatHandler(ChatClient.from_config(cfg), console, stream=stream)
        await handler.run_loop()

    asyncio.run(_run())


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to send"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    model: Optional[str] = typer.Option(None, help="Model to request"),
    system: Optional[str] = typer.Option(None, help="System message for this call"),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Stream the reply"),
    html: bool = typer.Option(False, "--html", help="Render the reply as HTML"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
):
    """Ask a single question and print the reply."""
    from gptchat.cli.chat import ChatHandler
    from gptchat.cli.output import OutputFormatter
    from gptchat.llm.client import ChatClient

    cfg = _load(profile, model, markdown=html, debug=debug)
    if system:
        cfg.set_override("conversation.system_message", system)

    async def _run() -> bool:
        client = ChatClient.from_config(cfg)
        if stream and not html:
            handler = ChatHandler(client, console, stream=True)
            return await handler.ask(question) is not None
        try:
            reply = await client.send_message(question)
        except ChatClientError as exc:
            OutputFormatter(console).format_error(exc)
            return False
        OutputFormatter(console).format_reply(reply)
        return True

    if not asyncio.run(_run()):
        raise typer.Exit(1)


@app.command()
def models(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
):
    """List the models available to the configured key."""
    from gptchat.cli.output import OutputFormatter
    from gptchat.llm.client import ChatClient

    cfg = _load(profile, debug=debug)
    formatter = OutputFormatter(console)

    async def _run():
        return await ChatClient.from_config(cfg).get_models()

    try:
        result = asyncio.run(_run())
    except ChatClientError as exc:
        formatter.format_error(exc)
        raise typer.Exit(1)
    formatter.format_model_list(result)


@config_app.command("show")
def config_show(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Show effective config."""
    from gptchat.cli.output import OutputFormatter

    cfg = load_config(_get_config_path(), profile=profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@app.command()
def version():
    """Show version."""
    console.print(f"gptchat v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
