"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from gptchat.errors import ApiError, ChatClientError, ErrorKind
from gptchat.llm.types import Message, ModelList

KIND_COLORS = {
    ErrorKind.API_ERROR: "red",
    ErrorKind.TIMEOUT: "yellow",
    ErrorKind.CANCELLED: "dim",
    ErrorKind.STREAM_PROTOCOL_ERROR: "magenta",
}


class OutputFormatter:
    """Rich-based output formatting for the gptchat CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_model_list(self, models: ModelList) -> None:
        if not models.data:
            self.console.print("[dim]No models available.[/dim]")
            return

        table = Table(title="Models")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Object", no_wrap=True)
        table.add_column("Owned by")

        for m in sorted(models.data, key=lambda m: m.id):
            table.add_row(m.id, m.object, m.owned_by or "")

        self.console.print(table)

    def format_reply(self, message: Message) -> None:
        if message.content:
            self.console.print(message.content)
        for tc in message.tool_calls or ():
            self.format_tool_call(tc.function.name, tc.function.arguments, tc.id)

    def format_tool_call(self, name: str, arguments: str, call_id: str | None = None) -> None:
        try:
            pretty = json.dumps(json.loads(arguments or "{}"), indent=2)
        except ValueError:
            pretty = arguments
        self.console.print(Panel(
            Syntax(pretty, "json", theme="monokai"),
            title=f"Tool call: {name}",
            subtitle=call_id or "",
        ))

    def format_error(self, error: Exception) -> None:
        if isinstance(error, ChatClientError):
            color = KIND_COLORS.get(error.kind, "red")
            label = error.kind.replace("_", " ")
            detail = ""
            if isinstance(error, ApiError) and error.status is not None:
                detail = f" (HTTP {error.status} {error.status_text or ''})".rstrip()
            self.console.print(f"[{color}]{label}{detail}:[/{color}] {error.message}")
        else:
            self.console.print(f"[red]error:[/red] {error}")

    def format_config(self, config: dict) -> None:
        self.console.print(Syntax(json.dumps(config, indent=2), "json", theme="monokai"))
