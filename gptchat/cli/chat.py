"""Interactive chat session handler."""

from __future__ import annotations

import asyncio

from rich.console import Console

from gptchat.cli.output import OutputFormatter
from gptchat.errors import ChatClientError
from gptchat.llm.client import ChatClient
from gptchat.llm.types import Message


class ChatHandler:
    """
    Manages the interactive chat loop.

    Streams replies as they arrive and keeps the thread cursor so each turn
    continues from the previous reply.
    """

    def __init__(
        self,
        client: ChatClient,
        console: Console | None = None,
        stream: bool = True,
    ) -> None:
        self.client = client
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.stream = stream
        self.parent_id: str | None = None
        self._running = True
        self._printed = 0

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        cmd = command.strip().split(None, 1)[0].lower()

        if cmd in ("/quit", "/exit"):
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/new":
            self.parent_id = None
            self.console.print("[dim]Started a new thread.[/dim]")
            return True

        if cmd == "/clear":
            await self.client.clear_messages()
            self.parent_id = None
            self.console.print("[dim]History cleared.[/dim]")
            return True

        if cmd == "/help":
            self.console.print("  /new    start a new thread")
            self.console.print("  /clear  forget all stored messages")
            self.console.print("  /quit   leave")
            return True

        return False

    def _on_progress(self, partial: Message) -> None:
        content = partial.content or ""
        if len(content) > self._printed:
            self.console.print(content[self._printed:], end="", markup=False, highlight=False)
            self._printed = len(content)

    async def ask(self, text: str) -> Message | None:
        """Send one turn and print the reply.  Returns ``None`` on failure."""
        self._printed = 0
        try:
            if self.stream:
                reply = await self.client.send_message(
                    text, parent_id=self.parent_id, on_progress=self._on_progress
                )
                self.console.print()
                for tc in reply.tool_calls or ():
                    self.formatter.format_tool_call(tc.function.name, tc.function.arguments, tc.id)
            else:
                reply = await self.client.send_message(text, parent_id=self.parent_id)
                self.formatter.format_reply(reply)
        except ChatClientError as exc:
            if self._printed:
                self.console.print()
            self.formatter.format_error(exc)
            return None
        self.parent_id = reply.id
        return reply

    async def run_loop(self) -> None:
        self.console.print("[bold]gptchat[/bold] [dim](/help for commands)[/dim]")
        loop = asyncio.get_running_loop()
        while self._running:
            try:
                line = await loop.run_in_executor(None, lambda: input("\nYou: "))
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            line = line.strip()
            if not line:
                continue
            if line.startswith("/") and await self.handle_command(line):
                continue

            self.console.print("[bold cyan]AI:[/bold cyan] ", end="")
            await self.ask(line)
