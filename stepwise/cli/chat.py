"""Interactive chat session handler."""

from __future__ import annotations

import asyncio

from rich.console import Console

from stepwise.cli.output import ConsoleSubscriber, OutputFormatter
from stepwise.orchestrator.core import Orchestrator


class ChatHandler:
    """
    Manages the interactive chat loop.

    Output is rendered by a ``ConsoleSubscriber`` attached to the
    orchestrator's publisher; this class only reads input and runs tasks.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        console: Console | None = None,
        streaming: bool = True,
    ) -> None:
        self.orchestrator = orchestrator
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.subscriber = ConsoleSubscriber(self.console, markdown=not streaming)
        self.streaming = streaming
        self._running = True
        self._detach = self.subscriber.attach(orchestrator.publisher)

    @property
    def running(self) -> bool:
        return self._running

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        parts = command.strip().split(None, 1)
        cmd = parts[0].lower()

        if cmd in ("/quit", "/exit"):
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/reset":
            self.orchestrator.reset_conversation()
            return True

        if cmd == "/history":
            self.formatter.format_history(self.orchestrator.store.messages)
            return True

        if cmd == "/tools":
            self.formatter.format_tool_list(self.orchestrator.registry.list())
            return True

        if cmd == "/config":
            self.formatter.format_config(self.orchestrator.get_config())
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /quit     - Exit the chat\n"
                "  /reset    - Clear the conversation\n"
                "  /history  - Show the conversation so far\n"
                "  /tools    - List available tools\n"
                "  /config   - Show the active model binding\n"
                "  /help     - Show this help\n"
            )
            return True

        return False

    async def handle_input(self, user_input: str) -> None:
        """Run one task; everything the user sees arrives through events."""
        await self.orchestrator.run(user_input, streaming=self.streaming)

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            "[bold]Stepwise[/bold] - tool-calling assistant\n"
            "[dim]Type /help for commands, /quit to exit.[/dim]\n"
        )

        loop = asyncio.get_running_loop()
        try:
            while self._running:
                try:
                    user_input = await loop.run_in_executor(
                        None, lambda: input("you> ").strip()
                    )
                except (EOFError, KeyboardInterrupt):
                    self.console.print("\n[dim]Goodbye.[/dim]")
                    break

                if not user_input:
                    continue

                if user_input.startswith("/"):
                    handled = await self.handle_command(user_input)
                    if handled:
                        continue
                    self.console.print(f"[yellow]Unknown command:[/yellow] {user_input.split()[0]}")
                    continue

                await self.handle_input(user_input)
        finally:
            self._detach()
