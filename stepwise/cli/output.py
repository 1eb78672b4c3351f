"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from stepwise.events.subscriber import EventSubscriber
from stepwise.llm.types import Message
from stepwise.tools.base import Tool

ROLE_COLORS = {
    "user": "blue",
    "assistant": "green",
    "tool": "cyan",
    "system": "dim",
}


class OutputFormatter:
    """Rich-based output formatting for the stepwise CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_tool_list(self, tools: list[Tool]) -> None:
        if not tools:
            self.console.print("[dim]No tools registered.[/dim]")
            return

        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Parameters", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            params = ", ".join(t.describe()["parameters"].get("properties", {})) or "-"
            table.add_row(t.name, params, t.description)

        self.console.print(table)

    def format_tool_info(self, tool: Tool) -> None:
        self.console.print(Panel(tool.description, title=f"Tool: {tool.name}"))
        schema_json = json.dumps(tool.describe()["parameters"], indent=2)
        self.console.print(Syntax(schema_json, "json", theme="monokai"))

    def format_history(self, messages: tuple[Message, ...] | list[Message]) -> None:
        if not messages:
            self.console.print("[dim]No messages yet.[/dim]")
            return

        for i, msg in enumerate(messages, 1):
            color = ROLE_COLORS.get(msg.role, "white")
            if msg.role == "tool":
                content = f"{msg.name or '?'} -> {msg.content[:100]}"
            elif msg.tool_calls:
                names = ", ".join(c.name for c in msg.tool_calls)
                content = f"{msg.content[:80]} [calls: {names}]".strip()
            else:
                content = msg.content[:100]
            if msg.image is not None:
                content += " [image]"
            self.console.print(f"  [{color}]{i:>3} {msg.role:>9s}[/{color}]  {content}")

    def format_config(self, config: dict) -> None:
        config_str = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_str, "json", theme="monokai"))


class ConsoleSubscriber(EventSubscriber):
    """
    Render orchestrator events on a terminal.

    Chunks are printed as they arrive; a ``response`` closes the current
    streamed line, or prints the text when nothing was streamed for it
    (non-streaming mode and tool-call segments without deltas).
    """

    def __init__(self, console: Console | None = None, markdown: bool = False) -> None:
        self.console = console or Console()
        self.markdown = markdown
        self._streamed = ""

    def on_thinking(self) -> None:
        self.console.print("[dim]thinking...[/dim]")

    def on_chunk(self, text: str) -> None:
        self._streamed += text
        self.console.print(text, end="", markup=False, highlight=False)

    def on_reset_accumulation(self) -> None:
        self._end_line()

    def on_tool_call(self, tool_name: str, arguments: dict) -> None:
        self._end_line()
        args = json.dumps(arguments, default=str)
        if len(args) > 120:
            args = args[:117] + "..."
        self.console.print(Text.assemble(("  -> ", "yellow"), (tool_name, "bold yellow"), f" {args}"))

    def on_tool_result(self, tool_name: str, result: Any) -> None:
        if hasattr(result, "success"):
            status = Text("OK", style="green") if result.success else Text("FAILED", style="red")
            body = result.render()
        else:
            status = Text("OK", style="green")
            body = str(result)
        first_line = body.splitlines()[0] if body else ""
        self.console.print(
            Text.assemble(("  <- ", "cyan"), (tool_name, "bold cyan"), " ", status, f": {first_line[:200]}")
        )

    def on_response(self, text: str) -> None:
        if self._streamed:
            self._end_line()
            return
        if self.markdown:
            self.console.print(Panel(Markdown(text), border_style="green"))
        else:
            self.console.print(text, markup=False, highlight=False)

    def on_error(self, error: BaseException | None) -> None:
        self._end_line()
        self.console.print(f"[red]Error:[/red] {error}", highlight=False)

    def on_conversation_reset(self) -> None:
        self._end_line()
        self.console.print("[dim]Conversation cleared.[/dim]")

    def _end_line(self) -> None:
        if self._streamed:
            self.console.print()
            self._streamed = ""
