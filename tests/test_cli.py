"""Tests for the terminal front end."""

from __future__ import annotations

import io

import pytest
from rich.console import Console
from typer.testing import CliRunner

from stepwise.cli import app as cli_app
from stepwise.cli.chat import ChatHandler
from stepwise.cli.output import ConsoleSubscriber
from stepwise.conversation.store import ConversationStore
from stepwise.events import EventPublisher
from stepwise.llm.token_counter import TokenCounter
from stepwise.llm.types import StepFinish, StreamError, TextDelta, ToolCall
from stepwise.orchestrator.core import Orchestrator
from stepwise.tools.registry import ToolRegistry
from stepwise.types import ErrorCode, ToolResult
from tests.mock_providers import ScriptedRouter
from tests.mock_tools import FsListTool

runner = CliRunner()


def _console() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    return Console(file=buf, force_terminal=False, width=120, color_system=None), buf


def _orchestrator(attempts) -> Orchestrator:
    registry = ToolRegistry()
    registry.register(FsListTool())
    store = ConversationStore(TokenCounter(None), 8000, 1000)
    return Orchestrator(store, registry, ScriptedRouter(attempts), EventPublisher())


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


class TestConsoleSubscriber:
    def test_streamed_chunks_and_tool_lines(self):
        console, buf = _console()
        pub = EventPublisher()
        ConsoleSubscriber(console).attach(pub)

        pub.thinking()
        pub.chunk("I'll ")
        pub.chunk("check.")
        pub.response("I'll check.")
        pub.tool_call("fs.list", {"path": "."})
        pub.reset_accumulation()
        pub.tool_result("fs.list", ToolResult(success=True, content='["a.txt"]'))

        out = buf.getvalue()
        assert "thinking..." in out
        assert "I'll check.\n" in out
        assert "-> fs.list" in out
        assert '<- fs.list OK: ["a.txt"]' in out

    def test_unstreamed_response_is_printed(self):
        console, buf = _console()
        pub = EventPublisher()
        ConsoleSubscriber(console).attach(pub)
        pub.response("plain answer")
        assert "plain answer" in buf.getvalue()

    def test_failed_result_and_error(self):
        console, buf = _console()
        pub = EventPublisher()
        ConsoleSubscriber(console).attach(pub)
        pub.tool_result("fs.list", ToolResult.failure(ErrorCode.TIMEOUT, "Timeout after 1s"))
        pub.error(RuntimeError("provider down"))
        out = buf.getvalue()
        assert "FAILED" in out
        assert "[Error: timeout]" in out
        assert "Error: provider down" in out


class TestChatHandler:
    async def test_commands(self):
        console, buf = _console()
        orch = _orchestrator([[StepFinish(text="hello")]])
        handler = ChatHandler(orch, console=console)

        await handler.handle_input("hi")
        assert await handler.handle_command("/history") is True
        assert await handler.handle_command("/tools") is True
        assert await handler.handle_command("/config") is True
        assert await handler.handle_command("/reset") is True
        assert len(orch.store) == 0
        assert await handler.handle_command("/bogus") is False
        assert await handler.handle_command("/quit") is True
        assert handler.running is False

        out = buf.getvalue()
        assert "hello" in out
        assert "fs.list" in out
        assert "Conversation cleared." in out
        assert '"model": "scripted"' in out


class TestApp:
    def test_version(self):
        result = runner.invoke(cli_app.app, ["version"])
        assert result.exit_code == 0
        assert "stepwise-core v" in result.output

    def test_config_validate_ok(self, isolated_cwd):
        path = isolated_cwd / "stepwise.yaml"
        path.write_text("orchestrator:\n  max_iterations: 5\n", encoding="utf-8")
        result = runner.invoke(cli_app.app, ["config", "validate"])
        assert result.exit_code == 0
        assert "Config is valid" in result.output
        assert "Max iterations: 5" in result.output

    def test_config_validate_failure(self, isolated_cwd):
        path = isolated_cwd / "bad.yaml"
        path.write_text("orchestrator:\n  max_iterations: 0\n", encoding="utf-8")
        result = runner.invoke(cli_app.app, ["config", "validate", "--config", str(path)])
        assert result.exit_code == 1
        assert "max_iterations" in result.output

    def test_config_show(self):
        result = runner.invoke(cli_app.app, ["config", "show"])
        assert result.exit_code == 0
        assert '"max_iterations": 20' in result.output

    def test_tools_list_without_plugins(self):
        result = runner.invoke(cli_app.app, ["tools", "list"])
        assert result.exit_code == 0
        assert "No tools registered" in result.output

    def test_run_prints_answer(self, monkeypatch):
        orch = _orchestrator(
            [
                [StepFinish(text="Looking.", tool_calls=(ToolCall("c1", "fs.list", {"path": "."}),))],
                [StepFinish(text="Found a.txt")],
            ]
        )
        monkeypatch.setattr(cli_app, "_build", lambda cfg: orch)

        result = runner.invoke(cli_app.app, ["run", "list files", "--no-stream"])

        assert result.exit_code == 0, result.output
        assert "Found a.txt" in result.output
        assert "fs.list" in result.output

    def test_run_exits_nonzero_on_error(self, monkeypatch):
        orch = _orchestrator([[TextDelta("x"), StreamError("quota exceeded")]])
        monkeypatch.setattr(cli_app, "_build", lambda cfg: orch)

        result = runner.invoke(cli_app.app, ["run", "hi", "--stream"])

        assert result.exit_code == 1
        assert "quota exceeded" in result.output
