"""
Main CLI application for stepwise-core.

Usage:
    stepwise run TASK [--profile NAME] [--no-stream]
    stepwise chat [--profile NAME] [--no-stream]
    stepwise tools list
    stepwise config show|validate
    stepwise version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from stepwise.config import StepwiseConfig, load_config
from stepwise.errors import ConfigurationError

app = typer.Typer(name="stepwise", help="Stepwise - multi-step tool-calling agent")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()

__version__ = "0.1.0"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "stepwise.yaml",
        Path.cwd() / "stepwise.yml",
        Path.home() / ".config" / "stepwise" / "config.yaml",
        Path.home() / ".stepwise" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _load(
    config: Path | None,
    profile: str | None,
    model: str | None = None,
    max_iterations: int | None = None,
) -> StepwiseConfig:
    try:
        return load_config(
            config or _get_config_path(),
            profile=profile,
            cli_overrides={
                "llm.model": model,
                "orchestrator.max_iterations": max_iterations,
            },
        )
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


def _build(cfg: StepwiseConfig):
    from stepwise.orchestrator.factory import build_orchestrator

    try:
        return build_orchestrator(cfg)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

ConfigOpt = typer.Option(None, "--config", "-c", help="Path to a YAML config file")
ProfileOpt = typer.Option(None, help="Config profile name")
VerboseOpt = typer.Option(False, "--verbose", "-v", help="Debug logging")


@app.command()
def run(
    task: str = typer.Argument(..., help="Task for the agent"),
    config: Optional[Path] = ConfigOpt,
    profile: Optional[str] = ProfileOpt,
    model: Optional[str] = typer.Option(None, help="Override llm.model"),
    max_iterations: Optional[int] = typer.Option(None, help="Override orchestrator.max_iterations"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Stream output"),
    verbose: bool = VerboseOpt,
):
    """Run a single task and exit."""
    from stepwise.cli.output import ConsoleSubscriber

    _setup_logging(verbose)
    cfg = _load(config, profile, model, max_iterations)
    streaming = cfg.orchestrator.streaming if stream is None else stream
    orchestrator = _build(cfg)

    failed: list[bool] = []
    ConsoleSubscriber(console, markdown=not streaming).attach(orchestrator.publisher)
    orchestrator.publisher.subscribe(lambda e: failed.append(True) if e.kind == "error" else None)

    async def _run():
        try:
            await orchestrator.run(task, streaming=streaming)
        finally:
            await orchestrator.router.aclose()

    asyncio.run(_run())
    if failed:
        raise typer.Exit(1)


@app.command()
def chat(
    config: Optional[Path] = ConfigOpt,
    profile: Optional[str] = ProfileOpt,
    model: Optional[str] = typer.Option(None, help="Override llm.model"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Stream output"),
    verbose: bool = VerboseOpt,
):
    """Start an interactive chat session."""
    from stepwise.cli.chat import ChatHandler

    _setup_logging(verbose)
    cfg = _load(config, profile, model)
    streaming = cfg.orchestrator.streaming if stream is None else stream
    orchestrator = _build(cfg)
    handler = ChatHandler(orchestrator, console=console, streaming=streaming)

    async def _run():
        try:
            await handler.run_loop()
        finally:
            await orchestrator.router.aclose()

    asyncio.run(_run())


@tools_app.command("list")
def tools_list(
    config: Optional[Path] = ConfigOpt,
    profile: Optional[str] = ProfileOpt,
):
    """List tools available to the agent (plugins included when enabled)."""
    from stepwise.cli.output import OutputFormatter
    from stepwise.tools.registry import ToolRegistry

    cfg = _load(config, profile)
    registry = ToolRegistry()
    registry.load_plugins(
        enabled=cfg.plugins.enabled,
        allow_distributions=set(cfg.plugins.allow_distributions) or None,
        allow_tools=set(cfg.plugins.allow_tools) or None,
    )
    OutputFormatter(console).format_tool_list(registry.list())


@config_app.command("show")
def config_show(
    config: Optional[Path] = ConfigOpt,
    profile: Optional[str] = ProfileOpt,
):
    """Show effective config."""
    from stepwise.cli.output import OutputFormatter

    cfg = _load(config, profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(
    config: Optional[Path] = ConfigOpt,
    profile: Optional[str] = ProfileOpt,
):
    """Validate config and report the first problem found."""
    config_path = config or _get_config_path()
    try:
        cfg = load_config(config_path, profile=profile)
    except ConfigurationError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  LLM provider: {cfg.llm.name} ({cfg.llm.model})")
    console.print(f"  Max iterations: {cfg.orchestrator.max_iterations}")
    console.print(f"  Plugins enabled: {cfg.plugins.enabled}")


@app.command()
def version():
    """Show version."""
    console.print(f"stepwise-core v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
