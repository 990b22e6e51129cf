"""CLI interface for ravel."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ravel import __version__
from ravel.config import Config, get_ravel_dir
from ravel.core.errors import ContentRootError, RunSetupError
from ravel.core.models import Agent, Bundle
from ravel.core.orchestrator import RunOrchestrator
from ravel.core.registry import BundleRegistry
from ravel.core.reporting import RunReporter
from ravel.runners.resolver import AGENT_PRIORITY, AgentResolver

EXIT_ABORTED = 1
EXIT_USAGE = 2

app = typer.Typer(
    name="ravel",
    help="Run project audits as a sequence of isolated AI agent steps.",
    no_args_is_help=True,
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _parse_agent(value: str | None) -> Agent | None:
    if value is None:
        return None
    try:
        return Agent(value.lower())
    except ValueError:
        valid = ", ".join(a.value for a in Agent)
        console.print(f"[red]Unknown agent: {value}. Valid agents: {valid}[/red]")
        raise typer.Exit(EXIT_USAGE) from None


def _confirm_follow_up(bundle: Bundle) -> bool:
    console.print()
    return typer.confirm(f"Run the {bundle.display_name} now?", default=False)


@app.command()
def run(
    code: Annotated[str, typer.Argument(help="Bundle code, e.g. fh, nh, sa")],
    agent: Annotated[
        str | None,
        typer.Option("--agent", "-a", help="AI CLI to use: claude, cursor, gemini (auto-detected by default)"),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option("--model", "-m", help="Model passed to the AI CLI"),
    ] = None,
    skip_validation: Annotated[
        bool,
        typer.Option("--skip-validation", help="Do not check the project type before running"),
    ] = False,
    no_preflight: Annotated[
        bool,
        typer.Option("--no-preflight", help="Let the AI agent handle setup and test steps too"),
    ] = False,
    project: Annotated[
        Path | None,
        typer.Option("--project", "-p", help="Project root (default: current directory)", file_okay=False),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file (default: .ravel/config.yaml)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Run an audit bundle against the current project."""
    _setup_logging(verbose)

    project_root = (project or Path.cwd()).resolve()
    config = Config.load(config_path or project_root / ".ravel" / "config.yaml")
    updates: dict[str, bool] = {}
    if skip_validation:
        updates["validate_project"] = False
    if no_preflight:
        updates["preflight"] = False
    if updates:
        config = config.model_copy(update=updates)

    selected_agent = _parse_agent(agent)
    registry = BundleRegistry()
    bundle = registry.find_by_code(code)
    if bundle is None:
        codes = ", ".join(b.code for b in registry.runnable)
        console.print(f"[red]Unknown bundle code: {code}. Available: {codes}[/red]")
        raise typer.Exit(EXIT_USAGE)

    orchestrator = RunOrchestrator(
        project_root,
        config=config,
        registry=registry,
        reporter=RunReporter(console),
        confirm=_confirm_follow_up,
    )

    try:
        outcomes = asyncio.run(orchestrator.run_with_follow_up(bundle, selected_agent, model))
    except RunSetupError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_USAGE if e.usage else EXIT_ABORTED) from e
    except ContentRootError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_ABORTED) from e
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        raise typer.Exit(130) from None

    if any(outcome.summary.aborted for outcome in outcomes):
        raise typer.Exit(EXIT_ABORTED)


@app.command()
def bundles() -> None:
    """List runnable audit bundles."""
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Code", style="cyan")
    table.add_column("Bundle")
    table.add_column("Technology")

    for bundle in BundleRegistry().runnable:
        table.add_row(bundle.code, bundle.display_name, bundle.tech_prefix)

    console.print(table)


@app.command()
def agents() -> None:
    """List AI CLIs found on PATH and the models each accepts."""
    resolver = AgentResolver()
    detected = resolver.detect_all()

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Agent", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Models")

    for agent in AGENT_PRIORITY:
        status = "[green]installed[/green]" if agent in detected else "[dim]not found[/dim]"
        table.add_row(agent.value, status, ", ".join(resolver.models(agent)))

    console.print(table)
    if not detected:
        console.print()
        console.print(f"[yellow]{resolver.missing_agent_message()}[/yellow]")


@app.command()
def init(
    project: Annotated[
        Path | None,
        typer.Option("--project", "-p", help="Project root (default: current directory)", file_okay=False),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing config file"),
    ] = False,
) -> None:
    """Write a default .ravel/config.yaml."""
    config_file = get_ravel_dir(project) / "config.yaml"
    if config_file.exists() and not force:
        console.print(f"[yellow]Config already exists: {config_file}[/yellow] (use --force to overwrite)")
        raise typer.Exit(EXIT_ABORTED)

    Config().save(config_file)
    console.print(f"[green]Wrote {config_file}[/green]")


@app.command()
def version() -> None:
    """Show the ravel version."""
    console.print(f"ravel {__version__}")


if __name__ == "__main__":
    app()
