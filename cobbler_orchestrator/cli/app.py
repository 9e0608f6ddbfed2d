"""Main Typer app definition and routing.

This is the canonical entry point for the CLI. The app, callback, and
sub-app registrations are all defined here.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from cobbler_orchestrator import __version__
from cobbler_orchestrator.cli.common import get_console, project_root, set_project_dir

# Create Typer app
app = typer.Typer(
    name="cobbler",
    help="Autonomous code generation in isolated generations - run from the project directory",
    add_completion=False,
)

# Rich console for output - use singleton from common module
console = get_console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"cobbler version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    project: Optional[str] = typer.Option(
        None,
        "--project",
        "-p",
        help="Project directory to operate on (default: current directory)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Cobbler - measure/stitch orchestrator for AI-generated code.

    Runs an AI coding agent in a sandbox against a git repository: measure
    proposes tasks, stitch executes them in isolated worktrees, and
    generations keep each attempt on its own branch.
    """
    if project:
        # Validate that the project directory exists
        project_path = Path(project)
        if not project_path.is_dir():
            console.print(f"[red]Error: Project directory not found: {project}[/red]")
            raise typer.Exit(1)
        set_project_dir(str(project_path.absolute()))

    # If no subcommand and no --help, show help
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


@app.command()
def init() -> None:
    """
    Write a default config.yaml and the .cobbler directory.

    Existing files are left untouched.
    """
    from cobbler_orchestrator.config import CONFIG_FILENAME, ConfigError, load_config, write_default_config
    from cobbler_orchestrator.utils.fs import ensure_dir

    root = project_root()
    config_path = root / CONFIG_FILENAME
    try:
        write_default_config(config_path)
        console.print(f"[green]Created[/green] {config_path}")
    except ConfigError:
        console.print(f"[dim]{CONFIG_FILENAME} already exists[/dim]")

    try:
        config = load_config(repo_root=root)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    ensure_dir(config.cobbler_path)
    ignore_file = config.cobbler_path / ".gitignore"
    if not ignore_file.exists():
        ignore_file.write_text("logs/\n", encoding="utf-8")
        console.print(f"[green]Created[/green] {ignore_file}")


# =========================================================================
# Sub-App Registration
# =========================================================================

# Import and register generation lifecycle commands
from cobbler_orchestrator.cli.generator import app as generator_app  # noqa: E402

app.add_typer(generator_app, name="generator")

# Import and register measure/stitch commands
from cobbler_orchestrator.cli.cobbler import app as cobbler_app  # noqa: E402

app.add_typer(cobbler_app, name="cobbler")


# =========================================================================
# Entry Point
# =========================================================================


def cli_main() -> None:
    """Entry point for the CLI."""
    app()


__all__ = ["app", "cli_main"]
