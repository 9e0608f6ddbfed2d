"""Common utilities and global state for the CLI.

Contains project directory management, config loading, and the factories
that wire the git, issue-store and agent adapters together.
This module should NOT import from generator/cobbler modules to avoid circular imports.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, NoReturn, Optional

import typer
from rich.console import Console

if TYPE_CHECKING:
    from cobbler_orchestrator.config import CobblerConfig
    from cobbler_orchestrator.lifecycle import GenerationManager
    from cobbler_orchestrator.logger import CobblerLogger
    from cobbler_orchestrator.workflow import CobblerWorkflow

# ============================================================================
# Global State
# ============================================================================

# Global project directory override (set via --project flag)
_project_dir: Optional[str] = None

# Console singleton
_console: Optional[Console] = None


def get_project_dir() -> Optional[str]:
    """Get the project directory override if set."""
    return _project_dir


def set_project_dir(path: Optional[str]) -> None:
    """Set the project directory override."""
    global _project_dir
    _project_dir = path


def get_console() -> Console:
    """Get or create the console singleton."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def project_root() -> Path:
    return Path(get_project_dir() or ".").absolute()


# ============================================================================
# Config Helpers
# ============================================================================


def load_config_or_exit() -> "CobblerConfig":
    """Load config.yaml from the project root; print the error and exit on failure."""
    from cobbler_orchestrator.config import ConfigError, load_config

    try:
        return load_config(repo_root=project_root())
    except ConfigError as e:
        get_console().print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


def fail(error: Exception) -> NoReturn:
    """Print an operation error and exit with status 1."""
    from cobbler_orchestrator.errors import AgentError, AmbiguousGenerationError

    console = get_console()
    console.print(f"[red]Error:[/red] {error}")
    if isinstance(error, AmbiguousGenerationError) and error.candidates:
        console.print("  Set generation.branch in config.yaml to one of:")
        for candidate in error.candidates:
            console.print(f"    {candidate}")
    if isinstance(error, AgentError) and error.requires_user_action:
        console.print("[yellow]The agent needs attention before retrying (credentials or sandbox).[/yellow]")
    raise typer.Exit(1)


# ============================================================================
# Component Factories
# ============================================================================


def get_cli_logger(config: "CobblerConfig") -> "CobblerLogger":
    from cobbler_orchestrator.logger import get_logger

    return get_logger("cobbler", config.logs_path)


def build_workflow(config: "CobblerConfig") -> "CobblerWorkflow":
    """Wire the real adapters into a CobblerWorkflow."""
    from cobbler_orchestrator.agent import PodmanClaudeAgent
    from cobbler_orchestrator.git import GitRepository
    from cobbler_orchestrator.issues import BeadsIssueStore
    from cobbler_orchestrator.workflow import CobblerWorkflow

    logger = get_cli_logger(config)
    repo = GitRepository(config.root_path, config.git.binary, logger)
    store = BeadsIssueStore(config.root_path, config.issues.binary, config.issues.beads_dir, logger)
    agent = PodmanClaudeAgent(config, logger)
    return CobblerWorkflow(config, repo, store, agent, logger=logger)


def build_manager(config: "CobblerConfig") -> "GenerationManager":
    """Wire a GenerationManager sharing the workflow's adapters."""
    from cobbler_orchestrator.lifecycle import GenerationManager

    workflow = build_workflow(config)
    return GenerationManager(
        config,
        workflow.repo,
        workflow.store,
        workflow=workflow,
        logger=get_cli_logger(config),
    )
