"""Generation lifecycle commands.

Commands for starting, running, resuming, stopping, switching, listing
and resetting generations.
"""
from __future__ import annotations

from typing import Optional

import typer

from cobbler_orchestrator.cli.common import build_manager, fail, get_console, load_config_or_exit
from cobbler_orchestrator.cli.display import generations_table, run_summary
from cobbler_orchestrator.errors import CobblerError

# Create generator command group
app = typer.Typer(
    name="generator",
    help="Generation lifecycle commands",
    no_args_is_help=True,
)

console = get_console()


@app.command()
def start() -> None:
    """
    Start a new generation from the current branch.

    Tags the current state, creates the generation branch and resets the
    issue store for it.
    """
    config = load_config_or_exit()
    manager = build_manager(config)
    try:
        generation = manager.start()
    except CobblerError as e:
        fail(e)

    console.print(f"[green]Started generation:[/green] {generation.name}")
    console.print(f"  [dim]Base branch:[/dim] {generation.base_branch}")
    console.print(f"  [dim]Start tag:[/dim] {generation.start_tag}")


@app.command()
def run(
    cycles: Optional[int] = typer.Option(
        None,
        "--cycles",
        "-n",
        help="Measure/stitch cycles to run (default: generation.cycles, 0 = until done).",
    ),
) -> None:
    """Run measure/stitch cycles on the current generation."""
    config = load_config_or_exit()
    manager = build_manager(config)
    try:
        outcome = manager.run(cycles)
    except CobblerError as e:
        fail(e)

    console.print(f"[green]Run complete:[/green] {run_summary(outcome)}")
    if outcome.failed:
        console.print(f"  [yellow]Failed tasks (back to ready):[/yellow] {', '.join(outcome.failed)}")


@app.command()
def resume() -> None:
    """
    Recover an interrupted generation, finish its backlog and stop it.

    Uses generation.branch when configured, otherwise the only generation branch.
    """
    config = load_config_or_exit()
    manager = build_manager(config)
    try:
        outcome, generation = manager.resume()
    except CobblerError as e:
        fail(e)

    console.print(f"[green]Resumed and merged:[/green] {generation.name} -> {generation.base_branch}")
    console.print(f"  {run_summary(outcome)}")


@app.command()
def stop() -> None:
    """Merge the current generation into its base branch and retire it."""
    config = load_config_or_exit()
    manager = build_manager(config)
    try:
        generation = manager.stop()
    except CobblerError as e:
        fail(e)

    console.print(f"[green]Merged generation:[/green] {generation.name} -> {generation.base_branch}")
    console.print(f"  [dim]Tags:[/dim] {generation.finished_tag}, {generation.merged_tag}")


@app.command()
def switch(
    branch: str = typer.Argument(..., help="Generation branch or base branch to check out."),
) -> None:
    """Save outstanding work and switch to another generation or the base branch."""
    config = load_config_or_exit()
    manager = build_manager(config)
    try:
        manager.switch(branch)
    except CobblerError as e:
        fail(e)

    console.print(f"[green]On branch:[/green] {branch}")


@app.command("list")
def list_generations() -> None:
    """List generations found in branches and lifecycle tags."""
    config = load_config_or_exit()
    manager = build_manager(config)
    try:
        infos = manager.list()
    except CobblerError as e:
        fail(e)

    if not infos:
        console.print("[dim]No generations found.[/dim]")
        return
    console.print(generations_table(infos))


@app.command()
def reset(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip the confirmation prompt.",
    ),
) -> None:
    """
    Destroy every generation and return to a clean base branch.

    Deletes generation branches, task branches, worktrees and generated
    source directories. Unmerged generations keep an -abandoned tag.
    """
    if not force:
        confirm = typer.confirm("This deletes all generation branches and generated sources. Continue?")
        if not confirm:
            console.print("[dim]Cancelled.[/dim]")
            raise typer.Exit(0)

    config = load_config_or_exit()
    manager = build_manager(config)
    try:
        changed = manager.reset()
    except CobblerError as e:
        fail(e)

    if changed:
        console.print("[green]Reset complete.[/green]")
    else:
        console.print("[dim]Nothing to reset.[/dim]")
