"""Measure and stitch commands.

These run a single phase on the current branch (or the resolved
generation branch) without the surrounding lifecycle.
"""
from __future__ import annotations

from typing import Optional

import typer

from cobbler_orchestrator.cli.common import build_workflow, fail, get_console, load_config_or_exit
from cobbler_orchestrator.cli.display import history_table, outcomes_table
from cobbler_orchestrator.errors import CobblerError

# Create cobbler command group
app = typer.Typer(
    name="cobbler",
    help="Measure and stitch commands",
    no_args_is_help=True,
)

console = get_console()


@app.command()
def measure() -> None:
    """Ask the agent for new tasks and import them into the issue store."""
    config = load_config_or_exit()
    workflow = build_workflow(config)
    try:
        outcome = workflow.measure()
    except CobblerError as e:
        fail(e)

    console.print(f"[green]Measure complete:[/green] {len(outcome.created)} task(s) created")
    for task_id in outcome.created:
        console.print(f"  {task_id}")
    if outcome.discarded:
        console.print(f"  [dim]{outcome.discarded} proposal(s) over the limit were discarded[/dim]")


@app.command()
def stitch(
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        help="Maximum tasks to complete (default: stitch.max_per_cycle, 0 = no limit).",
    ),
) -> None:
    """Execute ready tasks in isolated worktrees and merge the results."""
    config = load_config_or_exit()
    workflow = build_workflow(config)
    try:
        outcome = workflow.stitch(limit)
    except CobblerError as e:
        fail(e)

    console.print(f"[green]Stitch complete:[/green] {outcome.summary}")
    if outcome.failed:
        console.print(f"  [yellow]Failed tasks (back to ready):[/yellow] {', '.join(outcome.failed)}")


@app.command()
def prompt() -> None:
    """Print the measure prompt without invoking the agent."""
    config = load_config_or_exit()
    workflow = build_workflow(config)
    try:
        text = workflow.measure_prompt()
    except CobblerError as e:
        fail(e)
    # Plain output so the prompt can be piped
    print(text)


@app.command()
def history() -> None:
    """Show recorded agent invocations."""
    config = load_config_or_exit()
    workflow = build_workflow(config)
    records = workflow.history.read_stats()
    if not records:
        console.print("[dim]No invocations recorded.[/dim]")
        return
    console.print(history_table(records))


@app.command()
def outcomes() -> None:
    """Show per-task outcomes recorded on merge commits."""
    from cobbler_orchestrator.outcomes import collect_outcomes

    config = load_config_or_exit()
    workflow = build_workflow(config)
    try:
        records = collect_outcomes(workflow.repo)
    except CobblerError as e:
        fail(e)
    if not records:
        console.print("[dim]No outcome records found.[/dim]")
        return
    console.print(outcomes_table(records))
