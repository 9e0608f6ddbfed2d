"""Display helpers and formatters for the CLI.

Contains Rich formatting utilities for generation phases, costs, history
and outcome tables.
This module should NOT import from generator/cobbler modules to avoid circular imports.
"""
from __future__ import annotations

from typing import Any, Sequence

from rich.table import Table
from rich.text import Text

from cobbler_orchestrator.models import GenerationInfo, GenerationPhase, OutcomeRecord, RunOutcome

# Phase display names and colors
PHASE_DISPLAY: dict[GenerationPhase, tuple[str, str]] = {
    GenerationPhase.NOT_STARTED: ("Not Started", "dim"),
    GenerationPhase.RUNNING: ("Running", "cyan bold"),
    GenerationPhase.FINISHED: ("Finished", "yellow"),
    GenerationPhase.MERGED: ("Merged", "green"),
    GenerationPhase.ABANDONED: ("Abandoned", "magenta"),
}


def format_phase(phase: GenerationPhase) -> Text:
    """Format a phase enum as colored text."""
    display_name, style = PHASE_DISPLAY.get(phase, (phase.name, "white"))
    return Text(display_name, style=style)


def format_cost(cost_usd: float) -> str:
    """Format cost as a string with dollar sign."""
    if not cost_usd:
        return "-"
    return f"${cost_usd:.2f}"


def format_tokens(tokens: Any) -> str:
    if not isinstance(tokens, dict):
        return "-"
    total = sum(v for v in tokens.values() if isinstance(v, int))
    return f"{total:,}" if total else "-"


def generations_table(infos: Sequence[GenerationInfo]) -> Table:
    table = Table(title="Generations")
    table.add_column("", width=1)
    table.add_column("Generation", style="cyan")
    table.add_column("Phase")
    table.add_column("Tags", style="dim")
    for info in infos:
        table.add_row(
            "*" if info.current else "",
            info.name,
            format_phase(info.phase),
            ", ".join(info.tags) or "-",
        )
    return table


def history_table(records: Sequence[dict[str, Any]]) -> Table:
    """Table of invocation stats records, oldest first."""
    table = Table(title="Invocation History")
    table.add_column("Started", style="dim")
    table.add_column("Caller")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")

    total_cost = 0.0
    for record in records:
        status = record.get("status", "")
        style = "green" if status == "success" else "red"
        cost = record.get("cost") or 0.0
        total_cost += cost
        task = record.get("task_id") or "-"
        if record.get("task_title"):
            task = f"{task} {record['task_title']}"
        table.add_row(
            str(record.get("started_at", "")),
            str(record.get("caller", "")),
            task,
            Text(status, style=style),
            str(record.get("duration", "")),
            format_tokens(record.get("tokens")),
            format_cost(cost),
        )
    if records:
        table.add_section()
        table.add_row("", "", f"{len(records)} invocation(s)", "", "", "", format_cost(total_cost))
    return table


def format_duration(seconds: int) -> str:
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m{seconds:02d}s" if minutes else f"{seconds}s"


def outcomes_table(records: Sequence[OutcomeRecord]) -> Table:
    """Table of task outcomes read from merge commit trailers, oldest first."""
    table = Table(title="Task Outcomes")
    table.add_column("Task", style="cyan")
    table.add_column("Branch", style="dim")
    table.add_column("Tokens In", justify="right")
    table.add_column("Tokens Out", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Prod LOC", justify="right")
    table.add_column("Test LOC", justify="right")
    table.add_column("Duration", justify="right")

    total_cost = 0.0
    for record in records:
        total_cost += record.cost_usd
        table.add_row(
            record.task_id or "-",
            record.branch or "-",
            f"{record.tokens.input:,}",
            f"{record.tokens.output:,}",
            format_cost(record.cost_usd),
            f"{record.production_delta:+d}",
            f"{record.test_delta:+d}",
            format_duration(record.duration_s),
        )
    table.add_section()
    table.add_row(f"{len(records)} task(s)", "", "", "", format_cost(total_cost), "", "", "")
    return table


def run_summary(outcome: RunOutcome) -> str:
    parts = [
        f"{outcome.cycles} cycle(s)",
        f"{len(outcome.created)} task(s) created",
        f"{len(outcome.completed)} completed",
    ]
    if outcome.failed:
        parts.append(f"{len(outcome.failed)} failed")
    return ", ".join(parts)
