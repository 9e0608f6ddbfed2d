"""
Task outcome trailers.

Each merged task leaves its metrics as git trailers on the merge commit:

    Merge cob-3: Widget model

    Task-Id: cob-3
    Task-Branch: task/generation-2026-03-14-09-30-00-cob-3
    Tokens-Input: 1200
    ...

History files are pruned from the base branch at stop; the trailers stay
in the commit graph, so outcomes can be reported from any branch.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Optional

from cobbler_orchestrator.models import InvocationRecord, LocSnapshot, OutcomeRecord, TokenUsage

if TYPE_CHECKING:
    from cobbler_orchestrator.git import Repository


_TRAILER_RE = re.compile(r"^([A-Za-z][A-Za-z0-9-]*): (.*)$")

# Presence of this key marks a commit as a task outcome
MARKER = "Tokens-Input"


def format_trailers(record: InvocationRecord, branch: str) -> str:
    """Render the trailer block for a successful stitch record."""
    loc_before = record.loc_before or LocSnapshot()
    loc_after = record.loc_after or LocSnapshot()
    lines = [
        ("Task-Id", record.task_id),
        ("Task-Branch", branch),
        ("Tokens-Input", record.tokens.input),
        ("Tokens-Output", record.tokens.output),
        ("Tokens-Cache-Creation", record.tokens.cache_creation),
        ("Tokens-Cache-Read", record.tokens.cache_read),
        ("Tokens-Cost-USD", f"{record.cost_usd:.6f}"),
        ("Loc-Prod-Before", loc_before.production),
        ("Loc-Prod-After", loc_after.production),
        ("Loc-Test-Before", loc_before.test),
        ("Loc-Test-After", loc_after.test),
        ("Duration-Seconds", int(round(record.duration_s))),
    ]
    return "\n".join(f"{key}: {value}" for key, value in lines)


def commit_message(subject: str, record: InvocationRecord, branch: str) -> str:
    return f"{subject}\n\n{format_trailers(record, branch)}"


def parse_trailers(message: str) -> dict[str, str]:
    """Key/value trailers from the last paragraph of a commit message."""
    paragraphs = [p for p in message.strip().split("\n\n") if p.strip()]
    if len(paragraphs) < 2:
        return {}
    trailers = {}
    for line in paragraphs[-1].splitlines():
        match = _TRAILER_RE.match(line.strip())
        if match:
            trailers[match.group(1)] = match.group(2).strip()
    return trailers


def _int(trailers: dict[str, str], key: str) -> int:
    try:
        return int(trailers.get(key, "0"))
    except ValueError:
        return 0


def _float(trailers: dict[str, str], key: str) -> float:
    try:
        return float(trailers.get(key, "0"))
    except ValueError:
        return 0.0


def parse_outcome(message: str) -> Optional[OutcomeRecord]:
    """An OutcomeRecord for a task merge commit, None for any other commit."""
    trailers = parse_trailers(message)
    if MARKER not in trailers:
        return None
    return OutcomeRecord(
        task_id=trailers.get("Task-Id", ""),
        branch=trailers.get("Task-Branch", ""),
        tokens=TokenUsage(
            input=_int(trailers, "Tokens-Input"),
            output=_int(trailers, "Tokens-Output"),
            cache_creation=_int(trailers, "Tokens-Cache-Creation"),
            cache_read=_int(trailers, "Tokens-Cache-Read"),
        ),
        cost_usd=_float(trailers, "Tokens-Cost-USD"),
        loc_before=LocSnapshot(
            production=_int(trailers, "Loc-Prod-Before"),
            test=_int(trailers, "Loc-Test-Before"),
        ),
        loc_after=LocSnapshot(
            production=_int(trailers, "Loc-Prod-After"),
            test=_int(trailers, "Loc-Test-After"),
        ),
        duration_s=_int(trailers, "Duration-Seconds"),
    )


def collect_outcomes(repo: Repository) -> list[OutcomeRecord]:
    """Outcome records from every commit reachable from any ref, oldest first."""
    records = []
    for message in reversed(repo.commit_messages()):
        record = parse_outcome(message)
        if record is not None:
            records.append(record)
    return records
