"""
Core data models for Cobbler.

This module defines the data structures shared by the orchestration layers:
- Enums for generation phases and task statuses
- Task, TaskDescription and ProposedTask for the backlog
- Workspace, AgentResult and InvocationRecord for task execution
- ProjectContext for the bounded material sent to the agent
- Outcome dataclasses returned by measure, stitch and run
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Any, Optional

import yaml


class GenerationPhase(Enum):
    """
    Phases of a generation, derived from branches and lifecycle tags.

    NOT_STARTED -> RUNNING -> FINISHED -> MERGED; RESET marks leftovers
    of never-merged generations as ABANDONED.
    """
    NOT_STARTED = auto()
    RUNNING = auto()                 # Generation branch exists
    FINISHED = auto()                # -finished tag without -merged (stop interrupted)
    MERGED = auto()                  # -merged tag exists
    ABANDONED = auto()               # -abandoned tag exists

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", "-")


class TaskStatus(Enum):
    """
    Status of a backlog task.

    The issue store persists open/in_progress/closed; PENDING and READY are
    both "open" and differ only in whether every dependency is closed.
    """
    PENDING = "pending"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"

    @property
    def store_status(self) -> str:
        """Status string understood by the issue store."""
        if self in (TaskStatus.PENDING, TaskStatus.READY):
            return "open"
        return self.value

    @classmethod
    def from_store(cls, status: str, ready: bool = False) -> TaskStatus:
        status = (status or "open").lower()
        if status == "closed":
            return cls.CLOSED
        if status == "in_progress":
            return cls.IN_PROGRESS
        return cls.READY if ready else cls.PENDING


@dataclass
class Requirement:
    """A requirement or acceptance criterion with a stable id."""
    id: str
    text: str


@dataclass
class TaskDescription:
    """
    Structured view of a task description.

    The raw text is what the issue store holds and is never rewritten;
    this view is parsed from it on demand.
    """
    raw: str
    deliverable_type: str = ""
    required_reading: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    requirements: list[Requirement] = field(default_factory=list)
    acceptance_criteria: list[Requirement] = field(default_factory=list)
    design_decisions: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str) -> TaskDescription:
        """Parse a YAML task description. Unstructured text yields an empty view."""
        try:
            data = yaml.safe_load(text) if text else None
        except yaml.YAMLError:
            data = None
        if not isinstance(data, dict):
            return cls(raw=text or "")

        return cls(
            raw=text,
            deliverable_type=str(data.get("deliverable_type") or ""),
            required_reading=_path_list(data.get("required_reading")),
            files=_path_list(data.get("files")),
            requirements=_requirement_list(data.get("requirements")),
            acceptance_criteria=_requirement_list(data.get("acceptance_criteria")),
            design_decisions=[str(d) for d in _as_list(data.get("design_decisions"))],
        )

    def referenced_paths(self) -> list[str]:
        """Required reading followed by touched files, de-duplicated in order."""
        seen: list[str] = []
        for path in self.required_reading + self.files:
            if path not in seen:
                seen.append(path)
        return seen


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _path_list(value: Any) -> list[str]:
    paths = []
    for item in _as_list(value):
        if isinstance(item, dict):
            item = item.get("path") or item.get("file") or ""
        item = str(item).strip()
        if item:
            paths.append(item)
    return paths


def _requirement_list(value: Any) -> list[Requirement]:
    items = []
    for entry in _as_list(value):
        if isinstance(entry, dict):
            items.append(Requirement(id=str(entry.get("id", "")), text=str(entry.get("text", ""))))
        else:
            items.append(Requirement(id="", text=str(entry)))
    return items


@dataclass
class Task:
    """A unit of backlog work held by the issue store."""
    id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[str] = field(default_factory=list)
    estimated_lines: Optional[int] = None

    @property
    def parsed(self) -> TaskDescription:
        return TaskDescription.parse(self.description)


@dataclass
class ProposedTask:
    """One entry of the task list proposed by the agent during measure."""
    index: int
    title: str
    description: str
    estimated_lines: Optional[int] = None
    dependencies: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Workspace:
    """Disposable worktree checkout for exactly one task."""
    task_id: str
    branch: str
    path: Path


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by one agent invocation."""
    input: int = 0
    output: int = 0
    cache_creation: int = 0
    cache_read: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_creation + self.cache_read

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class DiffStats:
    """Aggregate diff between two refs."""
    files: int = 0
    insertions: int = 0
    deletions: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class FileChange:
    """One file's entry in a diff."""
    path: str
    status: str
    insertions: int = 0
    deletions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LocSnapshot:
    """Lines of code split into production and test."""
    production: int = 0
    test: int = 0

    @property
    def total(self) -> int:
        return self.production + self.test

    def to_dict(self) -> dict[str, int]:
        return {"production": self.production, "test": self.test}


@dataclass
class AgentResult:
    """Result of one successful agent invocation."""
    text: str
    tokens: TokenUsage = field(default_factory=TokenUsage)
    cost_usd: float = 0.0
    duration_s: float = 0.0
    raw_output: str = ""


@dataclass(frozen=True)
class InvocationRecord:
    """
    Persisted metrics for one agent call.

    Written once to history and never changed afterwards.
    """
    caller: str                      # "measure" or "stitch"
    status: str                      # "success" or "failed"
    started_at: datetime
    duration_s: float
    tokens: TokenUsage = field(default_factory=TokenUsage)
    cost_usd: float = 0.0
    task_id: str = ""
    task_title: str = ""
    error: str = ""
    loc_before: Optional[LocSnapshot] = None
    loc_after: Optional[LocSnapshot] = None
    diff: Optional[DiffStats] = None

    @property
    def duration(self) -> str:
        """Human readable duration, e.g. 2m05s."""
        minutes, seconds = divmod(int(round(self.duration_s)), 60)
        return f"{minutes}m{seconds:02d}s" if minutes else f"{seconds}s"

    def to_dict(self) -> dict[str, Any]:
        """Stats file layout."""
        data: dict[str, Any] = {
            "caller": self.caller,
            "task_id": self.task_id,
            "task_title": self.task_title,
            "status": self.status,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "duration": self.duration,
            "duration_s": round(self.duration_s, 3),
            "tokens": self.tokens.to_dict(),
            "cost": round(self.cost_usd, 6),
        }
        if self.loc_before is not None:
            data["loc_before"] = self.loc_before.to_dict()
        if self.loc_after is not None:
            data["loc_after"] = self.loc_after.to_dict()
        if self.diff is not None:
            data["diff"] = self.diff.to_dict()
        return data


@dataclass(frozen=True)
class OutcomeRecord:
    """Per-task metrics read back from the trailers of a task merge commit."""
    task_id: str
    branch: str = ""
    tokens: TokenUsage = field(default_factory=TokenUsage)
    cost_usd: float = 0.0
    loc_before: LocSnapshot = field(default_factory=LocSnapshot)
    loc_after: LocSnapshot = field(default_factory=LocSnapshot)
    duration_s: int = 0

    @property
    def production_delta(self) -> int:
        return self.loc_after.production - self.loc_before.production

    @property
    def test_delta(self) -> int:
        return self.loc_after.test - self.loc_before.test


@dataclass
class SourceFile:
    """A file rendered for the agent with "<n> | <line>" numbering."""
    path: str
    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "content": self.content}


@dataclass
class ProjectContext:
    """Bounded snapshot of specification and source sent with one invocation."""
    documents: list[SourceFile] = field(default_factory=list)
    issues: list[dict[str, Any]] = field(default_factory=list)
    files: list[SourceFile] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    size_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.documents:
            data["documents"] = [d.to_dict() for d in self.documents]
        if self.issues:
            data["issues"] = list(self.issues)
        data["source_files"] = [f.to_dict() for f in self.files]
        return data


@dataclass
class Generation:
    """One branch-isolated unit of autonomous work."""
    name: str
    base_branch: str
    phase: GenerationPhase = GenerationPhase.RUNNING
    cycles: int = 0

    @property
    def start_tag(self) -> str:
        return f"{self.name}-start"

    @property
    def finished_tag(self) -> str:
        return f"{self.name}-finished"

    @property
    def merged_tag(self) -> str:
        return f"{self.name}-merged"


@dataclass
class GenerationInfo:
    """List entry for a generation found in branches or tags."""
    name: str
    phase: GenerationPhase
    tags: list[str] = field(default_factory=list)
    current: bool = False


@dataclass
class TaskOutcome:
    """Result of executing one task."""
    task_id: str
    success: bool
    error: str = ""
    record: Optional[InvocationRecord] = None


@dataclass
class StitchOutcome:
    """Result of one stitch call."""
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    empty: bool = False

    @property
    def summary(self) -> str:
        text = f"completed {len(self.completed)} task(s)"
        if self.failed:
            text += f", {len(self.failed)} failed"
        return text


@dataclass
class MeasureOutcome:
    """Result of one measure call."""
    created: list[str] = field(default_factory=list)
    proposed: int = 0
    discarded: int = 0


@dataclass
class RunOutcome:
    """Result of a bounded measure/stitch run."""
    cycles: int = 0
    created: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
