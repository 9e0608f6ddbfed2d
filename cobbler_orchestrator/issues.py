"""
Issue store operations for Cobbler.

This module provides:
- IssueStore protocol: create / list-by-status / query-ready / close /
  wire-dependency operations the workflow consumes
- BeadsIssueStore: the adapter that drives the `bd` (beads) CLI

Readiness is owned by the store: a task is ready when it is open and every
task it depends on is closed.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol

from cobbler_orchestrator.errors import CobblerError, ExternalProcessError
from cobbler_orchestrator.models import Task, TaskStatus
from cobbler_orchestrator.utils.fs import remove_path

if TYPE_CHECKING:
    from cobbler_orchestrator.logger import CobblerLogger


class IssueStore(Protocol):
    """Backlog persistence consumed by measure and stitch."""

    def is_initialized(self) -> bool: ...
    def init(self, prefix: str) -> None: ...
    def reset(self) -> None: ...
    def create(self, title: str, description: str) -> str: ...
    def add_dependency(self, child_id: str, parent_id: str) -> None: ...
    def get(self, task_id: str) -> Optional[Task]: ...
    def list(self, status: Optional[TaskStatus] = None) -> list[Task]: ...
    def ready(self) -> list[Task]: ...
    def update_status(self, task_id: str, status: TaskStatus) -> None: ...
    def close(self, task_id: str) -> None: ...
    def storage_paths(self) -> list[str]: ...


def _dependency_ids(raw: Any) -> list[str]:
    ids = []
    for dep in raw or []:
        if isinstance(dep, dict):
            dep = dep.get("depends_on_id") or dep.get("id") or ""
        if dep:
            ids.append(str(dep))
    return ids


def task_from_json(data: dict[str, Any], ready: bool = False) -> Task:
    """Build a Task from one `bd ... --json` entry."""
    return Task(
        id=str(data.get("id", "")),
        title=str(data.get("title", "")),
        description=data.get("description") or "",
        status=TaskStatus.from_store(data.get("status", "open"), ready=ready),
        dependencies=_dependency_ids(data.get("dependencies")),
    )


class BeadsIssueStore:
    """
    IssueStore adapter backed by the beads CLI.

    Commands run in the repository root, where bd keeps its database
    under the configured beads directory.
    """

    def __init__(
        self,
        root: str | Path,
        binary: str = "bd",
        beads_dir: str = ".beads",
        logger: Optional[CobblerLogger] = None,
    ) -> None:
        self.root = Path(root)
        self.binary = binary
        self.beads_dir = beads_dir
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None) -> None:
        if self._logger:
            log_data = {"component": "issues"}
            if data:
                log_data.update(data)
            self._logger.debug(event_type, log_data)

    def _bd(self, *args: str, check: bool = True, target: str = "") -> subprocess.CompletedProcess:
        command = [self.binary, *args]
        try:
            result = subprocess.run(command, capture_output=True, text=True, cwd=self.root)
        except FileNotFoundError as e:
            raise ExternalProcessError(command, 127, str(e), operation="bd", target=target)
        self._log("bd_command", {"args": list(args), "returncode": result.returncode})
        if check and result.returncode != 0:
            raise ExternalProcessError(
                command, result.returncode, result.stderr or result.stdout,
                operation=f"bd {args[0]}", target=target,
            )
        return result

    def _bd_json(self, *args: str, target: str = "") -> Any:
        output = self._bd(*args, target=target).stdout.strip()
        if not output:
            return []
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise CobblerError(f"unparseable JSON from bd: {e}", f"bd {args[0]}", target)

    def is_initialized(self) -> bool:
        return (self.root / self.beads_dir).is_dir()

    def init(self, prefix: str) -> None:
        self._bd("init", "--prefix", prefix, "--force", target=prefix)

    def reset(self) -> None:
        """Destroy the issue database. A missing database is not an error."""
        if not self.is_initialized():
            return
        self._bd("daemon", "stop", ".", check=False)
        result = self._bd("admin", "reset", "--force", check=False)
        if result.returncode != 0:
            self._log("bd_reset_fallback", {"stderr": result.stderr.strip()})
        remove_path(self.root / self.beads_dir)

    def create(self, title: str, description: str) -> str:
        data = self._bd_json("create", "--type", "task", "--json", title,
                             "--description", description, target=title)
        if isinstance(data, list):
            data = data[0] if data else {}
        task_id = str(data.get("id", "")) if isinstance(data, dict) else ""
        if not task_id:
            raise CobblerError("bd create returned no id", "create", title)
        return task_id

    def add_dependency(self, child_id: str, parent_id: str) -> None:
        self._bd("dep", "add", child_id, parent_id, target=child_id)

    def get(self, task_id: str) -> Optional[Task]:
        result = self._bd("show", "--json", task_id, check=False, target=task_id)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        data = json.loads(result.stdout)
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        ready_ids = {task.id for task in self.ready()}
        return task_from_json(data, ready=task_id in ready_ids)

    def list(self, status: Optional[TaskStatus] = None) -> list[Task]:
        args = ["list", "--json", "--type", "task"]
        if status is not None:
            args.extend(["--status", status.store_status])
        ready_ids = {task.id for task in self.ready()}
        tasks = [task_from_json(entry, ready=entry.get("id") in ready_ids)
                 for entry in self._bd_json(*args)]
        if status in (TaskStatus.READY, TaskStatus.PENDING):
            tasks = [task for task in tasks if task.status == status]
        return tasks

    def ready(self) -> list[Task]:
        """Open tasks whose dependencies are all closed, in store order."""
        entries = self._bd_json("ready", "--json", "--type", "task")
        # newer bd versions also report in_progress tasks as ready
        return [task_from_json(entry, ready=True) for entry in entries
                if entry.get("status", "open") == "open"]

    def update_status(self, task_id: str, status: TaskStatus) -> None:
        self._bd("update", task_id, "--status", status.store_status, target=task_id)

    def close(self, task_id: str) -> None:
        self._bd("close", task_id, target=task_id)

    def storage_paths(self) -> list[str]:
        return [self.beads_dir]
