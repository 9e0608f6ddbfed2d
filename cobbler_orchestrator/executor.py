"""
Task execution for the stitch phase.

The TaskExecutor runs one ready task to completion:

    claim (in_progress)
      -> create workspace (task/<generation>-<id> branch + worktree)
      -> build context, persist prompt to history
      -> run agent in the workspace under the wall-clock budget
           failure: task back to ready, failed record, workspace destroyed
      -> commit workspace, diff stats vs the generation branch
      -> merge into the generation branch with outcome trailers
         (conflict fails this task only)
      -> close task, write stats + report
      -> destroy workspace and its branch, commit issue state

The main checkout must be on the generation branch. A task's workspace is
fully merged or discarded before execute() returns.
"""

from __future__ import annotations

import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from cobbler_orchestrator.context_builder import ContextBuilder
from cobbler_orchestrator.errors import CobblerError, ExternalProcessError, describe
from cobbler_orchestrator.models import (
    AgentResult,
    InvocationRecord,
    LocSnapshot,
    Task,
    TaskOutcome,
    TaskStatus,
    TokenUsage,
    Workspace,
)
from cobbler_orchestrator.outcomes import commit_message
from cobbler_orchestrator.prompts import build_stitch_prompt
from cobbler_orchestrator.stats import loc_snapshot

if TYPE_CHECKING:
    from cobbler_orchestrator.agent import Agent
    from cobbler_orchestrator.catalog import AssetCatalog
    from cobbler_orchestrator.config import CobblerConfig
    from cobbler_orchestrator.git import Repository
    from cobbler_orchestrator.history import HistoryWriter
    from cobbler_orchestrator.issues import IssueStore
    from cobbler_orchestrator.logger import CobblerLogger


PHASE = "stitch"


def task_branch_name(generation: str, task_id: str) -> str:
    return f"task/{generation}-{task_id}"


def task_branch_pattern(generation: str) -> str:
    return f"task/{generation}-*"


class TaskExecutor:
    """Runs single tasks in isolated worktrees and merges the results."""

    def __init__(
        self,
        config: CobblerConfig,
        repo: Repository,
        store: IssueStore,
        agent: Agent,
        catalog: AssetCatalog,
        history: HistoryWriter,
        logger: Optional[CobblerLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.repo = repo
        self.store = store
        self.agent = agent
        self.catalog = catalog
        self.history = history
        self._logger = logger
        self._clock = clock or datetime.now
        self.context_builder = ContextBuilder(config, logger)

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "executor"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def bookkeeping_paths(self) -> list[str]:
        """Repo-relative paths holding issue state and history."""
        history_dir = f"{self.config.cobbler_dir.rstrip('/')}/{self.config.history_dir}"
        return [*self.store.storage_paths(), history_dir]

    def commit_bookkeeping(self, message: str) -> bool:
        return self.repo.commit_paths(message, self.bookkeeping_paths())

    # Workspaces

    def workspace_path(self, task_id: str) -> Path:
        return self.config.worktrees_path / task_id

    def create_workspace(self, task_id: str, generation: str) -> Workspace:
        """Create the task branch from the generation branch and check it out in a worktree."""
        workspace = Workspace(
            task_id=task_id,
            branch=task_branch_name(generation, task_id),
            path=self.workspace_path(task_id),
        )
        if self.repo.branch_exists(workspace.branch) or workspace.path.exists():
            self._log("stale_workspace_removed", {"task_id": task_id, "branch": workspace.branch}, level="warn")
            self.destroy_workspace(workspace)

        self.repo.create_branch(workspace.branch, generation)
        self.repo.worktree_add(workspace.path, workspace.branch)
        self._log("workspace_created", {"task_id": task_id, "branch": workspace.branch,
                                        "path": str(workspace.path)})
        return workspace

    def destroy_workspace(self, workspace: Workspace) -> None:
        if workspace.path.exists():
            self.repo.worktree_remove(workspace.path)
        self.repo.worktree_prune()
        if self.repo.branch_exists(workspace.branch):
            self.repo.delete_branch(workspace.branch, force=True)
        self._log("workspace_destroyed", {"task_id": workspace.task_id, "branch": workspace.branch})

    # Recovery

    def recover_stale(self, generation: str) -> list[str]:
        """
        Clean up after an interrupted run.

        Leftover task branches and their worktrees are removed and their
        tasks set back to ready; in_progress tasks without a branch are set
        back to ready too.

        Returns:
            Ids of the tasks that were reset.
        """
        prefix = task_branch_name(generation, "")
        recovered: list[str] = []
        for branch in self.repo.list_branches(task_branch_pattern(generation)):
            task_id = branch[len(prefix):]
            self.destroy_workspace(Workspace(task_id=task_id, branch=branch,
                                             path=self.workspace_path(task_id)))
            recovered.append(task_id)
        self.repo.worktree_prune()

        for task in self.store.list(TaskStatus.IN_PROGRESS):
            if task.id not in recovered:
                recovered.append(task.id)

        for task_id in recovered:
            try:
                self.store.update_status(task_id, TaskStatus.READY)
            except ExternalProcessError as e:
                self._log("recover_reset_failed", {"task_id": task_id, "error": describe(e)}, level="warn")

        if recovered:
            self._log("stale_tasks_recovered", {"task_ids": recovered})
            self.commit_bookkeeping("Recover stale tasks from interrupted run")
        return recovered

    # Execution

    def execute(self, task: Task, generation: str) -> TaskOutcome:
        """
        Run one task end to end.

        Agent failures, merge conflicts and failing external commands fail
        this task only; they are returned as a failed TaskOutcome.
        """
        if self._logger is None:
            return self._execute(task, generation)
        with self._logger.session_context(f"{PHASE}-{task.id}"):
            return self._execute(task, generation)

    def _execute(self, task: Task, generation: str) -> TaskOutcome:
        stamp = self.history.new_stamp(PHASE)
        started_at = self._clock()
        started = time.monotonic()
        self._log("task_start", {"task_id": task.id, "title": task.title})

        self.store.update_status(task.id, TaskStatus.IN_PROGRESS)
        workspace: Optional[Workspace] = None
        loc_before: Optional[LocSnapshot] = None
        result: Optional[AgentResult] = None
        try:
            workspace = self.create_workspace(task.id, generation)
            workspace_repo = self.repo.at(workspace.path)

            context = self.context_builder.for_task(workspace_repo, task)
            prompt = build_stitch_prompt(self.catalog, task, context)
            self.history.write_prompt(stamp, PHASE, prompt)

            loc_before = loc_snapshot(workspace_repo, self.config.project)
            result = self.agent.run(prompt, workspace.path, self.config.claude.max_time_sec)
            self.history.write_log(stamp, PHASE, result.raw_output)

            workspace_repo.commit_all(f"{task.id}: {task.title}")
            diff = self.repo.diff_stats(generation, workspace.branch)
            changes = self.repo.diff_files(generation, workspace.branch)
            # Task branch forks from the generation tip: merged tree == workspace tree
            loc_after = loc_snapshot(workspace_repo, self.config.project)
            record = InvocationRecord(
                caller=PHASE,
                status="success",
                started_at=started_at,
                duration_s=time.monotonic() - started,
                tokens=result.tokens,
                cost_usd=result.cost_usd,
                task_id=task.id,
                task_title=task.title,
                loc_before=loc_before,
                loc_after=loc_after,
                diff=diff,
            )
            message = commit_message(f"Merge {task.id}: {task.title}", record, workspace.branch)
            self.repo.merge(workspace.branch, message=message, no_ff=True)

            self.store.close(task.id)
            self.history.write_stats(stamp, record)
            self.history.write_report(stamp, PHASE, {
                "task_id": task.id,
                "task_title": task.title,
                "branch": workspace.branch,
                "files": [change.to_dict() for change in changes],
            })
            self._log("task_complete", {"task_id": task.id, **diff.to_dict()})
            return TaskOutcome(task_id=task.id, success=True, record=record)
        except CobblerError as e:
            return self._fail(task, stamp, started_at, started, e, loc_before, result)
        finally:
            if workspace is not None:
                self.destroy_workspace(workspace)
            self.commit_bookkeeping(f"Stitch {task.id}: {task.title}")

    def _fail(
        self,
        task: Task,
        stamp: str,
        started_at: datetime,
        started: float,
        error: CobblerError,
        loc_before: Optional[LocSnapshot],
        result: Optional[AgentResult],
    ) -> TaskOutcome:
        self._log("task_failed", {"task_id": task.id, "error": describe(error)}, level="error")
        self.store.update_status(task.id, TaskStatus.READY)
        record = InvocationRecord(
            caller=PHASE,
            status="failed",
            started_at=started_at,
            duration_s=time.monotonic() - started,
            tokens=result.tokens if result else TokenUsage(),
            cost_usd=result.cost_usd if result else 0.0,
            task_id=task.id,
            task_title=task.title,
            error=describe(error),
            loc_before=loc_before,
        )
        self.history.write_stats(stamp, record)
        return TaskOutcome(task_id=task.id, success=False, error=describe(error), record=record)
