"""
Cobbler workflow: measure and stitch as bounded loops.

- measure(): project context -> one agent call -> task import (capped)
- stitch(): execute ready tasks one at a time until the cap is reached or
  no ready task remains
- run_cycles(): measure then stitch, repeated up to a cycle count, a total
  stitch cap, or until the ready backlog is empty

Zero ready tasks at stitch entry is success ("completed 0 task(s)") and
changes nothing. Everything runs sequentially on the checked-out
generation branch.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

import yaml

from cobbler_orchestrator.catalog import AssetCatalog
from cobbler_orchestrator.context_builder import ContextBuilder
from cobbler_orchestrator.errors import (
    AmbiguousGenerationError,
    CobblerError,
    GenerationRequiredError,
    IssueStoreNotInitializedError,
    PreconditionError,
    describe,
)
from cobbler_orchestrator.executor import TaskExecutor
from cobbler_orchestrator.history import HistoryWriter
from cobbler_orchestrator.importer import TaskImporter
from cobbler_orchestrator.models import (
    InvocationRecord,
    MeasureOutcome,
    RunOutcome,
    StitchOutcome,
    TaskStatus,
    TokenUsage,
)
from cobbler_orchestrator.prompts import build_measure_prompt
from cobbler_orchestrator.utils.fs import safe_write

if TYPE_CHECKING:
    from cobbler_orchestrator.agent import Agent
    from cobbler_orchestrator.config import CobblerConfig
    from cobbler_orchestrator.git import Repository
    from cobbler_orchestrator.issues import IssueStore
    from cobbler_orchestrator.logger import CobblerLogger
    from cobbler_orchestrator.models import AgentResult, ProposedTask


class CobblerWorkflow:
    """Sequences measure and stitch against one repository."""

    def __init__(
        self,
        config: CobblerConfig,
        repo: Repository,
        store: IssueStore,
        agent: Agent,
        catalog: Optional[AssetCatalog] = None,
        logger: Optional[CobblerLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.repo = repo
        self.store = store
        self.agent = agent
        self.catalog = catalog or AssetCatalog.for_config(config)
        self._logger = logger
        self._clock = clock or datetime.now
        self.history = HistoryWriter(config.history_path, self._clock)
        self.context_builder = ContextBuilder(config, logger)
        self.importer = TaskImporter(store, logger)
        self.executor = TaskExecutor(
            config, repo, store, agent, self.catalog, self.history, logger, self._clock,
        )

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "workflow"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    # Generation resolution

    def resolve_generation(self, operation: str, required: bool = False) -> str:
        """
        Find the branch to work on.

        Uses generation.branch when configured, otherwise the single branch
        matching the generation prefix. Without a generation the current
        branch is used unless one is required.

        Raises:
            PreconditionError: If the configured branch does not exist.
            AmbiguousGenerationError: If several generation branches exist.
            GenerationRequiredError: If required and none exists.
        """
        configured = self.config.generation.branch
        if configured:
            if not self.repo.branch_exists(configured):
                raise PreconditionError("configured generation branch does not exist", operation, configured)
            return configured

        prefix = self.config.generation.prefix
        current = self.repo.current_branch()
        if current.startswith(prefix):
            return current

        candidates = self.repo.list_branches(f"{prefix}*")
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            raise AmbiguousGenerationError(operation, candidates)
        if required:
            raise GenerationRequiredError(operation, prefix)
        return current

    def _checkout(self, branch: str) -> None:
        if self.repo.current_branch() != branch:
            self.repo.checkout(branch)

    # Measure

    def _issue_summaries(self) -> list[dict[str, Any]]:
        return [
            {"id": task.id, "title": task.title, "status": task.status.value}
            for task in self.store.list()
            if task.status != TaskStatus.CLOSED
        ]

    def measure_prompt(self) -> str:
        """Render the measure prompt without invoking the agent."""
        issues = self._issue_summaries() if self.store.is_initialized() else []
        context = self.context_builder.for_measure(self.repo, issues)
        return build_measure_prompt(self.catalog, self.config, context, self.config.measure.max_issues)

    def measure(self) -> MeasureOutcome:
        """
        Propose and import new tasks.

        Raises:
            IssueStoreNotInitializedError: If the store is not initialized.
            GenerationRequiredError: If a generation is required but absent.
            AgentError: If the agent is unreachable or the invocation fails.
            TaskImportError: If the proposed task list is malformed.
        """
        if not self.store.is_initialized():
            raise IssueStoreNotInitializedError("measure")
        branch = self.resolve_generation("measure", self.config.measure.require_generation)
        self._checkout(branch)
        self.agent.check()

        limit = self.config.measure.max_issues
        prompt = self.measure_prompt()
        stamp = self.history.new_stamp("measure")
        self.history.write_prompt(stamp, "measure", prompt)
        self._log("measure_start", {"branch": branch, "limit": limit, "prompt_bytes": len(prompt)})

        started_at = self._clock()
        started = time.monotonic()
        result: Optional[AgentResult] = None
        try:
            result = self.agent.run(prompt, self.repo.root, self.config.claude.max_time_sec)
            self.history.write_log(stamp, "measure", result.raw_output)
            proposals = self.importer.parse_response(result.text)
            imported = self.importer.import_tasks(proposals, limit)
        except CobblerError as e:
            self._log("measure_failed", {"error": describe(e)}, level="error")
            self.history.write_stats(stamp, InvocationRecord(
                caller="measure",
                status="failed",
                started_at=started_at,
                duration_s=time.monotonic() - started,
                tokens=result.tokens if result else TokenUsage(),
                cost_usd=result.cost_usd if result else 0.0,
                error=describe(e),
            ))
            self.executor.commit_bookkeeping("Measure failed")
            raise

        self.history.write_stats(stamp, InvocationRecord(
            caller="measure",
            status="success",
            started_at=started_at,
            duration_s=time.monotonic() - started,
            tokens=result.tokens,
            cost_usd=result.cost_usd,
        ))
        self.history.write_report(stamp, "measure", {
            "proposed": len(proposals),
            "created": imported.created,
            "discarded": [p.title for p in imported.discarded],
        })
        self._append_measure_log(stamp, proposals, imported.index_to_id)
        self.repo.commit_paths(
            f"Measure: import {len(imported.created)} task(s)",
            [*self.executor.bookkeeping_paths(), self.config.measure_log_file],
        )

        outcome = MeasureOutcome(
            created=imported.created,
            proposed=len(proposals),
            discarded=len(imported.discarded),
        )
        self._log("measure_complete", {"created": outcome.created, "discarded": outcome.discarded})
        return outcome

    def _append_measure_log(
        self,
        stamp: str,
        proposals: list[ProposedTask],
        index_to_id: dict[int, str],
    ) -> None:
        path = self.config.root_path / self.config.measure_log_file
        entries: list[Any] = []
        if path.exists():
            with open(path, "r") as f:
                existing = yaml.safe_load(f)
            if isinstance(existing, list):
                entries = existing
        for proposal in proposals:
            entry = proposal.to_dict()
            entry["measured_at"] = stamp
            entry["task_id"] = index_to_id.get(proposal.index)
            entries.append(entry)
        safe_write(path, yaml.safe_dump(entries, sort_keys=False, allow_unicode=True))

    # Stitch

    def stitch(self, limit: Optional[int] = None) -> StitchOutcome:
        """
        Execute ready tasks one at a time.

        Args:
            limit: Maximum tasks to complete; defaults to stitch.max_per_cycle.
                   0 means no limit.

        Raises:
            IssueStoreNotInitializedError: If the store is not initialized.
            AgentUnavailableError: If tasks exist but the agent cannot be validated.
        """
        if not self.store.is_initialized():
            raise IssueStoreNotInitializedError("stitch")
        branch = self.resolve_generation("stitch")
        self._checkout(branch)
        self.executor.recover_stale(branch)

        if not self.store.ready():
            outcome = StitchOutcome(empty=True)
            self._log("stitch_complete", {"summary": outcome.summary, "empty": True})
            return outcome

        self.agent.check()
        cap = self.config.stitch.max_per_cycle if limit is None else limit
        outcome = StitchOutcome()
        while cap == 0 or len(outcome.completed) < cap:
            attempted = set(outcome.failed)
            task = next((t for t in self.store.ready() if t.id not in attempted), None)
            if task is None:
                break
            result = self.executor.execute(task, branch)
            if result.success:
                outcome.completed.append(task.id)
            else:
                outcome.failed.append(task.id)

        self._log("stitch_complete", {
            "summary": outcome.summary,
            "completed": outcome.completed,
            "failed": outcome.failed,
        })
        return outcome

    def has_ready_tasks(self) -> bool:
        return self.store.is_initialized() and bool(self.store.ready())

    # Cycles

    def _stitch_limit(self, done: int) -> Optional[int]:
        """Per-call limit honoring the per-cycle and total caps; None when the total is spent."""
        per_cycle = self.config.stitch.max_per_cycle
        total = self.config.stitch.max_total
        if not total:
            return per_cycle
        remaining = total - done
        if remaining <= 0:
            return None
        return min(per_cycle, remaining) if per_cycle else remaining

    def drain(self, done: int = 0) -> StitchOutcome:
        """Stitch the ready backlog, bounded only by the total cap."""
        total = self.config.stitch.max_total
        if total and done >= total:
            return StitchOutcome()
        return self.stitch(total - done if total else 0)

    def run_cycles(self, cycles: Optional[int] = None, outcome: Optional[RunOutcome] = None) -> RunOutcome:
        """
        Repeat measure then stitch.

        Stops after `cycles` cycles (generation.cycles by default, 0 for no
        bound), when the total stitch cap is spent, when measure leaves no
        ready task, or when a stitch completes nothing.
        """
        if cycles is None:
            cycles = self.config.generation.cycles
        outcome = outcome or RunOutcome()
        ran = 0
        while cycles == 0 or ran < cycles:
            limit = self._stitch_limit(len(outcome.completed))
            if limit is None:
                self._log("run_total_cap_reached", {"completed": len(outcome.completed)})
                break
            ran += 1
            outcome.cycles += 1
            self._log("cycle_start", {"cycle": outcome.cycles})

            measured = self.measure()
            outcome.created.extend(measured.created)
            if not self.store.ready():
                self._log("run_backlog_empty", {"cycle": outcome.cycles})
                break

            stitched = self.stitch(limit)
            outcome.completed.extend(stitched.completed)
            outcome.failed.extend(stitched.failed)
            if not stitched.completed:
                self._log("run_no_progress", {"cycle": outcome.cycles}, level="warn")
                break
        return outcome
