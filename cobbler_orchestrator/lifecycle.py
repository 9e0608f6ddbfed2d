"""
Generation lifecycle management.

State machine (phase is derived from branches and tags, not persisted):

    NotStarted --start--> Running --stop--> Merged
                          Running --resume--> Running
    any state --reset--> NotStarted

Naming:
- generation branch:  <prefix><YYYY-MM-DD-HH-MM-SS>
- lifecycle tags:     <name>-start, <name>-finished, <name>-merged, <name>-abandoned
- checkpoint tags:    v1.<YYYYMMDD>.<rev> and v1.<YYYYMMDD>.<rev>-requirements
- bookkeeping file:   <cobbler dir>/base-branch on the generation branch

Stop merges the generation into its base branch, tags the merged tree with
a checkpoint, then prunes generated sources from the base branch so the
checkpoint tag is the only path back to the generated code.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from cobbler_orchestrator.errors import (
    AmbiguousGenerationError,
    ExternalProcessError,
    MergeConflictError,
    PreconditionError,
    describe,
)
from cobbler_orchestrator.executor import task_branch_pattern
from cobbler_orchestrator.models import (
    Generation,
    GenerationInfo,
    GenerationPhase,
    RunOutcome,
)
from cobbler_orchestrator.utils.fs import remove_path

if TYPE_CHECKING:
    from cobbler_orchestrator.config import CobblerConfig
    from cobbler_orchestrator.git import Repository
    from cobbler_orchestrator.issues import IssueStore
    from cobbler_orchestrator.logger import CobblerLogger
    from cobbler_orchestrator.workflow import CobblerWorkflow


NAME_FORMAT = "%Y-%m-%d-%H-%M-%S"
TAG_SUFFIXES = ("-start", "-finished", "-merged", "-abandoned")
LOG_IGNORE = "logs/\n"


def generation_name(tag: str) -> str:
    """Strip the lifecycle suffix from a tag."""
    for suffix in TAG_SUFFIXES:
        if tag.endswith(suffix):
            return tag[: -len(suffix)]
    return tag


class GenerationManager:
    """
    Owns the branch/tag state machine around cobbler cycles.

    Every operation validates its preconditions before touching the
    repository; a failed precondition leaves everything unchanged.
    """

    def __init__(
        self,
        config: CobblerConfig,
        repo: Repository,
        store: IssueStore,
        workflow: Optional[CobblerWorkflow] = None,
        logger: Optional[CobblerLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.repo = repo
        self.store = store
        self.workflow = workflow
        self._logger = logger
        self._clock = clock or datetime.now

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "lifecycle"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def _require_workflow(self) -> CobblerWorkflow:
        if self.workflow is None:
            raise PreconditionError("no cobbler workflow configured", "run")
        return self.workflow

    # Naming helpers

    @property
    def prefix(self) -> str:
        return self.config.generation.prefix

    def is_generation(self, branch: str) -> bool:
        return branch.startswith(self.prefix)

    def generation_branches(self) -> list[str]:
        return self.repo.list_branches(f"{self.prefix}*")

    def read_base_branch(self) -> str:
        """Base branch recorded on the checked-out branch, or the configured default."""
        content = self.repo.read_file(self.config.base_branch_file)
        branch = (content or "").strip()
        return branch or self.config.git.base_branch

    def _history_dir(self) -> str:
        return f"{self.config.cobbler_dir.rstrip('/')}/{self.config.history_dir}"

    def _ignore_file(self) -> str:
        return f"{self.config.cobbler_dir.rstrip('/')}/.gitignore"

    # Resolution

    def resolve_current(self, operation: str) -> str:
        """
        The generation an operation acts on: generation.branch when set,
        otherwise the checked-out generation branch.

        Raises:
            PreconditionError: If neither applies or the branch does not exist.
        """
        configured = self.config.generation.branch
        if configured:
            if not self.is_generation(configured):
                raise PreconditionError("not a generation branch", operation, configured)
            if not self.repo.branch_exists(configured):
                raise PreconditionError("branch does not exist", operation, configured)
            return configured
        current = self.repo.current_branch()
        if not self.is_generation(current):
            raise PreconditionError("not on a generation branch", operation, current)
        return current

    def resolve_for_resume(self) -> str:
        """
        generation.branch when set, otherwise the single local generation branch.

        Raises:
            AmbiguousGenerationError: If zero or several generation branches exist.
        """
        configured = self.config.generation.branch
        if configured:
            return self.resolve_current("resume")
        candidates = self.generation_branches()
        if len(candidates) != 1:
            raise AmbiguousGenerationError("resume", candidates)
        return candidates[0]

    # Branch switching

    def _save_work(self, message: str) -> None:
        """Commit outstanding work, stashing it if the commit fails."""
        if self.repo.is_clean():
            return
        try:
            committed = self.repo.commit_all(message)
        except ExternalProcessError as e:
            self._log("wip_commit_failed", {"error": describe(e)}, level="warn")
            committed = False
        if not committed and not self.repo.is_clean():
            self.repo.stash(message)

    def _save_and_switch(self, target: str) -> None:
        """Save outstanding work and check out target."""
        current = self.repo.current_branch()
        if current == target:
            return
        self._save_work(f"WIP: save state before switching to {target}")
        self._log("branch_switch", {"from": current, "to": target})
        self.repo.checkout(target)

    # Operations

    def start(self) -> Generation:
        """
        Begin a new generation from the current branch.

        Raises:
            PreconditionError: If the tree is dirty, the current branch is a
                generation branch, or another generation exists.
        """
        base = self.repo.current_branch()
        if self.is_generation(base):
            raise PreconditionError("already on a generation branch", "start", base)
        if not self.repo.is_clean():
            raise PreconditionError(
                "working tree has uncommitted changes; commit or stash before starting",
                "start", base,
            )
        existing = self.generation_branches()
        if existing:
            raise PreconditionError(
                f"a generation is already running: {', '.join(existing)}", "start", existing[0],
            )

        name = self.prefix + self._clock().strftime(NAME_FORMAT)
        if self.repo.list_tags(f"{name}-*"):
            raise PreconditionError("generation name already used", "start", name)
        generation = Generation(name=name, base_branch=base)

        self._log("generation_start", {"generation": name, "base_branch": base})
        self.repo.tag(generation.start_tag)
        self.repo.checkout_new(name)
        self.repo.write_file(self.config.base_branch_file, base + "\n")
        if self.repo.read_file(self._ignore_file()) is None:
            self.repo.write_file(self._ignore_file(), LOG_IGNORE)

        self.store.reset()
        self.store.init(name)

        self.repo.commit_paths(
            f"Start generation: {name}\n\nBase branch: {base}. "
            f"Tagged previous state as {generation.start_tag}.",
            [self.config.base_branch_file, self._ignore_file(), *self.store.storage_paths()],
        )
        return generation

    def run(self, cycles: Optional[int] = None) -> RunOutcome:
        """Run measure/stitch cycles on the current (or only) generation."""
        workflow = self._require_workflow()
        branch = workflow.resolve_generation("run", required=True)
        if self.repo.current_branch() != branch:
            self.repo.checkout(branch)
        self._log("generation_run", {"generation": branch, "cycles": cycles})
        return workflow.run_cycles(cycles)

    def resume(self) -> tuple[RunOutcome, Generation]:
        """
        Recover an interrupted generation, finish its work and stop it.

        Raises:
            AmbiguousGenerationError: If zero or several generation branches exist.
        """
        workflow = self._require_workflow()
        name = self.resolve_for_resume()
        self._log("generation_resume", {"generation": name})

        self._save_and_switch(name)
        self._save_work(f"WIP: save state before resuming {name}")
        self.repo.worktree_prune()
        workflow.executor.recover_stale(name)

        outcome = RunOutcome()
        if workflow.has_ready_tasks():
            drained = workflow.drain()
            outcome.completed.extend(drained.completed)
            outcome.failed.extend(drained.failed)
        workflow.run_cycles(outcome=outcome)
        generation = self.stop(name)
        generation.cycles = outcome.cycles
        return outcome, generation

    def stop(self, branch: Optional[str] = None) -> Generation:
        """
        Merge the generation into its base branch and retire it.

        Raises:
            PreconditionError: If not on a generation branch, the tree is
                dirty, or the recorded base branch does not exist.
            MergeConflictError: If the merge conflicts. The -finished tag is
                removed and the generation branch is checked out again.
        """
        name = branch or self.resolve_current("stop")
        if not self.repo.is_clean():
            raise PreconditionError("working tree has uncommitted changes", "stop", name)
        previous = self.repo.current_branch()
        if previous != name:
            self.repo.checkout(name)

        base = self.read_base_branch()
        if not self.repo.branch_exists(base):
            if previous != name:
                self.repo.checkout(previous)
            raise PreconditionError("base branch does not exist", "stop", base)
        generation = Generation(name=name, base_branch=base, phase=GenerationPhase.FINISHED)
        self._log("generation_stop", {"generation": name, "base_branch": base})

        self.repo.tag(generation.finished_tag)
        self.repo.checkout(base)
        try:
            self.repo.merge(name, message=f"Merge generation {name} into {base}", no_ff=True)
        except MergeConflictError:
            self._log("generation_merge_conflict", {"generation": name, "base_branch": base}, level="error")
            self.repo.delete_tag(generation.finished_tag)
            self.repo.checkout(name)
            raise

        self.repo.tag(generation.merged_tag)
        checkpoint = self._tag_checkpoint(generation)

        pruned = [
            *self.config.project.source_dirs,
            *self.config.generation.cleanup_dirs,
            self.config.base_branch_file,
            self._history_dir(),
        ]
        self.repo.remove_paths(pruned)
        self.repo.commit_paths(
            f"Reset {base} to specs-only after {checkpoint}\n\n"
            f"Generated code preserved at {checkpoint}.",
            pruned,
        )

        self._remove_task_branches(name)
        self.repo.delete_branch(name, force=True)
        generation.phase = GenerationPhase.MERGED
        self._log("generation_merged", {"generation": name, "checkpoint": checkpoint})
        return generation

    def _tag_checkpoint(self, generation: Generation) -> str:
        """Create v1.<YYYYMMDD>.<rev> at HEAD and its -requirements twin at the start tag."""
        stamp = generation.name[len(self.prefix):len(self.prefix) + 10]
        try:
            date = datetime.strptime(stamp, "%Y-%m-%d").strftime("%Y%m%d")
        except ValueError:
            date = self._clock().strftime("%Y%m%d")
            stamp = ""

        names = set()
        if stamp:
            pattern = f"{self.prefix}{stamp}-*"
            names.update(generation_name(tag) for tag in self.repo.list_tags(pattern))
            names.update(self.repo.list_branches(pattern))
        ordered = sorted(names)
        revision = ordered.index(generation.name) if generation.name in ordered else 0

        existing = set(self.repo.list_tags(f"v1.{date}.*"))
        while f"v1.{date}.{revision}" in existing:
            revision += 1
        checkpoint = f"v1.{date}.{revision}"

        self.repo.tag(checkpoint)
        if generation.start_tag in self.repo.list_tags(generation.start_tag):
            self.repo.tag(f"{checkpoint}-requirements", generation.start_tag)
        return checkpoint

    def _remove_task_branches(self, name: str) -> bool:
        removed = False
        prefix = f"task/{name}-"
        for branch in self.repo.list_branches(task_branch_pattern(name)):
            path = self.config.worktrees_path / branch[len(prefix):]
            if path.exists():
                self.repo.worktree_remove(path)
            self.repo.delete_branch(branch, force=True)
            removed = True
        self.repo.worktree_prune()
        return removed

    def switch(self, target: str) -> str:
        """
        Save outstanding work and check out another generation or the base branch.

        Raises:
            PreconditionError: If target is neither, or does not exist.
        """
        allowed_bases = {self.config.git.base_branch, self.read_base_branch()}
        if not self.is_generation(target) and target not in allowed_bases:
            raise PreconditionError("not a generation branch or the base branch", "switch", target)
        if not self.repo.branch_exists(target):
            raise PreconditionError("branch does not exist", "switch", target)
        self._save_and_switch(target)
        return target

    def list(self) -> list[GenerationInfo]:
        """Every generation found in branches or lifecycle tags, sorted by name."""
        branches = set(self.generation_branches())
        tags = set(self.repo.list_tags(f"{self.prefix}*"))
        current = self.repo.current_branch()

        names = set(branches) | {generation_name(tag) for tag in tags}
        infos = []
        for name in sorted(names):
            present = [suffix[1:] for suffix in TAG_SUFFIXES if f"{name}{suffix}" in tags]
            if name in branches:
                phase = GenerationPhase.RUNNING
            elif "merged" in present:
                phase = GenerationPhase.MERGED
            elif "finished" in present:
                phase = GenerationPhase.FINISHED
            else:
                phase = GenerationPhase.ABANDONED
            infos.append(GenerationInfo(name=name, phase=phase, tags=present, current=name == current))
        return infos

    def _abandon_unmerged_tags(self) -> bool:
        """Collapse the tags of never-merged generations into one -abandoned tag."""
        groups: dict[str, list[str]] = {}
        for tag in self.repo.list_tags(f"{self.prefix}*"):
            groups.setdefault(generation_name(tag), []).append(tag)

        changed = False
        for name, tags in groups.items():
            if f"{name}-merged" in tags:
                continue
            abandoned = f"{name}-abandoned"
            if abandoned not in tags:
                # Prefer the start tag: it marks the base the generation forked from
                keep = f"{name}-start" if f"{name}-start" in tags else tags[0]
                self.repo.rename_tag(keep, abandoned)
                tags = [abandoned if tag == keep else tag for tag in tags]
                changed = True
            for tag in tags:
                if tag != abandoned:
                    self.repo.delete_tag(tag)
                    changed = True
        return changed

    def reset(self) -> bool:
        """
        Destroy every generation and return to a clean base branch.

        Returns:
            True if anything changed; a clean repository is left untouched.
        """
        changed = False
        current = self.repo.current_branch()
        if not self.repo.is_clean():
            self.repo.discard_changes()
            changed = True
        if self.is_generation(current):
            base = self.read_base_branch()
            if not self.repo.branch_exists(base):
                base = self.config.git.base_branch
            self.repo.checkout(base)
            changed = True

        generations = self.generation_branches()
        for name in generations:
            changed = self._remove_task_branches(name) or changed
        self.repo.worktree_prune()
        if self.config.worktrees_path.exists():
            remove_path(self.config.worktrees_path)
            changed = True

        for name in generations:
            self.repo.delete_branch(name, force=True)
            changed = True

        changed = self._abandon_unmerged_tags() or changed

        generated = [*self.config.project.source_dirs, *self.config.generation.cleanup_dirs]
        if self.repo.remove_paths(generated):
            changed = True
        if self.repo.commit_paths("Generator reset: return to clean state", generated):
            changed = True

        self._log("generation_reset", {"generations": generations, "changed": changed})
        return changed
