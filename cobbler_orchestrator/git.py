"""
Repository operations for Cobbler.

This module provides:
- Repository protocol: the narrow set of version-control operations the
  orchestrator needs (branches, tags, commits, merges, worktrees, diffs)
- GitRepository: the adapter that runs the git CLI via subprocess

Every failing git command surfaces as ExternalProcessError with the
captured stderr. Merges that conflict are aborted and raise MergeConflictError.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

from cobbler_orchestrator.errors import ExternalProcessError, MergeConflictError
from cobbler_orchestrator.models import DiffStats, FileChange
from cobbler_orchestrator.utils.fs import remove_path

if TYPE_CHECKING:
    from cobbler_orchestrator.logger import CobblerLogger


class Repository(Protocol):
    """Version-control operations used by the lifecycle, workflow and executor."""

    @property
    def root(self) -> Path: ...

    def at(self, path: Path) -> Repository: ...

    def current_branch(self) -> str: ...
    def is_clean(self) -> bool: ...
    def branch_exists(self, name: str) -> bool: ...
    def list_branches(self, pattern: str = "*") -> list[str]: ...
    def create_branch(self, name: str, start_point: Optional[str] = None) -> None: ...
    def checkout(self, name: str) -> None: ...
    def checkout_new(self, name: str) -> None: ...
    def delete_branch(self, name: str, force: bool = False) -> None: ...

    def tag(self, name: str, ref: str = "HEAD") -> None: ...
    def list_tags(self, pattern: str = "*") -> list[str]: ...
    def delete_tag(self, name: str) -> None: ...
    def rename_tag(self, old: str, new: str) -> None: ...
    def rev_parse(self, ref: str) -> str: ...

    def commit_all(self, message: str, allow_empty: bool = False) -> bool: ...
    def commit_paths(self, message: str, paths: Sequence[str]) -> bool: ...
    def stash(self, message: str) -> bool: ...
    def discard_changes(self) -> None: ...
    def merge(self, branch: str, message: Optional[str] = None, no_ff: bool = False) -> None: ...
    def commit_messages(self) -> list[str]: ...

    def diff_stats(self, base: str, head: str) -> DiffStats: ...
    def diff_files(self, base: str, head: str) -> list[FileChange]: ...

    def worktree_add(self, path: Path, branch: str) -> None: ...
    def worktree_remove(self, path: Path) -> None: ...
    def worktree_prune(self) -> None: ...

    def tracked_files(self) -> list[str]: ...
    def read_file(self, path: str) -> Optional[str]: ...
    def write_file(self, path: str, content: str) -> None: ...
    def remove_paths(self, paths: Sequence[str]) -> list[str]: ...


_SHORTSTAT_RE = {
    "files": re.compile(r"(\d+) files? changed"),
    "insertions": re.compile(r"(\d+) insertions?\(\+\)"),
    "deletions": re.compile(r"(\d+) deletions?\(-\)"),
}


def parse_shortstat(output: str) -> DiffStats:
    """Parse `git diff --shortstat` output. Empty output means no changes."""
    values = {}
    for key, pattern in _SHORTSTAT_RE.items():
        match = pattern.search(output)
        values[key] = int(match.group(1)) if match else 0
    return DiffStats(**values)


class GitRepository:
    """
    Repository adapter backed by the git CLI.

    One instance is bound to one working tree; at() returns an instance
    for a worktree of the same repository.
    """

    def __init__(
        self,
        root: str | Path,
        binary: str = "git",
        logger: Optional[CobblerLogger] = None,
    ) -> None:
        self._root = Path(root)
        self.binary = binary
        self._logger = logger

    @property
    def root(self) -> Path:
        return self._root

    def at(self, path: Path) -> GitRepository:
        return GitRepository(path, self.binary, self._logger)

    def _log(self, event_type: str, data: Optional[dict] = None) -> None:
        if self._logger:
            log_data = {"component": "git"}
            if data:
                log_data.update(data)
            self._logger.debug(event_type, log_data)

    def _git(self, *args: str, check: bool = True, target: str = "") -> subprocess.CompletedProcess:
        command = [self.binary, *args]
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                cwd=self._root,
            )
        except FileNotFoundError as e:
            raise ExternalProcessError(command, 127, str(e), operation="git", target=target)

        self._log("git_command", {"args": list(args), "returncode": result.returncode})
        if check and result.returncode != 0:
            raise ExternalProcessError(
                command, result.returncode, result.stderr or result.stdout,
                operation=f"git {args[0]}", target=target,
            )
        return result

    # Branches

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def is_clean(self) -> bool:
        """True when tracked files have no staged or unstaged changes."""
        result = self._git("status", "--porcelain", "--untracked-files=no")
        return not result.stdout.strip()

    def branch_exists(self, name: str) -> bool:
        result = self._git("show-ref", "--verify", "--quiet", f"refs/heads/{name}", check=False)
        return result.returncode == 0

    def list_branches(self, pattern: str = "*") -> list[str]:
        result = self._git("branch", "--list", pattern, "--format=%(refname:short)")
        return sorted(line.strip() for line in result.stdout.splitlines() if line.strip())

    def create_branch(self, name: str, start_point: Optional[str] = None) -> None:
        args = ["branch", name]
        if start_point:
            args.append(start_point)
        self._git(*args, target=name)

    def checkout(self, name: str) -> None:
        self._git("checkout", name, target=name)

    def checkout_new(self, name: str) -> None:
        self._git("checkout", "-b", name, target=name)

    def delete_branch(self, name: str, force: bool = False) -> None:
        self._git("branch", "-D" if force else "-d", name, target=name)

    # Tags

    def tag(self, name: str, ref: str = "HEAD") -> None:
        self._git("tag", name, ref, target=name)

    def list_tags(self, pattern: str = "*") -> list[str]:
        result = self._git("tag", "--list", pattern)
        return sorted(line.strip() for line in result.stdout.splitlines() if line.strip())

    def delete_tag(self, name: str) -> None:
        self._git("tag", "-d", name, target=name)

    def rename_tag(self, old: str, new: str) -> None:
        self._git("tag", new, old, target=old)
        self._git("tag", "-d", old, target=old)

    def rev_parse(self, ref: str) -> str:
        return self._git("rev-parse", "--verify", ref, target=ref).stdout.strip()

    # Commits and merges

    def commit_all(self, message: str, allow_empty: bool = False) -> bool:
        """
        Stage every change (including untracked files) and commit.

        Returns:
            False when there was nothing to commit and allow_empty is unset.
        """
        self._git("add", "-A")
        staged = self._git("diff", "--cached", "--quiet", check=False).returncode != 0
        if not staged and not allow_empty:
            return False
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        self._git(*args)
        return True

    def commit_paths(self, message: str, paths: Sequence[str]) -> bool:
        """
        Stage additions, changes and deletions under paths and commit them.

        Paths that neither exist nor are tracked are skipped.

        Returns:
            False when nothing under paths changed.
        """
        existing = [
            path for path in paths
            if (self._root / path).exists() or self._git("ls-files", "--", path).stdout.strip()
        ]
        if existing:
            self._git("add", "-A", "--", *existing)
        if self._git("diff", "--cached", "--quiet", check=False).returncode == 0:
            return False
        self._git("commit", "-m", message)
        return True

    def stash(self, message: str) -> bool:
        if self.is_clean():
            return False
        self._git("stash", "push", "-m", message)
        return True

    def discard_changes(self) -> None:
        self._git("reset", "--hard", "HEAD")

    def merge(self, branch: str, message: Optional[str] = None, no_ff: bool = False) -> None:
        """
        Merge branch into the current branch.

        Raises:
            MergeConflictError: If the merge fails. The merge is aborted first.
        """
        target = self.current_branch()
        args = ["merge", "--no-edit"]
        if no_ff:
            args.append("--no-ff")
        if message:
            args.extend(["-m", message])
        args.append(branch)
        result = self._git(*args, check=False)
        if result.returncode != 0:
            self._git("merge", "--abort", check=False)
            self._log("merge_conflict", {"branch": branch, "into": target})
            raise MergeConflictError(branch, target, result.stdout + result.stderr)

    def commit_messages(self) -> list[str]:
        """Full messages of every commit reachable from any ref, newest first."""
        output = self._git("log", "--all", "--format=%B%x00").stdout
        return [message.strip() for message in output.split("\x00") if message.strip()]

    # Diffs

    def diff_stats(self, base: str, head: str) -> DiffStats:
        return parse_shortstat(self._git("diff", "--shortstat", base, head).stdout)

    def diff_files(self, base: str, head: str) -> list[FileChange]:
        statuses: dict[str, str] = {}
        for line in self._git("diff", "--name-status", base, head).stdout.splitlines():
            parts = line.split("\t")
            if len(parts) >= 2:
                statuses[parts[-1]] = parts[0][:1]

        changes = []
        for line in self._git("diff", "--numstat", base, head).stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 3:
                continue
            added, removed, path = parts[0], parts[1], parts[-1]
            changes.append(FileChange(
                path=path,
                status=statuses.get(path, "M"),
                insertions=int(added) if added.isdigit() else 0,
                deletions=int(removed) if removed.isdigit() else 0,
            ))
        return changes

    # Worktrees

    def worktree_add(self, path: Path, branch: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._git("worktree", "add", str(path), branch, target=branch)

    def worktree_remove(self, path: Path) -> None:
        result = self._git("worktree", "remove", "--force", str(path), check=False)
        if result.returncode != 0:
            remove_path(path)
            self.worktree_prune()

    def worktree_prune(self) -> None:
        self._git("worktree", "prune")

    # Working tree files

    def tracked_files(self) -> list[str]:
        result = self._git("ls-files")
        return sorted(line for line in result.stdout.splitlines() if line)

    def read_file(self, path: str) -> Optional[str]:
        file_path = self._root / path
        if not file_path.is_file():
            return None
        return file_path.read_text(encoding="utf-8", errors="replace")

    def write_file(self, path: str, content: str) -> None:
        file_path = self._root / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")

    def remove_paths(self, paths: Sequence[str]) -> list[str]:
        removed = []
        for path in paths:
            if remove_path(self._root / path):
                removed.append(path)
        return removed
