"""
Project context assembly for agent invocations.

The ContextBuilder selects the specification documents, issue summaries and
source files that accompany one agent call and keeps the serialized result
under a byte budget:

- Files are ordered by priority: declared-required files first (declaration
  order), then every other candidate sorted by path.
- While the YAML serialization exceeds the budget and more than one file
  remains, the last file is dropped and the size re-measured.
- A budget of 0 disables enforcement.

Each file is rendered as "<n> | <line>" for every non-blank line so that
line references in the agent's edits are unambiguous. Identical inputs
always produce identical output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence

import yaml

from cobbler_orchestrator.models import ProjectContext, SourceFile, Task
from cobbler_orchestrator.stats import select_source_files
from cobbler_orchestrator.utils.fs import match_glob

if TYPE_CHECKING:
    from cobbler_orchestrator.config import CobblerConfig
    from cobbler_orchestrator.git import Repository
    from cobbler_orchestrator.logger import CobblerLogger


class _BlockDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as literal blocks."""
    pass


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.Node:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_BlockDumper.add_representer(str, _represent_str)


def dump_yaml(data: Any) -> str:
    """Serialize prompt data as block-style YAML, keeping key order."""
    return yaml.dump(
        data,
        Dumper=_BlockDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=1000,
    )


def number_lines(content: str) -> str:
    """Prefix each non-blank line with its 1-based line number."""
    numbered = []
    for i, line in enumerate(content.splitlines(), start=1):
        if not line.strip():
            continue
        numbered.append(f"{i} | {line}")
    return "\n".join(numbered)


def strip_parenthetical(path: str) -> str:
    """Drop a trailing "(note)" from a declared path."""
    path = path.strip()
    idx = path.rfind("(")
    if idx > 0:
        return path[:idx].strip()
    return path


def _matches(candidate: str, declared: str) -> bool:
    return candidate == declared or candidate.endswith("/" + declared)


def resolve_declared(tracked: Sequence[str], declared: Iterable[str]) -> list[str]:
    """
    Map declared paths onto tracked files, keeping declaration order.

    A declared path matches a tracked file exactly or as a path suffix.
    Paths that match nothing (e.g. files the task will create) are skipped.
    """
    resolved: list[str] = []
    for raw in declared:
        path = strip_parenthetical(raw)
        if path.startswith("./"):
            path = path[2:]
        if not path:
            continue
        for candidate in tracked:
            if _matches(candidate, path) and candidate not in resolved:
                resolved.append(candidate)
    return resolved


def prioritize(candidates: Iterable[str], required: Sequence[str]) -> list[str]:
    """Required files in declared order, then the remaining candidates by path."""
    ordered = []
    for path in required:
        if path not in ordered:
            ordered.append(path)
    rest = sorted({path for path in candidates if path not in ordered})
    return ordered + rest


def serialized_size(context: ProjectContext) -> int:
    return len(dump_yaml(context.to_dict()).encode("utf-8"))


def apply_budget(context: ProjectContext, budget: int) -> ProjectContext:
    """
    Drop files from the back until the context fits the budget.

    Never drops the last remaining file. Updates size_bytes and records
    dropped paths in order of removal.
    """
    size = serialized_size(context)
    if budget > 0:
        while size > budget and len(context.files) > 1:
            dropped = context.files.pop()
            context.dropped.append(dropped.path)
            size = serialized_size(context)
    context.size_bytes = size
    return context


class ContextBuilder:
    """
    Builds the ProjectContext for measure and stitch invocations.

    Reads files through a Repository so that the same logic serves the
    main checkout and task worktrees.
    """

    def __init__(self, config: CobblerConfig, logger: Optional[CobblerLogger] = None) -> None:
        self.config = config
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None) -> None:
        if self._logger:
            log_data = {"component": "context_builder"}
            if data:
                log_data.update(data)
            self._logger.info(event_type, log_data)

    def source_files(self, tracked: Sequence[str]) -> list[str]:
        """Tracked files under the configured source dirs with a source extension."""
        return select_source_files(tracked, self.config.project)

    def document_files(self, tracked: Sequence[str]) -> list[str]:
        """Tracked specification documents selected by include/exclude globs."""
        include = self.config.context.include
        exclude = self.config.context.exclude
        return sorted(
            path for path in tracked
            if any(match_glob(path, pattern) for pattern in include)
            and not any(match_glob(path, pattern) for pattern in exclude)
        )

    def build(
        self,
        repo: Repository,
        candidates: Iterable[str],
        required: Sequence[str] = (),
        documents: Sequence[str] = (),
        issues: Optional[list[dict[str, Any]]] = None,
        budget: Optional[int] = None,
    ) -> ProjectContext:
        """
        Assemble and budget a context.

        Args:
            repo: Repository whose working tree the files are read from.
            candidates: Candidate file paths.
            required: Declared-required paths, highest priority first.
            documents: Specification documents; never dropped.
            issues: Issue summaries; never dropped.
            budget: Byte budget, defaults to context.max_bytes.
        """
        if budget is None:
            budget = self.config.context.max_bytes

        docs = []
        for path in documents:
            content = repo.read_file(path)
            if content is not None:
                docs.append(SourceFile(path=path, content=content))

        files = []
        for path in prioritize(candidates, required):
            content = repo.read_file(path)
            if content is None:
                continue
            files.append(SourceFile(path=path, content=number_lines(content)))

        context = ProjectContext(documents=docs, issues=list(issues or []), files=files)
        apply_budget(context, budget)
        self._log("context_built", {
            "files": len(context.files),
            "dropped": len(context.dropped),
            "documents": len(context.documents),
            "size_bytes": context.size_bytes,
            "budget": budget,
        })
        return context

    def for_measure(self, repo: Repository, issues: list[dict[str, Any]]) -> ProjectContext:
        """Full tracked source plus specification documents and open issues."""
        tracked = repo.tracked_files()
        return self.build(
            repo,
            candidates=self.source_files(tracked),
            documents=self.document_files(tracked),
            issues=issues,
        )

    def for_task(self, repo: Repository, task: Task) -> ProjectContext:
        """
        Required reading plus the files the task declares it will touch.

        When no declared path matches a tracked file, all tracked source is
        offered instead and the budget trims it.
        """
        tracked = repo.tracked_files()
        required = resolve_declared(tracked, task.parsed.referenced_paths())
        candidates = required or self.source_files(tracked)
        return self.build(repo, candidates=candidates, required=required)
