"""
Task import for the measure phase.

Turns the agent's proposed task list into dependency-wired tasks in the
issue store:

1. parse_response() extracts the first fenced YAML block and reads a list
   of proposals (index, title, description, estimated_lines, dependency).
2. validate() checks indices are unique and every dependency points at an
   earlier proposal, so the imported graph is acyclic.
3. import_tasks() creates at most `limit` tasks in order, then wires the
   dependencies in a second pass. Excess proposals are discarded.

Descriptions are stored verbatim. A description given as a mapping is
dumped to YAML once; requirement and acceptance ids are never rewritten.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import yaml

from cobbler_orchestrator.agent import YamlBlockNotFound, extract_yaml_block
from cobbler_orchestrator.errors import TaskImportError
from cobbler_orchestrator.models import ProposedTask

if TYPE_CHECKING:
    from cobbler_orchestrator.issues import IssueStore
    from cobbler_orchestrator.logger import CobblerLogger


@dataclass
class ImportResult:
    """Ids created by one import, in proposal order."""
    created: list[str] = field(default_factory=list)
    index_to_id: dict[int, str] = field(default_factory=dict)
    discarded: list[ProposedTask] = field(default_factory=list)


def _as_int(value: Any, what: str, position: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise TaskImportError(f"entry {position}: {what} must be an integer, got {value!r}", "import")


def _dependencies(entry: dict[str, Any], position: int) -> list[int]:
    raw = entry.get("dependencies", entry.get("dependency"))
    if raw is None:
        return []
    values = raw if isinstance(raw, list) else [raw]
    deps = []
    for value in values:
        dep = _as_int(value, "dependency", position)
        if dep >= 0 and dep not in deps:
            deps.append(dep)
    return deps


def _description(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return yaml.safe_dump(value, sort_keys=False, allow_unicode=True, default_flow_style=False)


def parse_proposals(data: Any) -> list[ProposedTask]:
    """Build proposals from the parsed YAML list."""
    if data is None:
        return []
    if not isinstance(data, list):
        raise TaskImportError("proposed tasks must be a YAML list", "import")

    proposals = []
    for position, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise TaskImportError(f"entry {position} is not a mapping", "import")
        title = str(entry.get("title") or "").strip()
        if not title:
            raise TaskImportError(f"entry {position} has no title", "import")
        lines = entry.get("estimated_lines")
        proposals.append(ProposedTask(
            index=_as_int(entry.get("index", position), "index", position),
            title=title,
            description=_description(entry.get("description")),
            estimated_lines=_as_int(lines, "estimated_lines", position) if lines is not None else None,
            dependencies=_dependencies(entry, position),
        ))
    return proposals


class TaskImporter:
    """Parses, validates and imports proposed tasks."""

    def __init__(self, store: IssueStore, logger: Optional[CobblerLogger] = None) -> None:
        self.store = store
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None) -> None:
        if self._logger:
            log_data = {"component": "importer"}
            if data:
                log_data.update(data)
            self._logger.info(event_type, log_data)

    @staticmethod
    def parse_response(text: str) -> list[ProposedTask]:
        """
        Parse the agent's reply.

        Raises:
            TaskImportError: If there is no YAML block or it is malformed.
        """
        try:
            block = extract_yaml_block(text)
        except YamlBlockNotFound as e:
            raise TaskImportError(str(e), "import")
        try:
            data = yaml.safe_load(block)
        except yaml.YAMLError as e:
            raise TaskImportError(f"invalid YAML in proposed tasks: {e}", "import")
        return parse_proposals(data)

    @staticmethod
    def validate(proposals: list[ProposedTask]) -> None:
        """
        Check that dependencies only reference earlier proposals.

        Raises:
            TaskImportError: On duplicate indices or forward/self/unknown references.
        """
        seen: set[int] = set()
        for proposal in proposals:
            if proposal.index in seen:
                raise TaskImportError(f"duplicate index {proposal.index}", "import", proposal.title)
            for dep in proposal.dependencies:
                if dep not in seen:
                    raise TaskImportError(
                        f"dependency {dep} does not reference an earlier task",
                        "import", proposal.title,
                    )
            seen.add(proposal.index)

    def import_tasks(self, proposals: list[ProposedTask], limit: int) -> ImportResult:
        """
        Create up to limit tasks and wire their dependencies.

        Proposals are validated before anything is created.
        """
        self.validate(proposals)
        kept = proposals[:max(limit, 0)]
        result = ImportResult(discarded=proposals[len(kept):])

        for proposal in kept:
            task_id = self.store.create(proposal.title, proposal.description)
            result.created.append(task_id)
            result.index_to_id[proposal.index] = task_id
            self._log("task_created", {"task_id": task_id, "index": proposal.index, "title": proposal.title})

        for proposal in kept:
            child = result.index_to_id[proposal.index]
            for dep in proposal.dependencies:
                self.store.add_dependency(child, result.index_to_id[dep])

        if result.discarded:
            self._log("tasks_discarded", {
                "count": len(result.discarded),
                "titles": [p.title for p in result.discarded],
                "limit": limit,
            })
        return result
