"""Lines-of-code snapshots split into production and test code."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from cobbler_orchestrator.models import LocSnapshot

if TYPE_CHECKING:
    from cobbler_orchestrator.config import ProjectConfig
    from cobbler_orchestrator.git import Repository


def is_test_path(path: str, markers: Sequence[str]) -> bool:
    """
    Whether a path holds test code.

    Markers ending in "/" match a directory anywhere in the path; other
    markers match within the file name.
    """
    name = path.rsplit("/", 1)[-1]
    for marker in markers:
        if marker.endswith("/"):
            if path.startswith(marker) or f"/{marker}" in path:
                return True
        elif marker in name:
            return True
    return False


def count_lines(content: str) -> int:
    return sum(1 for line in content.splitlines() if line.strip())


def select_source_files(tracked: Sequence[str], project: ProjectConfig) -> list[str]:
    """Tracked files under the source dirs that carry a source extension."""
    dirs = [d.strip("/") for d in project.source_dirs]
    exts = tuple(project.source_extensions)
    selected = []
    for path in tracked:
        if exts and not path.endswith(exts):
            continue
        if dirs and not any(path == d or path.startswith(d + "/") for d in dirs):
            continue
        selected.append(path)
    return sorted(selected)


def loc_snapshot(repo: Repository, project: ProjectConfig) -> LocSnapshot:
    """Count non-blank lines of tracked source files in the repository's working tree."""
    production = test = 0
    for path in select_source_files(repo.tracked_files(), project):
        content = repo.read_file(path)
        if content is None:
            continue
        lines = count_lines(content)
        if is_test_path(path, project.test_markers):
            test += lines
        else:
            production += lines
    return LocSnapshot(production=production, test=test)
