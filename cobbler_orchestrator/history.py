"""
Invocation history artifacts.

Each agent invocation leaves files in <cobbler dir>/history/ sharing one
timestamp stamp:

- <stamp>-<phase>-prompt.yaml   written before the agent runs
- <stamp>-<phase>-log.log       raw agent output
- <stamp>-<phase>-stats.yaml    the InvocationRecord
- <stamp>-<phase>-report.yaml   what the invocation produced

Files are created exclusively and never rewritten.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from cobbler_orchestrator.models import InvocationRecord
from cobbler_orchestrator.utils.fs import write_new


STAMP_FORMAT = "%Y%m%d-%H%M%S"


class HistoryWriter:
    """Writes write-once history artifacts for agent invocations."""

    def __init__(self, history_dir: str | Path, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.history_dir = Path(history_dir)
        self._clock = clock or datetime.now

    def new_stamp(self, phase: str) -> str:
        """A timestamp stamp no existing artifact of this phase uses."""
        base = self._clock().strftime(STAMP_FORMAT)
        stamp = base
        counter = 1
        while self.history_dir.exists() and any(self.history_dir.glob(f"{stamp}-{phase}-*")):
            stamp = f"{base}-{counter}"
            counter += 1
        return stamp

    def _path(self, stamp: str, phase: str, kind: str, suffix: str = "yaml") -> Path:
        return self.history_dir / f"{stamp}-{phase}-{kind}.{suffix}"

    def write_prompt(self, stamp: str, phase: str, prompt: str) -> Path:
        path = self._path(stamp, phase, "prompt")
        write_new(path, prompt)
        return path

    def write_log(self, stamp: str, phase: str, output: str) -> Path:
        path = self._path(stamp, phase, "log", "log")
        write_new(path, output)
        return path

    def write_stats(self, stamp: str, record: InvocationRecord) -> Path:
        path = self._path(stamp, record.caller, "stats")
        write_new(path, yaml.safe_dump(record.to_dict(), sort_keys=False, allow_unicode=True))
        return path

    def write_report(self, stamp: str, phase: str, report: dict[str, Any]) -> Path:
        path = self._path(stamp, phase, "report")
        write_new(path, yaml.safe_dump(report, sort_keys=False, allow_unicode=True))
        return path

    def read_stats(self) -> list[dict[str, Any]]:
        """All stats records, oldest first."""
        if not self.history_dir.is_dir():
            return []
        records = []
        for path in sorted(self.history_dir.glob("*-stats.yaml")):
            with open(path, "r") as f:
                data = yaml.safe_load(f)
            if isinstance(data, dict):
                data["file"] = path.name
                records.append(data)
        return records
