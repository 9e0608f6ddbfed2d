"""Tests for write-once invocation history artifacts."""

from datetime import datetime

import pytest
import yaml

from cobbler_orchestrator.history import HistoryWriter
from cobbler_orchestrator.models import InvocationRecord, TokenUsage


def _fixed_clock():
    return datetime(2026, 3, 14, 9, 30, 0)


def _record(caller="measure", status="success"):
    return InvocationRecord(
        caller=caller,
        status=status,
        started_at=_fixed_clock(),
        duration_s=12.0,
        tokens=TokenUsage(input=100, output=20),
        cost_usd=0.01,
    )


class TestHistoryWriter:
    """Artifact naming and exclusive creation."""

    def test_artifact_names_share_stamp(self, tmp_path):
        """Prompt, log, stats and report share one stamp and phase."""
        history = HistoryWriter(tmp_path / "history", _fixed_clock)
        stamp = history.new_stamp("measure")

        history.write_prompt(stamp, "measure", "role: planner\n")
        history.write_log(stamp, "measure", "raw output")
        history.write_stats(stamp, _record())
        history.write_report(stamp, "measure", {"created": ["cob-1"]})

        assert stamp == "20260314-093000"
        assert sorted(p.name for p in (tmp_path / "history").iterdir()) == [
            "20260314-093000-measure-log.log",
            "20260314-093000-measure-prompt.yaml",
            "20260314-093000-measure-report.yaml",
            "20260314-093000-measure-stats.yaml",
        ]

    def test_stamp_collision_gets_suffix(self, tmp_path):
        """A second invocation in the same second gets a distinct stamp."""
        history = HistoryWriter(tmp_path, _fixed_clock)
        first = history.new_stamp("stitch")
        history.write_prompt(first, "stitch", "p")

        second = history.new_stamp("stitch")
        assert second == f"{first}-1"
        assert history.new_stamp("measure") == first

    def test_files_are_never_rewritten(self, tmp_path):
        """Writing an artifact twice fails and keeps the original."""
        history = HistoryWriter(tmp_path, _fixed_clock)
        path = history.write_prompt("s", "measure", "original")
        with pytest.raises(FileExistsError):
            history.write_prompt("s", "measure", "replacement")
        assert path.read_text() == "original"

    def test_stats_roundtrip(self, tmp_path):
        """read_stats returns every record, oldest first, with its file name."""
        history = HistoryWriter(tmp_path, _fixed_clock)
        history.write_stats("20260314-093000", _record("measure"))
        history.write_stats("20260314-093005", _record("stitch", "failed"))

        records = history.read_stats()
        assert [r["caller"] for r in records] == ["measure", "stitch"]
        assert records[1]["status"] == "failed"
        assert records[0]["file"] == "20260314-093000-measure-stats.yaml"
        assert records[0]["tokens"]["input"] == 100

    def test_stats_file_is_yaml_mapping(self, tmp_path):
        """Stats files hold the record's dictionary form."""
        history = HistoryWriter(tmp_path, _fixed_clock)
        path = history.write_stats("x", _record())
        data = yaml.safe_load(path.read_text())
        assert data["caller"] == "measure"
        assert data["duration"] == "12s"

    def test_read_stats_without_directory(self, tmp_path):
        """A missing history directory has no records."""
        assert HistoryWriter(tmp_path / "absent").read_stats() == []
