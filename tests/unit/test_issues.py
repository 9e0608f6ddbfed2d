"""Tests for the beads issue store adapter."""

import json
import subprocess
from unittest.mock import patch

import pytest

from cobbler_orchestrator.errors import CobblerError, ExternalProcessError
from cobbler_orchestrator.issues import BeadsIssueStore, task_from_json
from cobbler_orchestrator.models import TaskStatus


def _done(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


class FakeBd:
    """Scripted bd responses keyed by subcommand."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append(command)
        response = self.responses.get(command[1], _done())
        return response(command) if callable(response) else response


@pytest.fixture
def store(tmp_path):
    return BeadsIssueStore(tmp_path)


class TestTaskFromJson:
    """Conversion of bd JSON entries."""

    def test_dependencies_and_status(self):
        """Dependency objects collapse to ids; open maps to ready or pending."""
        entry = {
            "id": "cob-2",
            "title": "Second",
            "status": "open",
            "dependencies": [{"depends_on_id": "cob-1"}, "cob-0"],
        }
        assert task_from_json(entry, ready=True).status == TaskStatus.READY
        task = task_from_json(entry)
        assert task.status == TaskStatus.PENDING
        assert task.dependencies == ["cob-1", "cob-0"]
        assert task.description == ""


class TestBeadsIssueStore:
    """Commands issued to bd and parsing of their output."""

    def test_create_returns_id(self, store):
        """create passes title and description and returns the new id."""
        bd = FakeBd({"create": _done(json.dumps({"id": "cob-7", "title": "T"}))})
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            assert store.create("T", "files: [a.py]") == "cob-7"

        command = bd.calls[0]
        assert command[:2] == ["bd", "create"]
        assert command[command.index("--description") + 1] == "files: [a.py]"

    def test_create_without_id(self, store):
        """An id-less reply is an error."""
        bd = FakeBd({"create": _done("{}")})
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            with pytest.raises(CobblerError, match="no id"):
                store.create("T", "")

    def test_ready_skips_in_progress(self, store):
        """Only open entries from bd ready count as ready."""
        entries = [
            {"id": "cob-1", "title": "A", "status": "open"},
            {"id": "cob-2", "title": "B", "status": "in_progress"},
        ]
        bd = FakeBd({"ready": _done(json.dumps(entries))})
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            ready = store.ready()
        assert [t.id for t in ready] == ["cob-1"]
        assert ready[0].status == TaskStatus.READY

    def test_list_filters_ready(self, store):
        """Listing READY narrows open tasks to those bd reports ready."""
        listed = [
            {"id": "cob-1", "title": "A", "status": "open"},
            {"id": "cob-2", "title": "B", "status": "open", "dependencies": ["cob-1"]},
        ]
        bd = FakeBd({
            "list": _done(json.dumps(listed)),
            "ready": _done(json.dumps(listed[:1])),
        })
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            tasks = store.list(TaskStatus.READY)

        assert [t.id for t in tasks] == ["cob-1"]
        list_call = next(c for c in bd.calls if c[1] == "list")
        assert list_call[list_call.index("--status") + 1] == "open"

    def test_update_status_uses_store_status(self, store):
        """READY is persisted as open."""
        bd = FakeBd()
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            store.update_status("cob-1", TaskStatus.READY)
        assert bd.calls[0] == ["bd", "update", "cob-1", "--status", "open"]

    def test_get_missing(self, store):
        """A failing show means the task does not exist."""
        bd = FakeBd({"show": _done(returncode=1, stderr="not found")})
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            assert store.get("cob-9") is None

    def test_failure_raises_external_process_error(self, store):
        """A nonzero exit surfaces as ExternalProcessError."""
        bd = FakeBd({"close": _done(returncode=1, stderr="database locked")})
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            with pytest.raises(ExternalProcessError) as exc_info:
                store.close("cob-1")
        assert exc_info.value.returncode == 1

    def test_missing_binary(self, store):
        """A missing bd binary is reported, not raised as FileNotFoundError."""
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=FileNotFoundError("bd")):
            with pytest.raises(ExternalProcessError):
                store.init("cob")

    def test_reset_removes_database(self, store, tmp_path):
        """Reset removes the beads directory even when bd admin fails."""
        (tmp_path / ".beads").mkdir()
        (tmp_path / ".beads" / "issues.db").write_text("")
        bd = FakeBd({"admin": _done(returncode=1, stderr="unknown command")})
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            store.reset()
        assert not store.is_initialized()

    def test_reset_uninitialized_is_noop(self, store):
        """Nothing runs when there is no database."""
        bd = FakeBd()
        with patch("cobbler_orchestrator.issues.subprocess.run", side_effect=bd):
            store.reset()
        assert bd.calls == []
