"""Tests for parsing and importing proposed tasks."""

import pytest
import yaml

from cobbler_orchestrator.errors import TaskImportError
from cobbler_orchestrator.importer import TaskImporter, parse_proposals
from cobbler_orchestrator.models import ProposedTask, TaskStatus

from fakes import FakeIssueStore


REPLY = """I looked at the spec. Here is the plan:

```yaml
- index: 0
  title: Add widget model
  estimated_lines: 120
  dependency: -1
  description:
    deliverable_type: code
    files:
      - src/widget.py
    requirements:
      - id: R1
        text: widget has a name
- index: 1
  title: Add widget counter
  estimated_lines: 80
  dependency: 0
  description: Count widgets.
- index: 2
  title: Document counter
  dependency: [0, 1]
  description: Write docs.
```

Let me know if you want changes.
"""


class TestParseResponse:
    """Extraction of the proposal list from agent replies."""

    def test_parses_first_yaml_block(self):
        """Entries, dependencies and estimates are read from the fenced block."""
        proposals = TaskImporter.parse_response(REPLY)

        assert [p.title for p in proposals] == ["Add widget model", "Add widget counter", "Document counter"]
        assert proposals[0].dependencies == []
        assert proposals[1].dependencies == [0]
        assert proposals[2].dependencies == [0, 1]
        assert proposals[0].estimated_lines == 120
        assert proposals[2].estimated_lines is None

    def test_mapping_description_dumped_once(self):
        """A structured description is stored as YAML with ids unchanged."""
        proposals = TaskImporter.parse_response(REPLY)
        description = yaml.safe_load(proposals[0].description)
        assert description["requirements"] == [{"id": "R1", "text": "widget has a name"}]
        assert proposals[1].description == "Count widgets."

    def test_missing_block_raises(self):
        """A reply without a YAML block is an import error."""
        with pytest.raises(TaskImportError, match="fenced"):
            TaskImporter.parse_response("I have no tasks for you.")

    def test_invalid_yaml_raises(self):
        """Malformed YAML is an import error."""
        with pytest.raises(TaskImportError, match="invalid YAML"):
            TaskImporter.parse_response("```yaml\n- title: [oops\n```\n")

    def test_empty_block_is_no_proposals(self):
        """An empty list proposes nothing."""
        assert TaskImporter.parse_response("```yaml\n[]\n```") == []

    @pytest.mark.parametrize("data,match", [
        ({"title": "x"}, "list"),
        (["just a string"], "mapping"),
        ([{"description": "no title"}], "title"),
        ([{"title": "x", "index": "first"}], "index"),
    ])
    def test_malformed_entries(self, data, match):
        """Structural problems name the offending entry."""
        with pytest.raises(TaskImportError, match=match):
            parse_proposals(data)


class TestValidate:
    """Dependency ordering checks."""

    def test_forward_reference_rejected(self):
        """A dependency on a later task is rejected."""
        proposals = [
            ProposedTask(index=0, title="a", description="", dependencies=[1]),
            ProposedTask(index=1, title="b", description=""),
        ]
        with pytest.raises(TaskImportError, match="earlier"):
            TaskImporter.validate(proposals)

    def test_duplicate_index_rejected(self):
        """Indices must be unique."""
        proposals = [
            ProposedTask(index=0, title="a", description=""),
            ProposedTask(index=0, title="b", description=""),
        ]
        with pytest.raises(TaskImportError, match="duplicate"):
            TaskImporter.validate(proposals)


class TestImportTasks:
    """Creation of tasks in the issue store."""

    def test_creates_and_wires_dependencies(self):
        """Tasks are created in order with their dependencies translated to ids."""
        store = FakeIssueStore()
        result = TaskImporter(store).import_tasks(TaskImporter.parse_response(REPLY), limit=10)

        assert result.created == ["cob-1", "cob-2", "cob-3"]
        assert result.index_to_id == {0: "cob-1", 1: "cob-2", 2: "cob-3"}
        assert store.get("cob-2").dependencies == ["cob-1"]
        assert store.get("cob-3").dependencies == ["cob-1", "cob-2"]
        assert [t.id for t in store.ready()] == ["cob-1"]
        assert store.get("cob-2").status == TaskStatus.PENDING

    def test_limit_discards_excess(self):
        """Only the first `limit` proposals are created."""
        store = FakeIssueStore()
        result = TaskImporter(store).import_tasks(TaskImporter.parse_response(REPLY), limit=1)

        assert result.created == ["cob-1"]
        assert [p.title for p in result.discarded] == ["Add widget counter", "Document counter"]
        assert len(store.tasks) == 1

    def test_invalid_proposals_create_nothing(self):
        """Validation happens before any task is created."""
        store = FakeIssueStore()
        proposals = [
            ProposedTask(index=0, title="a", description=""),
            ProposedTask(index=1, title="b", description="", dependencies=[5]),
        ]
        with pytest.raises(TaskImportError):
            TaskImporter(store).import_tasks(proposals, limit=10)
        assert store.tasks == {}
