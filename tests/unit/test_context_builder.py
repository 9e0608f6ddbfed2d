"""Tests for project context assembly and byte budgeting."""

import yaml

from cobbler_orchestrator.context_builder import (
    ContextBuilder,
    apply_budget,
    dump_yaml,
    number_lines,
    prioritize,
    resolve_declared,
    serialized_size,
    strip_parenthetical,
)
from cobbler_orchestrator.models import ProjectContext, SourceFile, Task

from fakes import FakeRepository


def _context(*sizes: int) -> ProjectContext:
    return ProjectContext(files=[
        SourceFile(path=f"src/f{i}.py", content="x" * size) for i, size in enumerate(sizes)
    ])


class TestNumberLines:
    """Line numbering for source files."""

    def test_numbers_non_blank_lines(self):
        """Blank lines are skipped but keep their line numbers."""
        assert number_lines("a = 1\n\n  \nb = 2\n") == "1 | a = 1\n4 | b = 2"

    def test_empty_content(self):
        """Empty files render as an empty string."""
        assert number_lines("") == ""


class TestDeclaredPaths:
    """Resolution of task-declared paths against tracked files."""

    def test_strip_parenthetical(self):
        """Trailing notes in parentheses are dropped."""
        assert strip_parenthetical("docs/spec.md (widget section)") == "docs/spec.md"
        assert strip_parenthetical("src/a.py") == "src/a.py"

    def test_resolve_exact_and_suffix(self):
        """Declared paths match exactly or as a path suffix, in declared order."""
        tracked = ["docs/spec.md", "src/pkg/widget.py", "src/counter.py"]
        resolved = resolve_declared(tracked, ["./src/counter.py", "widget.py", "docs/spec.md (intro)"])
        assert resolved == ["src/counter.py", "src/pkg/widget.py", "docs/spec.md"]

    def test_unknown_paths_skipped(self):
        """Files the task will create are not resolved."""
        assert resolve_declared(["src/a.py"], ["src/new.py", ""]) == []

    def test_prioritize(self):
        """Required first in declared order, then the rest sorted."""
        assert prioritize(["c", "a", "b", "z"], ["z", "b"]) == ["z", "b", "a", "c"]


class TestApplyBudget:
    """Dropping files to fit a byte budget."""

    def test_zero_budget_keeps_everything(self):
        """A budget of 0 disables enforcement."""
        context = apply_budget(_context(5000, 5000), 0)
        assert len(context.files) == 2
        assert context.size_bytes == serialized_size(context)

    def test_drops_from_the_back(self):
        """Lowest priority files are dropped first until the context fits."""
        context = _context(100, 100, 100)
        single = serialized_size(_context(100, 100))
        context = apply_budget(context, single)

        assert [f.path for f in context.files] == ["src/f0.py", "src/f1.py"]
        assert context.dropped == ["src/f2.py"]
        assert context.size_bytes <= single

    def test_never_drops_last_file(self):
        """One file always remains even when it alone exceeds the budget."""
        context = apply_budget(_context(1000, 1000), 10)
        assert [f.path for f in context.files] == ["src/f0.py"]
        assert context.dropped == ["src/f1.py"]
        assert context.size_bytes > 10

    def test_deterministic(self):
        """Identical inputs serialize identically."""
        assert dump_yaml(_context(10, 20).to_dict()) == dump_yaml(_context(10, 20).to_dict())

    def test_multiline_content_is_block_style(self):
        """Multi-line strings serialize as literal blocks and round-trip."""
        text = dump_yaml({"content": "1 | a\n2 | b"})
        assert "content: |" in text
        assert yaml.safe_load(text) == {"content": "1 | a\n2 | b"}


class TestContextBuilder:
    """Measure and stitch contexts built from a repository."""

    def _repo(self, tmp_path):
        root = tmp_path / "repo"
        (root / "src").mkdir(parents=True)
        (root / "docs").mkdir()
        (root / "src" / "b.py").write_text("b = 2\n")
        (root / "src" / "a.py").write_text("a = 1\n\nprint(a)\n")
        (root / "src" / "notes.txt").write_text("not source\n")
        (root / "docs" / "spec.md").write_text("# Spec\n")
        (root / "docs" / "draft.md").write_text("# Draft\n")
        return FakeRepository(root)

    def test_for_measure(self, tmp_path, config):
        """Measure context holds docs, issues and numbered sources sorted by path."""
        repo = self._repo(tmp_path)
        config.context.exclude = ["docs/draft.md"]
        builder = ContextBuilder(config)

        context = builder.for_measure(repo, [{"id": "cob-1", "title": "t", "status": "ready"}])

        assert [d.path for d in context.documents] == ["docs/spec.md"]
        assert context.documents[0].content == "# Spec\n"
        assert [f.path for f in context.files] == ["src/a.py", "src/b.py"]
        assert context.files[0].content == "1 | a = 1\n3 | print(a)"
        assert context.issues[0]["id"] == "cob-1"
        assert context.size_bytes == serialized_size(context)

    def test_budget_keeps_documents(self, tmp_path, config):
        """Budgeting drops source files but never documents."""
        repo = self._repo(tmp_path)
        config.context.max_bytes = 1
        context = ContextBuilder(config).for_measure(repo, [])

        assert len(context.documents) == 2
        assert [f.path for f in context.files] == ["src/a.py"]
        assert context.dropped == ["src/b.py"]

    def test_for_task_uses_declared_files(self, tmp_path, config):
        """Stitch context contains the declared files in declaration order."""
        repo = self._repo(tmp_path)
        task = Task(
            id="cob-1",
            title="Widget",
            description="required_reading:\n  - docs/spec.md\nfiles:\n  - src/b.py\n  - src/new.py\n",
        )
        context = ContextBuilder(config).for_task(repo, task)

        assert [f.path for f in context.files] == ["docs/spec.md", "src/b.py"]
        assert context.documents == []

    def test_for_task_without_declared_paths(self, tmp_path, config):
        """A free-text task falls back to all tracked source."""
        repo = self._repo(tmp_path)
        task = Task(id="cob-1", title="Widget", description="free text only")

        context = ContextBuilder(config).for_task(repo, task)

        assert [f.path for f in context.files] == ["src/a.py", "src/b.py"]

    def test_for_task_unmatched_paths_respect_budget(self, tmp_path, config):
        """Declared paths that match nothing fall back, and the budget keeps one file."""
        repo = self._repo(tmp_path)
        config.context.max_bytes = 1
        task = Task(id="cob-1", title="Widget", description="files:\n  - src/missing.py\n")

        context = ContextBuilder(config).for_task(repo, task)

        assert [f.path for f in context.files] == ["src/a.py"]
        assert context.dropped == ["src/b.py"]
