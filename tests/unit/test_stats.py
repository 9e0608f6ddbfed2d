"""Tests for lines-of-code snapshots."""

from cobbler_orchestrator.config import ProjectConfig
from cobbler_orchestrator.stats import count_lines, is_test_path, loc_snapshot, select_source_files

from fakes import FakeRepository


MARKERS = ["tests/", "test_", "_test."]


class TestIsTestPath:
    """Classification of test files."""

    def test_directory_marker(self):
        """Files under a tests/ directory are tests."""
        assert is_test_path("tests/unit/helpers.py", MARKERS)
        assert is_test_path("pkg/tests/helpers.py", MARKERS)

    def test_name_markers(self):
        """test_ and _test. markers match the file name."""
        assert is_test_path("src/test_widget.py", MARKERS)
        assert is_test_path("src/widget_test.go", MARKERS)

    def test_production_file(self):
        """Directory names containing a marker do not make a file a test."""
        assert not is_test_path("src/test_data/widget.py", MARKERS)
        assert not is_test_path("src/widget.py", MARKERS)


class TestSelectSourceFiles:
    """Source file selection by directory and extension."""

    def test_filters_dirs_and_extensions(self):
        """Only configured dirs and extensions are selected, sorted."""
        tracked = ["src/b.py", "src/a.py", "src/data.json", "docs/x.py", "tests/test_a.py", "srcx/c.py"]
        selected = select_source_files(tracked, ProjectConfig())
        assert selected == ["src/a.py", "src/b.py", "tests/test_a.py"]


class TestLocSnapshot:
    """Counting production and test lines."""

    def test_counts_non_blank_lines(self, tmp_path):
        """Blank lines are not counted; tests are counted separately."""
        root = tmp_path / "repo"
        (root / "src").mkdir(parents=True)
        (root / "tests").mkdir()
        (root / "src" / "widget.py").write_text("a = 1\n\nb = 2\n")
        (root / "tests" / "test_widget.py").write_text("def test():\n    pass\n")
        (root / "notes.md").write_text("ignored\n")
        repo = FakeRepository(root)

        snapshot = loc_snapshot(repo, ProjectConfig())
        assert snapshot.production == 2
        assert snapshot.test == 2
        assert snapshot.total == 4

    def test_count_lines(self):
        """Whitespace-only lines are blank."""
        assert count_lines("x\n   \n\ny\n") == 2
