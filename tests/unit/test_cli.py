"""Tests for the cobbler CLI commands."""

from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from cobbler_orchestrator import __version__
from cobbler_orchestrator.cli import app
from cobbler_orchestrator.cli.common import set_project_dir
from cobbler_orchestrator.errors import AmbiguousGenerationError, PreconditionError
from cobbler_orchestrator.models import StitchOutcome

from fakes import proposals_reply


NAME = "generation-2026-03-14-09-30-00"


@pytest.fixture(autouse=True)
def _reset_project_dir():
    yield
    set_project_dir(None)


@pytest.fixture
def wired(config, manager, workflow):
    """Route the CLI factories to the test doubles."""
    with patch("cobbler_orchestrator.cli.generator.load_config_or_exit", return_value=config), \
         patch("cobbler_orchestrator.cli.generator.build_manager", return_value=manager), \
         patch("cobbler_orchestrator.cli.cobbler.load_config_or_exit", return_value=config), \
         patch("cobbler_orchestrator.cli.cobbler.build_workflow", return_value=workflow):
        yield


class TestApp:
    """Top-level app behavior."""

    def test_version(self, cli_runner):
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_project_dir(self, cli_runner, tmp_path):
        """--project must point at an existing directory."""
        result = cli_runner.invoke(app, ["--project", str(tmp_path / "nope"), "generator", "list"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_init_writes_config(self, cli_runner, tmp_path):
        """init creates config.yaml and the log ignore file, and is repeatable."""
        result = cli_runner.invoke(app, ["--project", str(tmp_path), "init"])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "config.yaml").exists()
        assert (tmp_path / ".cobbler" / ".gitignore").read_text() == "logs/\n"

        again = cli_runner.invoke(app, ["--project", str(tmp_path), "init"])
        assert again.exit_code == 0
        assert "already exists" in again.output

    def test_invalid_config_exits(self, cli_runner, tmp_path):
        """A broken config.yaml is reported with exit status 1."""
        (tmp_path / "config.yaml").write_text("measure: [not, a, mapping]\n")
        result = cli_runner.invoke(app, ["--project", str(tmp_path), "generator", "list"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestGeneratorCommands:
    """Lifecycle commands against the test doubles."""

    def test_start_list_stop(self, cli_runner, repo, wired):
        """A generation can be started, listed and merged from the CLI."""
        result = cli_runner.invoke(app, ["generator", "start"])
        assert result.exit_code == 0, result.output
        assert NAME in result.output

        listed = cli_runner.invoke(app, ["generator", "list"])
        assert listed.exit_code == 0
        assert "Running" in listed.output

        stopped = cli_runner.invoke(app, ["generator", "stop"])
        assert stopped.exit_code == 0, stopped.output
        assert "Merged generation" in stopped.output
        assert repo.current_branch() == "main"

    def test_start_precondition_failure(self, cli_runner, config, repo, wired):
        """Precondition errors exit 1 with the reason."""
        (config.root_path / "README.md").write_text("edited\n")
        result = cli_runner.invoke(app, ["generator", "start"])
        assert result.exit_code == 1
        assert "uncommitted" in result.output
        assert repo.list_tags() == []

    def test_run_reports_summary(self, cli_runner, agent, wired):
        """run prints cycle and task counts."""
        cli_runner.invoke(app, ["generator", "start"])
        agent.steps.append(proposals_reply([]))

        result = cli_runner.invoke(app, ["generator", "run", "--cycles", "1"])

        assert result.exit_code == 0, result.output
        assert "1 cycle(s)" in result.output

    def test_resume_ambiguous_lists_candidates(self, cli_runner, config):
        """An ambiguous resume names the candidate branches."""
        manager = MagicMock()
        manager.resume.side_effect = AmbiguousGenerationError("resume", ["generation-a", "generation-b"])
        with patch("cobbler_orchestrator.cli.generator.load_config_or_exit", return_value=config), \
             patch("cobbler_orchestrator.cli.generator.build_manager", return_value=manager):
            result = cli_runner.invoke(app, ["generator", "resume"])

        assert result.exit_code == 1
        assert "generation-a" in result.output
        assert "generation-b" in result.output

    def test_switch_invalid(self, cli_runner, wired):
        result = cli_runner.invoke(app, ["generator", "switch", "feature"])
        assert result.exit_code == 1
        assert "not a generation branch" in result.output

    def test_list_empty(self, cli_runner, wired):
        result = cli_runner.invoke(app, ["generator", "list"])
        assert result.exit_code == 0
        assert "No generations found" in result.output

    def test_reset_requires_confirmation(self, cli_runner, config):
        """Declining the prompt leaves everything untouched."""
        manager = MagicMock()
        with patch("cobbler_orchestrator.cli.generator.load_config_or_exit", return_value=config), \
             patch("cobbler_orchestrator.cli.generator.build_manager", return_value=manager):
            result = cli_runner.invoke(app, ["generator", "reset"], input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        manager.reset.assert_not_called()

    def test_reset_force(self, cli_runner, repo, wired):
        """--force skips the prompt; a clean repository reports nothing to do."""
        result = cli_runner.invoke(app, ["generator", "reset", "--force"])
        assert result.exit_code == 0
        assert "Nothing to reset" in result.output

    def test_stop_error_exits(self, cli_runner, config):
        manager = MagicMock()
        manager.stop.side_effect = PreconditionError("not on a generation branch", "stop", "main")
        with patch("cobbler_orchestrator.cli.generator.load_config_or_exit", return_value=config), \
             patch("cobbler_orchestrator.cli.generator.build_manager", return_value=manager):
            result = cli_runner.invoke(app, ["generator", "stop"])
        assert result.exit_code == 1
        assert "not on a generation branch" in result.output


class TestCobblerCommands:
    """Single-phase commands."""

    def test_stitch_nothing_ready(self, cli_runner, wired):
        result = cli_runner.invoke(app, ["cobbler", "stitch"])
        assert result.exit_code == 0, result.output
        assert "completed 0 task(s)" in result.output

    def test_stitch_passes_limit(self, cli_runner, config):
        workflow = MagicMock()
        workflow.stitch.return_value = StitchOutcome(completed=["cob-1"])
        with patch("cobbler_orchestrator.cli.cobbler.load_config_or_exit", return_value=config), \
             patch("cobbler_orchestrator.cli.cobbler.build_workflow", return_value=workflow):
            result = cli_runner.invoke(app, ["cobbler", "stitch", "--limit", "3"])

        assert result.exit_code == 0
        workflow.stitch.assert_called_once_with(3)

    def test_measure(self, cli_runner, agent, wired):
        """measure prints the created task ids."""
        agent.steps.append(proposals_reply([{"index": 0, "title": "Model", "dependency": -1}]))

        result = cli_runner.invoke(app, ["cobbler", "measure"])

        assert result.exit_code == 0, result.output
        assert "1 task(s) created" in result.output
        assert "cob-1" in result.output

    def test_prompt_prints_yaml(self, cli_runner, agent, wired):
        """prompt renders the measure prompt without calling the agent."""
        result = cli_runner.invoke(app, ["cobbler", "prompt"])
        assert result.exit_code == 0
        assert "project_context:" in result.output
        assert agent.calls == []

    def test_history(self, cli_runner, agent, wired):
        """history lists recorded invocations."""
        empty = cli_runner.invoke(app, ["cobbler", "history"])
        assert "No invocations recorded" in empty.output

        agent.steps.append(proposals_reply([]))
        cli_runner.invoke(app, ["cobbler", "measure"])
        with patch("cobbler_orchestrator.cli.cobbler.console", Console(width=200)):
            result = cli_runner.invoke(app, ["cobbler", "history"])

        assert result.exit_code == 0
        assert "measure" in result.output
        assert "1 invocation(s)" in result.output

    def test_outcomes(self, cli_runner, repo, wired):
        """outcomes reads task metrics from merge commit trailers."""
        empty = cli_runner.invoke(app, ["cobbler", "outcomes"])
        assert "No outcome records found" in empty.output

        repo.commit_all(
            "Merge cob-1: Model\n\nTask-Id: cob-1\nTokens-Input: 1200\nTokens-Output: 300\n"
            "Tokens-Cost-USD: 0.05\nLoc-Prod-Before: 10\nLoc-Prod-After: 40\nDuration-Seconds: 65",
            allow_empty=True,
        )
        with patch("cobbler_orchestrator.cli.cobbler.console", Console(width=200)):
            result = cli_runner.invoke(app, ["cobbler", "outcomes"])

        assert result.exit_code == 0, result.output
        assert "cob-1" in result.output
        assert "+30" in result.output
        assert "1m05s" in result.output
        assert "1 task(s)" in result.output
