# Shared fixtures: a project directory under tmp_path wired to the test doubles

import pytest
from pathlib import Path
from typer.testing import CliRunner

from cobbler_orchestrator.config import CobblerConfig
from cobbler_orchestrator.lifecycle import GenerationManager
from cobbler_orchestrator.workflow import CobblerWorkflow

from fakes import FakeAgent, FakeIssueStore, FakeRepository, TickingClock


SPEC_DOC = """# Widget service

The widget service counts widgets.

## Requirements

- R1: count widgets
"""


@pytest.fixture
def repo_root(tmp_path) -> Path:
    """Project directory with a committed specification document."""
    root = tmp_path / "project"
    (root / "docs").mkdir(parents=True)
    (root / "docs" / "spec.md").write_text(SPEC_DOC)
    (root / "README.md").write_text("# project\n")
    return root


@pytest.fixture
def config(repo_root, tmp_path) -> CobblerConfig:
    """Default config rooted at the project, worktrees kept under tmp_path."""
    cfg = CobblerConfig(repo_root=str(repo_root))
    cfg.git.worktrees_root = str(tmp_path / "worktrees")
    return cfg


@pytest.fixture
def repo(repo_root) -> FakeRepository:
    return FakeRepository(repo_root)


@pytest.fixture
def store() -> FakeIssueStore:
    return FakeIssueStore()


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def workflow(config, repo, store, agent, clock) -> CobblerWorkflow:
    return CobblerWorkflow(config, repo, store, agent, clock=clock)


@pytest.fixture
def manager(config, repo, store, workflow, clock) -> GenerationManager:
    return GenerationManager(config, repo, store, workflow=workflow, clock=clock)


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()
