"""Tests for task outcome trailers on merge commits."""

from datetime import datetime

from cobbler_orchestrator.models import InvocationRecord, LocSnapshot, TokenUsage
from cobbler_orchestrator.outcomes import (
    collect_outcomes,
    commit_message,
    format_trailers,
    parse_outcome,
    parse_trailers,
)

from fakes import FakeRepository


BRANCH = "task/generation-2026-03-14-09-30-00-cob-3"


def _record(**overrides) -> InvocationRecord:
    values = dict(
        caller="stitch",
        status="success",
        started_at=datetime(2026, 3, 14, 9, 30, 0),
        duration_s=125.4,
        tokens=TokenUsage(input=1200, output=300, cache_creation=40, cache_read=5),
        cost_usd=0.0425,
        task_id="cob-3",
        task_title="Widget model",
        loc_before=LocSnapshot(production=100, test=20),
        loc_after=LocSnapshot(production=160, test=15),
    )
    values.update(overrides)
    return InvocationRecord(**values)


class TestFormatTrailers:
    """Trailer block written on the task merge commit."""

    def test_keys_in_order(self):
        text = format_trailers(_record(), BRANCH)
        keys = [line.split(": ")[0] for line in text.splitlines()]
        assert keys == [
            "Task-Id", "Task-Branch",
            "Tokens-Input", "Tokens-Output", "Tokens-Cache-Creation", "Tokens-Cache-Read",
            "Tokens-Cost-USD",
            "Loc-Prod-Before", "Loc-Prod-After", "Loc-Test-Before", "Loc-Test-After",
            "Duration-Seconds",
        ]
        assert "Duration-Seconds: 125" in text

    def test_missing_loc_counts_as_zero(self):
        text = format_trailers(_record(loc_before=None, loc_after=None), BRANCH)
        assert "Loc-Prod-Before: 0" in text
        assert "Loc-Test-After: 0" in text


class TestParseOutcome:
    """Reading records back from commit messages."""

    def test_reads_written_message(self):
        """A message written for a record parses back to the same metrics."""
        message = commit_message("Merge cob-3: Widget model", _record(), BRANCH)

        outcome = parse_outcome(message)

        assert outcome.task_id == "cob-3"
        assert outcome.branch == BRANCH
        assert outcome.tokens == TokenUsage(input=1200, output=300, cache_creation=40, cache_read=5)
        assert outcome.cost_usd == 0.0425
        assert outcome.production_delta == 60
        assert outcome.test_delta == -5
        assert outcome.duration_s == 125

    def test_plain_commits_are_skipped(self):
        assert parse_outcome("Start generation: generation-x") is None
        assert parse_outcome("Fix widget\n\nSigned-off-by: Someone <a@b.c>") is None

    def test_only_last_paragraph_counts(self):
        """Key-like lines in the body are not trailers."""
        message = "Subject\n\nTokens-Input: 5 in the body\n\nSigned-off-by: X <x@y.z>"
        assert parse_trailers(message) == {"Signed-off-by": "X <x@y.z>"}

    def test_malformed_values_default_to_zero(self):
        outcome = parse_outcome("Merge cob-1: t\n\nTask-Id: cob-1\nTokens-Input: lots\nTokens-Cost-USD: n/a")
        assert outcome.tokens.input == 0
        assert outcome.cost_usd == 0.0


class TestCollectOutcomes:
    """Outcomes across the commit graph."""

    def test_oldest_first(self, tmp_path):
        repo = FakeRepository(tmp_path / "repo")
        repo.commit_all(commit_message("Merge cob-1: a", _record(task_id="cob-1"), BRANCH), allow_empty=True)
        repo.commit_all("Stitch cob-1: a", allow_empty=True)
        repo.commit_all(commit_message("Merge cob-2: b", _record(task_id="cob-2"), BRANCH), allow_empty=True)

        assert [r.task_id for r in collect_outcomes(repo)] == ["cob-1", "cob-2"]

    def test_no_records(self, tmp_path):
        assert collect_outcomes(FakeRepository(tmp_path / "repo")) == []
