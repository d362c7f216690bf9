"""
Unit Tests — Attempt History and Results Writer
===============================================
"""
import json
from datetime import datetime, timezone

from repair_orchestrator.core.constants import COUPLED, INDEPENDENT
from repair_orchestrator.models.attempt import Attempt
from repair_orchestrator.models.final_report import FinalReport
from repair_orchestrator.models.fix_report import FixReport
from repair_orchestrator.models.session import Session
from repair_orchestrator.services.attempt_history import AttemptHistory, summarize_report
from repair_orchestrator.services.results_writer import ResultsWriter


def _attempt(number, reports, post, completed=True):
    return Attempt(
        number=number,
        started_at=datetime.now(timezone.utc),
        fix_reports=reports,
        post_failing=post,
        completed=completed,
    )


class TestSummaries:

    def test_changed_and_fixed(self):
        report = FixReport(group_id="g", tag=INDEPENDENT, test_ids=["A"], changed=True,
                           confidence=0.8, summary="patched seed loader")
        assert summarize_report(2, report, still_failing=False) == \
            "attempt 2: changed (confidence 0.80); patched seed loader; fixed"

    def test_worker_failure(self):
        report = FixReport(group_id="g", tag=INDEPENDENT, test_ids=["A"], worker_failed=True,
                           error_message="worker timed out")
        assert summarize_report(1, report, still_failing=True) == \
            "attempt 1: worker failed (worker timed out); still failing"

    def test_coupled_and_blocked(self):
        report = FixReport(group_id="g", tag=COUPLED, test_ids=["A", "B"], blocked="needs SMTP")
        text = summarize_report(1, report, still_failing=True)
        assert "blocked: needs SMTP" in text
        assert "repaired together with 1 other test(s)" in text


class TestAttemptHistory:

    def test_bounded_per_test(self):
        attempts = [
            _attempt(n, [FixReport(group_id="g", tag=INDEPENDENT, test_ids=["A"], changed=True)], ["A"])
            for n in range(1, 5)
        ]
        history = AttemptHistory.from_attempts(attempts, limit=2)
        summaries = history.summaries_for("A")
        assert len(summaries) == 2
        assert summaries[0].startswith("attempt 3")
        assert summaries[1].startswith("attempt 4")

    def test_incomplete_attempts_ignored(self):
        attempt = _attempt(1, [FixReport(group_id="g", tag=INDEPENDENT, test_ids=["A"])], ["A"], completed=False)
        history = AttemptHistory.from_attempts([attempt])
        assert len(history) == 0
        assert history.summaries_for("A") == []


class TestResultsWriter:

    def test_writes_document(self, tmp_path):
        session = Session(
            session_id="s1", mode="unattended", concurrency_cap=2, retry_budget=3,
            status="completed",
            attempts=[_attempt(1, [FixReport(group_id="g", tag=INDEPENDENT, test_ids=["A"], changed=True)], [])],
        )
        report = FinalReport(session_id="s1", status="completed", attempts_used=1,
                             initial_failing=["A"], fixed_ids=["A"])
        path = tmp_path / "out" / "results.json"

        assert ResultsWriter.write_results(session, report, str(path)) is True
        data = json.loads(path.read_text())
        assert data["session"]["id"] == "s1"
        assert data["attempts"][0]["groups"] == 1
        assert data["final_report"]["fixed_ids"] == ["A"]

    def test_write_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        session = Session(session_id="s1", mode="unattended", concurrency_cap=1, retry_budget=1)
        report = FinalReport(session_id="s1", status="stopped")
        assert ResultsWriter.write_results(session, report, str(blocker / "results.json")) is False
