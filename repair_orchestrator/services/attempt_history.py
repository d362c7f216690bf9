"""
Attempt History
===============
Per-test summaries of earlier repair attempts, handed to workers instead of
full transcripts.

Built from completed Attempts only:
    test_id → ["attempt 2: changed (confidence 0.80); patched seed loader; still failing", ...]

Bounded to the most recent `limit` entries per test id so worker context
stays small regardless of session length.
"""
import logging
from collections import deque
from typing import Deque, Dict, Iterable, List

from repair_orchestrator.models.attempt import Attempt
from repair_orchestrator.models.fix_report import FixReport

logger = logging.getLogger(__name__)


def summarize_report(attempt_number: int, report: FixReport, still_failing: bool) -> str:
    """One-line summary of what a worker did for a test in one attempt."""
    if report.worker_failed:
        action = f"worker failed ({report.error_message or 'no usable change'})"
    elif report.changed:
        action = f"changed (confidence {report.confidence:.2f})"
    else:
        action = "no change"
    parts = [f"attempt {attempt_number}: {action}"]
    if report.summary:
        parts.append(report.summary)
    if report.blocked:
        parts.append(f"blocked: {report.blocked}")
    if len(report.test_ids) > 1:
        parts.append(f"repaired together with {len(report.test_ids) - 1} other test(s)")
    parts.append("still failing" if still_failing else "fixed")
    return "; ".join(parts)


class AttemptHistory:
    """
    Bounded per-test index of prior attempt summaries.

    Usage:
        history = AttemptHistory.from_attempts(session.completed_attempts, limit=3)
        history.summaries_for("tests/test_api.py::test_login")
    """

    def __init__(self, limit: int = 3) -> None:
        self.limit = limit
        self._summaries: Dict[str, Deque[str]] = {}

    @classmethod
    def from_attempts(cls, attempts: Iterable[Attempt], limit: int = 3) -> "AttemptHistory":
        history = cls(limit=limit)
        for attempt in attempts:
            history.record(attempt)
        return history

    def record(self, attempt: Attempt) -> None:
        """Fold one completed attempt into the index."""
        if not attempt.completed:
            return
        post = set(attempt.post_failing)
        for report in attempt.fix_reports:
            for test_id in report.test_ids:
                entry = summarize_report(attempt.number, report, test_id in post)
                self._summaries.setdefault(test_id, deque(maxlen=self.limit)).append(entry)

    def summaries_for(self, test_id: str) -> List[str]:
        return list(self._summaries.get(test_id, ()))

    def __len__(self) -> int:
        """Number of distinct test ids with at least one summary."""
        return len(self._summaries)
