"""
Results Writer
==============
Serializes a finished session into the results JSON consumed by operators
and dashboards.

Layout:
    {
      "session":  {id, mode, status, stop_reason, retry_budget, concurrency_cap, model_tier},
      "attempts": [per-attempt summary ...],
      "final_report": FinalReport
    }
"""
import json
import logging
import os

from repair_orchestrator.models.final_report import FinalReport
from repair_orchestrator.models.session import Session
from repair_orchestrator.services.session_store import atomic_write_text

logger = logging.getLogger(__name__)


def _attempt_summary(attempt) -> dict:
    return {
        "number": attempt.number,
        "started_at": attempt.started_at.isoformat(),
        "finished_at": attempt.finished_at.isoformat() if attempt.finished_at else None,
        "reconciled": attempt.reconciled,
        "start_failing": list(attempt.start_failing),
        "post_failing": list(attempt.post_failing),
        "fixed_ids": list(attempt.fixed_ids),
        "new_ids": list(attempt.new_ids),
        "groups": len(attempt.fix_reports),
        "workers_failed": sum(1 for r in attempt.fix_reports if r.worker_failed),
        "decision": attempt.decision,
        "stop_reason": attempt.stop_reason,
    }


class ResultsWriter:
    """Writes the final results document for one session."""

    @staticmethod
    def build(session: Session, report: FinalReport) -> dict:
        return {
            "session": {
                "id": session.session_id,
                "mode": session.mode,
                "status": session.status,
                "stop_reason": session.stop_reason,
                "retry_budget": session.retry_budget,
                "concurrency_cap": session.concurrency_cap,
                "model_tier": session.model_tier,
            },
            "attempts": [_attempt_summary(a) for a in session.completed_attempts],
            "final_report": report.model_dump(mode="json"),
        }

    @staticmethod
    def write_results(session: Session, report: FinalReport, output_path: str) -> bool:
        """
        Write the results document. Returns False instead of raising: the
        session itself is already persisted, so a failed write loses nothing.
        """
        try:
            data = ResultsWriter.build(session, report)
            abs_output = os.path.abspath(output_path)
            logger.info("Writing final results to %s", abs_output)
            atomic_write_text(abs_output, json.dumps(data, indent=2))
            return True
        except OSError as e:
            logger.error("Failed to write results to %s: %s", output_path, e, exc_info=True)
            return False
