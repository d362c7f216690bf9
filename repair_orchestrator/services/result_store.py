"""
Result Store
============
discover() → (FailingSet, all outcomes).

Invokes the suite runner synchronously, then parses the structured report.
The store keeps no state between calls; the orchestrator calls it once for
initial discovery and once per attempt for post-dispatch verification.

Failure policy:
    A missing or malformed report raises ReportUnavailable. It is surfaced,
    never retried here: it means the runner did not execute, not that tests
    failed.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from repair_orchestrator.core.errors import ReportUnavailable
from repair_orchestrator.executor.suite_runner import SuiteRunner, SuiteRunResult
from repair_orchestrator.models.test_outcome import FailingSet, TestOutcome
from repair_orchestrator.parser.report_parser import parse_report

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryResult:
    failing: FailingSet
    outcomes: List[TestOutcome] = field(default_factory=list)
    log_excerpt: str = ""


class ResultStore:
    """Runs the suite and turns its report into typed outcomes."""

    def __init__(self, runner: SuiteRunner) -> None:
        self.runner = runner

    def discover(self) -> DiscoveryResult:
        run: SuiteRunResult = self.runner.run()
        try:
            outcomes = parse_report(run.report_path, self.runner.workspace_path)
        except ReportUnavailable:
            logger.error(
                "No usable report after suite run (exit=%d, error=%s)",
                run.exit_code, run.error or "none",
            )
            raise

        failing = FailingSet.from_outcomes(outcomes)
        logger.info(
            "Discovery: %d tests, %d failing (exit=%d)",
            len(outcomes), len(failing), run.exit_code,
        )
        return DiscoveryResult(failing=failing, outcomes=outcomes, log_excerpt=run.log_excerpt)
