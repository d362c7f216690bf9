"""
Progress Evaluator
==================
Compares failing sets across one attempt and decides what happens next.

Rules, in order:
    1. post set empty                        → done
    2. attempt number ≥ retry budget         → stopped(retry_limit)
    3. post set == prior set (by id, any order)
         → no-progress counter + 1
         → counter > threshold               → stopped(no_progress)
         → otherwise                         → continue (grace attempt)
    4. anything else (some id fixed, maybe new regressions)
         → counter reset to 0                → continue

Regressions never stop the run by themselves; they are recorded on the
Attempt and fed into the next classification pass as ordinary failures.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from repair_orchestrator.core.config import NO_PROGRESS_THRESHOLD, RETRY_BUDGET
from repair_orchestrator.core.constants import (
    DECISION_CONTINUE,
    DECISION_DONE,
    DECISION_STOPPED,
    STOP_NO_PROGRESS,
    STOP_RETRY_LIMIT,
)
from repair_orchestrator.models.test_outcome import FailingSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    kind: str                       # continue / done / stopped
    reason: Optional[str] = None    # stop reason when kind == stopped

    @property
    def is_terminal(self) -> bool:
        return self.kind != DECISION_CONTINUE

    @classmethod
    def proceed(cls) -> "Decision":
        return cls(DECISION_CONTINUE)

    @classmethod
    def done(cls) -> "Decision":
        return cls(DECISION_DONE)

    @classmethod
    def stopped(cls, reason: str) -> "Decision":
        return cls(DECISION_STOPPED, reason)


@dataclass(frozen=True)
class Evaluation:
    decision: Decision
    no_progress_count: int


class ProgressEvaluator:
    """
    Parameters
    ----------
    retry_budget : int
        Max attempts; the attempt whose number reaches it is the last one.
    no_progress_threshold : int
        Consecutive unchanged attempts tolerated before stopping (default 1).
    """

    def __init__(
        self,
        retry_budget: int = RETRY_BUDGET,
        no_progress_threshold: int = NO_PROGRESS_THRESHOLD,
    ) -> None:
        self.retry_budget = retry_budget
        self.no_progress_threshold = no_progress_threshold

    def evaluate(
        self,
        prior: FailingSet,
        post: FailingSet,
        attempt_number: int,
        no_progress_count: int = 0,
    ) -> Evaluation:
        if not post:
            logger.info("Attempt %d: suite passes", attempt_number)
            return Evaluation(Decision.done(), 0)

        unchanged = post == prior
        counter = no_progress_count + 1 if unchanged else 0

        if attempt_number >= self.retry_budget:
            logger.info("Attempt %d: retry budget %d exhausted", attempt_number, self.retry_budget)
            return Evaluation(Decision.stopped(STOP_RETRY_LIMIT), counter)

        if unchanged:
            if counter > self.no_progress_threshold:
                logger.info(
                    "Attempt %d: failing set unchanged %d time(s), stopping",
                    attempt_number, counter,
                )
                return Evaluation(Decision.stopped(STOP_NO_PROGRESS), counter)
            logger.info("Attempt %d: no progress, grace %d/%d", attempt_number, counter, self.no_progress_threshold)
            return Evaluation(Decision.proceed(), counter)

        new_ids = post.new_since(prior)
        if new_ids:
            logger.warning("Attempt %d: %d regression(s): %s", attempt_number, len(new_ids), ", ".join(new_ids))
        return Evaluation(Decision.proceed(), 0)
