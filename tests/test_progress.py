"""
Unit Tests — Progress Evaluator
===============================
Decision rules in order: done, retry limit, no progress (with grace),
otherwise continue.
"""
import pytest

from repair_orchestrator.agents.progress import Decision, ProgressEvaluator
from repair_orchestrator.core.constants import (
    DECISION_CONTINUE,
    DECISION_DONE,
    DECISION_STOPPED,
    STOP_NO_PROGRESS,
    STOP_RETRY_LIMIT,
)
from repair_orchestrator.models.test_outcome import FailingSet


def fs(*ids):
    return FailingSet.from_ids(ids)


@pytest.fixture
def evaluator():
    return ProgressEvaluator(retry_budget=5, no_progress_threshold=1)


class TestDecisionRules:

    def test_empty_post_set_is_done(self, evaluator):
        result = evaluator.evaluate(fs("A"), fs(), attempt_number=1)
        assert result.decision == Decision.done()
        assert result.no_progress_count == 0

    def test_done_wins_over_budget(self, evaluator):
        result = evaluator.evaluate(fs("A"), fs(), attempt_number=5)
        assert result.decision.kind == DECISION_DONE

    def test_budget_reached_stops(self, evaluator):
        result = evaluator.evaluate(fs("A", "B"), fs("B"), attempt_number=5)
        assert result.decision == Decision.stopped(STOP_RETRY_LIMIT)

    def test_budget_wins_over_no_progress(self, evaluator):
        result = evaluator.evaluate(fs("A"), fs("A"), attempt_number=5, no_progress_count=3)
        assert result.decision.reason == STOP_RETRY_LIMIT

    def test_first_unchanged_attempt_gets_grace(self, evaluator):
        result = evaluator.evaluate(fs("X"), fs("X"), attempt_number=1)
        assert result.decision.kind == DECISION_CONTINUE
        assert result.no_progress_count == 1

    def test_second_unchanged_attempt_stops(self, evaluator):
        result = evaluator.evaluate(fs("X"), fs("X"), attempt_number=2, no_progress_count=1)
        assert result.decision == Decision.stopped(STOP_NO_PROGRESS)
        assert result.no_progress_count == 2

    def test_unchanged_ignores_order(self, evaluator):
        result = evaluator.evaluate(fs("A", "B"), fs("B", "A"), attempt_number=1)
        assert result.no_progress_count == 1

    def test_progress_resets_counter(self, evaluator):
        result = evaluator.evaluate(fs("A", "B"), fs("B"), attempt_number=2, no_progress_count=1)
        assert result.decision.kind == DECISION_CONTINUE
        assert result.no_progress_count == 0

    def test_regression_alone_continues(self, evaluator):
        result = evaluator.evaluate(fs("A"), fs("A", "N"), attempt_number=1)
        assert result.decision.kind == DECISION_CONTINUE
        assert result.no_progress_count == 0

    def test_higher_threshold_allows_more_grace(self):
        evaluator = ProgressEvaluator(retry_budget=10, no_progress_threshold=2)
        second = evaluator.evaluate(fs("X"), fs("X"), attempt_number=2, no_progress_count=1)
        third = evaluator.evaluate(fs("X"), fs("X"), attempt_number=3, no_progress_count=2)
        assert second.decision.kind == DECISION_CONTINUE
        assert third.decision.reason == STOP_NO_PROGRESS


class TestDecision:

    def test_terminal_flags(self):
        assert not Decision.proceed().is_terminal
        assert Decision.done().is_terminal
        assert Decision.stopped(STOP_RETRY_LIMIT).is_terminal
        assert Decision.stopped(STOP_RETRY_LIMIT).kind == DECISION_STOPPED


class TestScenarios:

    def test_one_fix_per_attempt_finishes_on_budget(self):
        evaluator = ProgressEvaluator(retry_budget=3)
        sets = [fs("A", "B", "C"), fs("B", "C"), fs("C"), fs()]
        counter = 0
        decisions = []
        for number in range(1, 4):
            result = evaluator.evaluate(sets[number - 1], sets[number], number, counter)
            counter = result.no_progress_count
            decisions.append(result.decision.kind)
        assert decisions == [DECISION_CONTINUE, DECISION_CONTINUE, DECISION_DONE]

    def test_counter_is_monotonic_while_unchanged(self):
        evaluator = ProgressEvaluator(retry_budget=10, no_progress_threshold=5)
        counter = 0
        seen = []
        for number in range(1, 5):
            counter = evaluator.evaluate(fs("X"), fs("X"), number, counter).no_progress_count
            seen.append(counter)
        assert seen == [1, 2, 3, 4]
