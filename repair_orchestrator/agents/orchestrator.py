"""
Orchestrator
============
Drives the repair loop for one session:

    INIT ──► DISCOVER ──► CLASSIFY ──► DISPATCH ──► VERIFY ──► DECIDE
    RESUME ──┘               ▲                                   │
                             └──── continue (after PAUSED) ◄─────┤
                                                                 ├──► DONE
                                                                 └──► STOPPED

Core rules:
    - The Session is persisted after every completed attempt; that write is
      the durability boundary a resume restarts from.
    - Resume drops any in-flight attempt and rediscovers: persisted failing
      sets are history, never the current truth.
    - Within one run, attempt k+1 starts from attempt k's post set.
    - Interactive mode pauses after every "continue" decision and waits for
      a directive; unattended mode re-enters CLASSIFY at once.
    - Stop is cooperative and only honoured at the pause boundary.
    - Dry-run stops after CLASSIFY, returns the plan and writes nothing.
    - ReportUnavailable halts the run; the session is marked stopped, a
      final report is still written, and the error is re-raised.

Every run that reaches a terminal state produces a FinalReport.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from repair_orchestrator.agents.classifier import FailureClassifier
from repair_orchestrator.agents.directives import DirectiveChannel
from repair_orchestrator.agents.dispatcher import Dispatcher
from repair_orchestrator.agents.progress import ProgressEvaluator
from repair_orchestrator.agents.worker import HttpWorkerRuntime, WorkerRuntime
from repair_orchestrator.core.config import OrchestratorSettings
from repair_orchestrator.core.constants import (
    DECISION_DONE,
    DIRECTIVE_STOP,
    DIRECTIVE_SWITCH_TO_UNATTENDED,
    MODE_INTERACTIVE,
    MODE_UNATTENDED,
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    SESSION_STOPPED,
    STATE_CLASSIFY,
    STATE_DECIDE,
    STATE_DISCOVER,
    STATE_DISPATCH,
    STATE_DONE,
    STATE_INIT,
    STATE_PAUSED,
    STATE_RESUME,
    STATE_STOPPED,
    STATE_VERIFY,
    STOP_NO_PROGRESS,
    STOP_REPORT_UNAVAILABLE,
    STOP_RETRY_LIMIT,
    STOP_USER,
    TERMINAL_STATES,
)
from repair_orchestrator.core.errors import ReportUnavailable, SessionExists
from repair_orchestrator.executor.suite_runner import build_suite_runner
from repair_orchestrator.models.attempt import Attempt
from repair_orchestrator.models.failure_unit import DispatchPlan
from repair_orchestrator.models.final_report import FinalReport
from repair_orchestrator.models.session import Session
from repair_orchestrator.models.test_outcome import FailingSet
from repair_orchestrator.services.attempt_history import AttemptHistory
from repair_orchestrator.services.result_store import DiscoveryResult, ResultStore
from repair_orchestrator.services.results_writer import ResultsWriter
from repair_orchestrator.services.session_store import SessionStore, validate_session_id
from repair_orchestrator.services.trace_log import TraceLog

logger = logging.getLogger(__name__)

# Stop reasons after which a resume only re-reports the outcome
_FINAL_STOP_REASONS = (STOP_RETRY_LIMIT, STOP_NO_PROGRESS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_final_report(session: Session, still_failing: List[str]) -> FinalReport:
    """Summarize a session whose latest observed failing set is ``still_failing``."""
    initial = list(session.attempts[0].start_failing) if session.attempts else list(still_failing)
    initial_set = set(initial)
    still_set = set(still_failing)

    blocked = {}
    for attempt in session.completed_attempts:
        for report in attempt.fix_reports:
            if not report.blocked:
                continue
            for test_id in report.test_ids:
                if test_id in still_set:
                    blocked[test_id] = report.blocked

    fixed = [t for t in initial if t not in still_set]
    regressed = [t for t in still_failing if t not in initial_set]
    used = len(session.completed_attempts)

    if session.status == SESSION_COMPLETED:
        summary = f"Suite passes after {used} attempt(s); fixed {len(fixed)} test(s)."
    else:
        summary = (
            f"Stopped ({session.stop_reason}) after {used} attempt(s); "
            f"{len(still_failing)} test(s) still failing."
        )

    return FinalReport(
        session_id=session.session_id,
        status=session.status,
        stop_reason=session.stop_reason,
        attempts_used=used,
        initial_failing=initial,
        fixed_ids=fixed,
        still_failing=list(still_failing),
        regressed_ids=regressed,
        blocked=blocked,
        summary=summary,
    )


class Orchestrator:
    """
    Owns one Session at a time and every transition of the repair loop.

    Parameters
    ----------
    result_store : ResultStore
        Runs the suite and parses its report.
    session_store : SessionStore
        Durable session persistence.
    dispatcher : Dispatcher
        Runs dispatch plans against the worker runtime.
    settings : OrchestratorSettings
        Defaults for new sessions plus paths for side outputs.
    classifier : FailureClassifier or None
        Built from ``settings`` when omitted.
    directives : DirectiveChannel or None
        Where interactive runs wait for operator directives.
    """

    def __init__(
        self,
        result_store: ResultStore,
        session_store: SessionStore,
        dispatcher: Dispatcher,
        settings: Optional[OrchestratorSettings] = None,
        classifier: Optional[FailureClassifier] = None,
        directives: Optional[DirectiveChannel] = None,
    ) -> None:
        self.settings = settings or OrchestratorSettings()
        self.result_store = result_store
        self.session_store = session_store
        self.dispatcher = dispatcher
        self.classifier = classifier or FailureClassifier(self.settings.couple_by_feature_area)
        self.directives = directives or DirectiveChannel()
        self.state = STATE_INIT
        self.session: Optional[Session] = None
        self.final_report: Optional[FinalReport] = None
        self._current: List[str] = []

    @classmethod
    def from_settings(
        cls,
        settings: OrchestratorSettings,
        runtime: Optional[WorkerRuntime] = None,
        directives: Optional[DirectiveChannel] = None,
    ) -> "Orchestrator":
        """Wire the production collaborators described by ``settings``."""
        runner = build_suite_runner(
            settings.runner_backend,
            settings.workspace_path,
            settings.report_path,
            command=settings.test_command,
            docker_image=settings.docker_image,
        )
        trace_log = TraceLog(settings.trace_dir) if settings.trace_enabled else None
        dispatcher = Dispatcher(
            runtime or HttpWorkerRuntime(),
            workspace_path=settings.workspace_path,
            trace_log=trace_log,
        )
        return cls(
            ResultStore(runner),
            SessionStore(settings.session_dir),
            dispatcher,
            settings=settings,
            directives=directives,
        )

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------
    @property
    def paused(self) -> bool:
        return self.state == STATE_PAUSED

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, state: str) -> None:
        logger.debug("State %s → %s", self.state, state)
        self.state = state

    async def _discover(self) -> DiscoveryResult:
        # The runner blocks on a subprocess or container; keep the loop free
        return await asyncio.to_thread(self.result_store.discover)

    def _plan_for(
        self,
        failing: FailingSet,
        attempts: List[Attempt],
        concurrency_cap: int,
        model_tier: str,
    ) -> DispatchPlan:
        history = AttemptHistory.from_attempts(attempts, limit=self.settings.prior_summary_limit)
        groups = self.classifier.classify(failing, history)
        return FailureClassifier.build_plan(groups, concurrency_cap, model_tier)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def start(
        self,
        session_id: str,
        mode: str = MODE_UNATTENDED,
        fresh: bool = False,
    ) -> FinalReport:
        """Create a new session and run it to a terminal state."""
        validate_session_id(session_id)
        self._transition(STATE_INIT)
        self._current = []

        if self.session_store.exists(session_id):
            if not fresh:
                raise SessionExists(session_id)
            logger.info("Fresh start requested; discarding session %s", session_id)
            self.session_store.delete(session_id)

        session = Session(
            session_id=session_id,
            mode=mode,
            concurrency_cap=self.settings.concurrency_cap,
            retry_budget=self.settings.retry_budget,
            no_progress_threshold=self.settings.no_progress_threshold,
            model_tier=self.settings.model_tier,
        )
        self.session = session
        self.session_store.save(session)
        logger.info(
            "Session %s started (mode=%s, budget=%d, cap=%d)",
            session_id, mode, session.retry_budget, session.concurrency_cap,
        )
        return await self._drive(session, reconciled=False)

    async def resume(self, session_id: str, mode: Optional[str] = None) -> FinalReport:
        """
        Continue a persisted session.

        Raises SessionNotFound or SessionCorrupt from the store unchanged.
        A session that already finished for good is reported, not rerun.
        """
        self._transition(STATE_RESUME)
        session = self.session_store.load(session_id)
        self.session = session

        last = session.last_completed
        if session.status == SESSION_COMPLETED or session.stop_reason in _FINAL_STOP_REASONS:
            logger.info("Session %s already %s; nothing to resume", session_id, session.status)
            self._current = list(last.post_failing) if last else []
            self._transition(STATE_DONE if session.status == SESSION_COMPLETED else STATE_STOPPED)
            self.final_report = build_final_report(session, self._current)
            return self.final_report

        # Last observed failing set, reported if the fresh discovery fails
        if last is not None:
            self._current = list(last.post_failing)
        else:
            self._current = next((list(a.start_failing) for a in session.attempts), [])

        in_flight = [a.number for a in session.attempts if not a.completed]
        if in_flight:
            logger.warning("Session %s: discarding incomplete attempt %s", session_id, in_flight[0])
        session.attempts = session.completed_attempts
        session.status = SESSION_ACTIVE
        session.stop_reason = None
        if mode:
            session.mode = mode
        self.session_store.save(session)
        logger.info(
            "Session %s resumed at attempt %d (mode=%s)",
            session_id, session.next_attempt_number, session.mode,
        )
        return await self._drive(session, reconciled=True)

    async def plan(self, session_id: Optional[str] = None) -> DispatchPlan:
        """
        Dry-run: discover and classify, then return the plan without dispatching.

        When ``session_id`` names a persisted session its history and knobs
        shape the plan; the session itself is never written.
        """
        self._transition(STATE_INIT)
        attempts: List[Attempt] = []
        cap = self.settings.concurrency_cap
        tier = self.settings.model_tier
        if session_id and self.session_store.exists(session_id):
            session = self.session_store.load(session_id)
            attempts = session.completed_attempts
            cap = session.concurrency_cap
            tier = session.model_tier

        self._transition(STATE_DISCOVER)
        discovery = await self._discover()
        self._current = discovery.failing.ordered_ids

        self._transition(STATE_CLASSIFY)
        plan = self._plan_for(discovery.failing, attempts, cap, tier)
        self._transition(STATE_DONE)
        logger.info(
            "Dry-run plan: %d group(s) for %d failing test(s)",
            len(plan.groups), len(discovery.failing),
        )
        return plan

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    async def _drive(self, session: Session, reconciled: bool) -> FinalReport:
        try:
            self._transition(STATE_DISCOVER)
            discovery = await self._discover()
            self._current = discovery.failing.ordered_ids
            if not discovery.failing:
                logger.info("Session %s: nothing failing", session.session_id)
                return self._finish(session, SESSION_COMPLETED, None)
            return await self._loop(session, discovery.failing, reconciled)
        except ReportUnavailable as exc:
            logger.error("Session %s halted: %s", session.session_id, exc)
            self._finish(session, SESSION_STOPPED, STOP_REPORT_UNAVAILABLE)
            raise

    async def _loop(self, session: Session, failing: FailingSet, reconciled: bool) -> FinalReport:
        evaluator = ProgressEvaluator(session.retry_budget, session.no_progress_threshold)
        prior = failing

        while True:
            number = session.next_attempt_number
            if number > session.retry_budget:
                return self._finish(session, SESSION_STOPPED, STOP_RETRY_LIMIT)

            attempt = Attempt(
                number=number,
                started_at=_utcnow(),
                start_failing=prior.ordered_ids,
                reconciled=reconciled,
            )
            session.attempts.append(attempt)
            self.session_store.save(session)
            logger.info(
                "--- Session %s attempt %d/%d: %d failing ---",
                session.session_id, number, session.retry_budget, len(prior),
            )

            self._transition(STATE_CLASSIFY)
            attempt.plan = self._plan_for(
                prior, session.completed_attempts, session.concurrency_cap, session.model_tier
            )

            self._transition(STATE_DISPATCH)
            attempt.fix_reports = await self.dispatcher.run_plan(
                attempt.plan, session_id=session.session_id, attempt_number=number
            )

            self._transition(STATE_VERIFY)
            post = (await self._discover()).failing
            self._current = post.ordered_ids

            self._transition(STATE_DECIDE)
            evaluation = evaluator.evaluate(prior, post, number, session.no_progress_count)
            decision = evaluation.decision

            attempt.post_failing = post.ordered_ids
            attempt.fixed_ids = post.fixed_since(prior)
            attempt.new_ids = post.new_since(prior)
            attempt.unchanged_ids = post.unchanged_since(prior)
            attempt.decision = decision.kind
            attempt.stop_reason = decision.reason
            attempt.no_progress_count = evaluation.no_progress_count
            attempt.finished_at = _utcnow()
            attempt.completed = True
            session.no_progress_count = evaluation.no_progress_count

            logger.info(
                "Attempt %d: fixed=%d new=%d unchanged=%d → %s",
                number, len(attempt.fixed_ids), len(attempt.new_ids),
                len(attempt.unchanged_ids), decision.kind,
            )

            if decision.is_terminal:
                status = SESSION_COMPLETED if decision.kind == DECISION_DONE else SESSION_STOPPED
                return self._finish(session, status, decision.reason)
            self.session_store.save(session)

            if session.mode == MODE_INTERACTIVE:
                directive = await self._await_directive(session)
                if directive == DIRECTIVE_STOP:
                    return self._finish(session, SESSION_STOPPED, STOP_USER)

            prior = post
            reconciled = False

    async def _await_directive(self, session: Session) -> str:
        self._transition(STATE_PAUSED)
        logger.info("Session %s paused after attempt %d", session.session_id, session.next_attempt_number - 1)
        directive = await self.directives.wait()
        if directive == DIRECTIVE_SWITCH_TO_UNATTENDED:
            session.mode = MODE_UNATTENDED
            self.session_store.save(session)
            logger.info("Session %s switched to unattended", session.session_id)
        return directive

    def _finish(self, session: Session, status: str, stop_reason: Optional[str]) -> FinalReport:
        session.status = status
        session.stop_reason = stop_reason
        self.session_store.save(session)
        self._transition(STATE_DONE if status == SESSION_COMPLETED else STATE_STOPPED)

        report = build_final_report(session, self._current)
        self.final_report = report
        ResultsWriter.write_results(session, report, self.settings.results_path)
        logger.info("Session %s finished: %s", session.session_id, report.summary)
        return report
