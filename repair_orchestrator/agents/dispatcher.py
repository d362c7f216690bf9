"""
Dispatcher
==========
Launches one fresh worker per failure group and collects a FixReport each.

Scheduling:
    1. PARALLEL POOL — independent groups, at most `concurrency_cap` workers
       at once; the rest wait in FIFO order for a free slot.
    2. COUPLED LANE  — after every pool worker has returned, coupled groups run
       one at a time in plan order, one fresh worker per group (not per test).

Isolation:
    Every worker gets its own WorkerContext built from its group only. Nothing
    is shared between workers, so unrelated fixes never see each other.

Failure absorption:
    A worker that raises, or returns without changing anything and without
    flagging the failure as blocked, yields a report with worker_failed=True.
    The tests stay failing and are reclassified next attempt. The dispatcher
    never judges correctness; it only records what was attempted.

dispatch() returns only after ALL workers of the plan have returned.
"""
import time
import asyncio
import logging
from typing import List, Optional

from repair_orchestrator.agents.classifier import FailureClassifier
from repair_orchestrator.agents.context_builder import build_context
from repair_orchestrator.agents.worker import WorkerRuntime
from repair_orchestrator.core.config import CONCURRENCY_CAP, WORKER_MODEL_TIER
from repair_orchestrator.core.errors import WorkerFailed
from repair_orchestrator.models.failure_unit import DispatchPlan, FailureGroup
from repair_orchestrator.models.fix_report import FixReport
from repair_orchestrator.services.trace_log import TraceLog

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Runs a dispatch plan against a worker runtime.

    Parameters
    ----------
    runtime : WorkerRuntime
        Collaborator that performs the actual repair.
    workspace_path : str
        Root used to resolve source artifacts for worker contexts.
    trace_log : TraceLog or None
        Optional side-channel for worker inputs and raw outputs.
    """

    def __init__(
        self,
        runtime: WorkerRuntime,
        workspace_path: str = ".",
        trace_log: Optional[TraceLog] = None,
    ) -> None:
        self.runtime = runtime
        self.workspace_path = workspace_path
        self.trace_log = trace_log

    async def dispatch(
        self,
        groups: List[FailureGroup],
        concurrency_cap: int = CONCURRENCY_CAP,
        model_tier: str = WORKER_MODEL_TIER,
        session_id: str = "",
        attempt_number: int = 0,
    ) -> List[FixReport]:
        """Plan and run ``groups``; reports come back in group order."""
        plan = FailureClassifier.build_plan(groups, concurrency_cap, model_tier)
        return await self.run_plan(plan, session_id=session_id, attempt_number=attempt_number)

    async def run_plan(
        self,
        plan: DispatchPlan,
        session_id: str = "",
        attempt_number: int = 0,
    ) -> List[FixReport]:
        independent = plan.independent_groups
        coupled = plan.coupled_groups
        logger.info(
            "Dispatching attempt %d: %d independent (cap %d), %d coupled",
            attempt_number, len(independent), plan.concurrency_cap, len(coupled),
        )

        reports: dict[str, FixReport] = {}

        # --- 1. Parallel pool ---
        semaphore = asyncio.Semaphore(plan.concurrency_cap)

        async def pooled(group: FailureGroup) -> FixReport:
            async with semaphore:
                return await self._run_group(group, plan.model_tier, session_id, attempt_number)

        if independent:
            # Tasks are created in plan order; the semaphore admits waiters FIFO
            pool_results = await asyncio.gather(*(pooled(g) for g in independent))
            for report in pool_results:
                reports[report.group_id] = report

        # --- 2. Coupled lane, strictly sequential ---
        for group in coupled:
            reports[group.group_id] = await self._run_group(
                group, plan.model_tier, session_id, attempt_number
            )

        ordered = [reports[g.group_id] for g in plan.groups]
        failed = sum(1 for r in ordered if r.worker_failed)
        logger.info(
            "Dispatch complete: %d reports, %d changed, %d failed",
            len(ordered), sum(1 for r in ordered if r.changed), failed,
        )
        return ordered

    async def _run_group(
        self,
        group: FailureGroup,
        model_tier: str,
        session_id: str,
        attempt_number: int,
    ) -> FixReport:
        start = time.monotonic()
        context = build_context(
            group,
            workspace_path=self.workspace_path,
            session_id=session_id,
            attempt_number=attempt_number,
            model_tier=model_tier,
        )
        report = FixReport(group_id=group.group_id, tag=group.tag, test_ids=group.test_ids)

        raw_output: Optional[str] = None
        try:
            verdict, raw_output = await self.runtime.repair_raw(context)
            report.changed = verdict.changed
            report.confidence = verdict.confidence
            report.blocked = verdict.blocked
            report.summary = verdict.summary
            if not verdict.changed and not verdict.blocked:
                raise WorkerFailed(group.group_id, "no change produced")
        except WorkerFailed as exc:
            report.worker_failed = True
            report.error_message = exc.reason
            logger.warning("Worker failed for %s: %s", group.group_id, exc.reason)
        except Exception as exc:
            report.worker_failed = True
            report.error_message = f"{type(exc).__name__}: {exc}"
            logger.error("Worker crashed for %s: %s", group.group_id, exc, exc_info=True)

        report.duration_seconds = round(time.monotonic() - start, 3)

        if self.trace_log is not None:
            self.trace_log.record(context, raw_output, report.error_message or None)

        if report.blocked:
            logger.info("Group %s flagged as not automatable: %s", group.group_id, report.blocked)
        return report
