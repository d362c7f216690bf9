"""
Attempt Model
=============
Pydantic model representing one discover → classify → dispatch → verify cycle.

Fields:
    number          — 1-based, contiguous across the session
    started_at      — UTC timestamp at attempt start
    finished_at     — UTC timestamp once VERIFY + DECIDE completed
    start_failing   — failing ids observed at attempt start (first-seen order)
    plan            — dispatch plan executed
    fix_reports     — one FixReport per dispatched group
    post_failing    — failing ids observed after re-verification
    fixed_ids       — in start_failing, absent from post_failing
    new_ids         — in post_failing, absent from start_failing (regressions)
    unchanged_ids   — in both
    decision        — "continue" | "done" | "stopped"
    stop_reason     — set when decision == "stopped"
    no_progress_count — counter value after this attempt's decision
    reconciled      — True for the first attempt after a resume, whose start
                      set came from a fresh discovery
    completed       — False while the attempt is in flight

Attempts are append-only history: never rewritten once completed.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from repair_orchestrator.models.failure_unit import DispatchPlan
from repair_orchestrator.models.fix_report import FixReport


class Attempt(BaseModel):
    number: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    start_failing: List[str] = []
    plan: Optional[DispatchPlan] = None
    fix_reports: List[FixReport] = []
    post_failing: List[str] = []
    fixed_ids: List[str] = []
    new_ids: List[str] = []
    unchanged_ids: List[str] = []
    decision: str = ""
    stop_reason: Optional[str] = None
    no_progress_count: int = 0
    reconciled: bool = False
    completed: bool = False
