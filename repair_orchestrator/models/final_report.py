"""
Final Report Model
Operator-facing summary produced at every terminal state.
"""
from typing import List, Optional

from pydantic import BaseModel


class FinalReport(BaseModel):
    session_id: str
    status: str                         # completed / stopped
    stop_reason: Optional[str] = None   # retry_limit / no_progress / user_stop / report_unavailable
    attempts_used: int = 0
    initial_failing: List[str] = []
    fixed_ids: List[str] = []
    still_failing: List[str] = []
    regressed_ids: List[str] = []
    blocked: dict = {}                  # test id → reason a worker flagged it unautomatable
    summary: str = ""
