"""
Fix Report Model
================
Pydantic model recording what a worker did for one failure group.

Fields:
    group_id        — the FailureGroup this report belongs to
    tag             — "independent" | "coupled"
    test_ids        — ids covered by the group, in group order
    changed         — True if the worker applied any change
    confidence      — worker self-reported confidence (0.0–1.0)
    blocked         — reason the failure cannot be automated (e.g. depends on
                      an external side channel), or None
    summary         — short description of what was changed
    worker_failed   — True if the worker produced no usable change or raised
    error_message   — failure details when worker_failed is set
    duration_seconds — wall clock time of the worker call

The dispatcher never judges correctness; it only records what was attempted.
"""
from typing import List, Optional

from pydantic import BaseModel


class FixReport(BaseModel):
    group_id: str
    tag: str
    test_ids: List[str] = []
    changed: bool = False
    confidence: float = 0.0
    blocked: Optional[str] = None
    summary: str = ""
    worker_failed: bool = False
    error_message: str = ""
    duration_seconds: float = 0.0
