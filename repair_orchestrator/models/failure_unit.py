"""
Failure Unit / Group / Dispatch Plan Models
===========================================
Pydantic models produced by the classifier and consumed by the dispatcher.

FailureUnit     — one failing test id plus the minimal context needed to
                  attempt a fix (error details, related source locations,
                  summaries of prior attempts on that id).
FailureGroup    — "independent" (exactly one unit) or "coupled" (two or more
                  units that must be repaired together). Grouping only changes
                  scheduling, never the underlying tests.
DispatchPlan    — groups laid out for execution: the parallel pool (FIFO
                  admission, capped) and the sequential coupled lane.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from repair_orchestrator.core.constants import COUPLED, INDEPENDENT
from repair_orchestrator.models.test_outcome import SourceLocation


class FailureUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_id: str
    message: str = ""
    error_kind: str = ""
    error_signature: str = ""
    top_frame: str = ""
    location: Optional[SourceLocation] = None
    related_locations: List[SourceLocation] = []
    resources: List[str] = []
    feature_area: Optional[str] = None
    prior_attempts: List[str] = []

    @property
    def source_paths(self) -> List[str]:
        """Distinct file paths referenced by this unit, primary location first."""
        paths: List[str] = []
        for loc in ([self.location] if self.location else []) + list(self.related_locations):
            if loc.file_path and loc.file_path not in paths:
                paths.append(loc.file_path)
        return paths


class FailureGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    tag: str
    units: List[FailureUnit]
    coupling_reasons: List[str] = []

    @model_validator(mode="after")
    def check_shape(self) -> "FailureGroup":
        if self.tag == INDEPENDENT and len(self.units) != 1:
            raise ValueError("an independent group holds exactly one unit")
        if self.tag == COUPLED and len(self.units) < 2:
            raise ValueError("a coupled group holds at least two units")
        if self.tag not in (INDEPENDENT, COUPLED):
            raise ValueError(f"unknown group tag {self.tag!r}")
        return self

    @property
    def test_ids(self) -> List[str]:
        return [u.test_id for u in self.units]

    @property
    def is_coupled(self) -> bool:
        return self.tag == COUPLED


class DispatchPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    groups: List[FailureGroup]
    concurrency_cap: int
    model_tier: str
    parallel_group_ids: List[str] = []      # independent, FIFO admission order
    immediate_group_ids: List[str] = []     # first `concurrency_cap` of the pool
    queued_group_ids: List[str] = []        # wait for a free pool slot
    sequential_group_ids: List[str] = []    # coupled lane, strict order

    @property
    def independent_groups(self) -> List[FailureGroup]:
        by_id = {g.group_id: g for g in self.groups}
        return [by_id[gid] for gid in self.parallel_group_ids]

    @property
    def coupled_groups(self) -> List[FailureGroup]:
        by_id = {g.group_id: g for g in self.groups}
        return [by_id[gid] for gid in self.sequential_group_ids]

    @property
    def test_ids(self) -> List[str]:
        return [t for g in self.groups for t in g.test_ids]
