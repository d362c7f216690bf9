"""
Failure Classifier
==================
Partitions the current failing set into independent units and coupled groups.

Relation graph (edge between two failing tests when):
    (a) SHARED RESOURCE  — both diagnostics name the same fixture / resource id
    (b) ERROR SIGNATURE  — same exception kind raised from the same top frame
    (c) FEATURE AREA     — same logical area; opt-in, and only between failures
                           whose diagnostics carry neither (a) nor (b) evidence

Partition:
    connected component of size 1  → "independent" group
    connected component of size ≥2 → one "coupled" group, members in
                                     first-seen order of the FailingSet
    groups ordered by the first-seen position of their first member

Policy:
    Couple only on positive evidence. False independence costs one wasted
    parallel attempt; false coupling costs serialization latency.

Contract:
    - DETERMINISTIC: same FailingSet + same diagnostics → same groups, same order.
    - Classification never drops or duplicates a failing id.
"""
import hashlib
import logging
from typing import Dict, List, Optional, Set

from repair_orchestrator.core.constants import (
    COUPLED,
    INDEPENDENT,
    SIGNAL_ERROR_SIGNATURE,
    SIGNAL_FEATURE_AREA,
    SIGNAL_SHARED_RESOURCE,
)
from repair_orchestrator.models.failure_unit import DispatchPlan, FailureGroup, FailureUnit
from repair_orchestrator.models.test_outcome import FailingSet, TestOutcome
from repair_orchestrator.services.attempt_history import AttemptHistory
from repair_orchestrator.utils.feature_area import classify_feature_area

logger = logging.getLogger(__name__)

_SIGNAL_ORDER = (SIGNAL_SHARED_RESOURCE, SIGNAL_ERROR_SIGNATURE, SIGNAL_FEATURE_AREA)


class _UnionFind:
    """Union-find over positions; the smallest position is always the root."""

    def __init__(self, size: int) -> None:
        self._parent = list(range(size))

    def find(self, i: int) -> int:
        while self._parent[i] != i:
            self._parent[i] = self._parent[self._parent[i]]
            i = self._parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if ra < rb:
            self._parent[rb] = ra
        else:
            self._parent[ra] = rb


def _group_id(tag: str, test_ids: List[str]) -> str:
    digest = hashlib.sha256("\n".join(test_ids).encode("utf-8")).hexdigest()[:10]
    return f"{tag[:3]}-{digest}"


def build_unit(outcome: TestOutcome, history: Optional[AttemptHistory] = None) -> FailureUnit:
    """Minimal repair context for one failing test."""
    diag = outcome.diagnostic
    prior = history.summaries_for(outcome.test_id) if history else []
    if diag is None:
        return FailureUnit(test_id=outcome.test_id, prior_attempts=prior)
    return FailureUnit(
        test_id=outcome.test_id,
        message=diag.message,
        error_kind=diag.error_kind,
        error_signature=diag.error_signature,
        top_frame=diag.top_frame,
        location=diag.location,
        related_locations=list(diag.related_locations),
        resources=list(diag.resources),
        feature_area=diag.feature_area,
        prior_attempts=prior,
    )


class FailureClassifier:
    """
    Groups failing tests for dispatch.

    Parameters
    ----------
    couple_by_feature_area : bool
        Enable the feature-area fallback signal (c). Off by default.
    """

    def __init__(self, couple_by_feature_area: bool = False) -> None:
        self.couple_by_feature_area = couple_by_feature_area

    def classify(self, failing: FailingSet, history: Optional[AttemptHistory] = None) -> List[FailureGroup]:
        outcomes = list(failing)
        if not outcomes:
            return []

        uf = _UnionFind(len(outcomes))
        # position → signals that linked it to another failure
        edge_signals: Dict[int, Set[str]] = {}

        def link(positions: List[int], signal: str) -> None:
            first = positions[0]
            for other in positions[1:]:
                uf.union(first, other)
            for pos in positions:
                edge_signals.setdefault(pos, set()).add(signal)

        # (a) shared fixture / resource identifiers
        by_resource: Dict[str, List[int]] = {}
        for pos, outcome in enumerate(outcomes):
            resources = outcome.diagnostic.resources if outcome.diagnostic else ()
            for resource in dict.fromkeys(resources):
                by_resource.setdefault(resource, []).append(pos)
        for resource, positions in by_resource.items():
            if len(positions) > 1:
                logger.debug("Coupling %d failures on shared resource %r", len(positions), resource)
                link(positions, SIGNAL_SHARED_RESOURCE)

        # (b) matching error signatures
        by_signature: Dict[str, List[int]] = {}
        for pos, outcome in enumerate(outcomes):
            signature = outcome.diagnostic.error_signature if outcome.diagnostic else ""
            if signature:
                by_signature.setdefault(signature, []).append(pos)
        for signature, positions in by_signature.items():
            if len(positions) > 1:
                logger.debug("Coupling %d failures on error signature %s", len(positions), signature)
                link(positions, SIGNAL_ERROR_SIGNATURE)

        # (c) feature area, only between failures with no finer evidence at all
        if self.couple_by_feature_area:
            by_area: Dict[str, List[int]] = {}
            for pos, outcome in enumerate(outcomes):
                diag = outcome.diagnostic
                if diag and (diag.resources or diag.error_signature):
                    continue
                area = classify_feature_area(outcome)
                if area:
                    by_area.setdefault(area, []).append(pos)
            for area, positions in by_area.items():
                if len(positions) > 1:
                    logger.debug("Coupling %d failures on feature area %r", len(positions), area)
                    link(positions, SIGNAL_FEATURE_AREA)

        # Components, keyed by root (= smallest member position)
        components: Dict[int, List[int]] = {}
        for pos in range(len(outcomes)):
            components.setdefault(uf.find(pos), []).append(pos)

        groups: List[FailureGroup] = []
        for root in sorted(components):
            members = components[root]
            units = [build_unit(outcomes[pos], history) for pos in members]
            ids = [u.test_id for u in units]
            if len(members) == 1:
                groups.append(FailureGroup(group_id=_group_id(INDEPENDENT, ids), tag=INDEPENDENT, units=units))
                continue
            signals: Set[str] = set()
            for pos in members:
                signals |= edge_signals.get(pos, set())
            groups.append(FailureGroup(
                group_id=_group_id(COUPLED, ids),
                tag=COUPLED,
                units=units,
                coupling_reasons=[s for s in _SIGNAL_ORDER if s in signals],
            ))

        coupled = sum(1 for g in groups if g.is_coupled)
        logger.info(
            "Classified %d failures into %d groups (%d independent, %d coupled)",
            len(outcomes), len(groups), len(groups) - coupled, coupled,
        )
        return groups

    @staticmethod
    def build_plan(groups: List[FailureGroup], concurrency_cap: int, model_tier: str) -> DispatchPlan:
        """Lay groups out for execution: capped parallel pool + sequential coupled lane."""
        parallel = [g.group_id for g in groups if not g.is_coupled]
        sequential = [g.group_id for g in groups if g.is_coupled]
        return DispatchPlan(
            groups=groups,
            concurrency_cap=concurrency_cap,
            model_tier=model_tier,
            parallel_group_ids=parallel,
            immediate_group_ids=parallel[:concurrency_cap],
            queued_group_ids=parallel[concurrency_cap:],
            sequential_group_ids=sequential,
        )
