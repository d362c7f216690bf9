"""
Context Builder
===============
Assembles the focused, isolated context bundle for one worker.

A bundle contains only:
    - the group's FailureUnits (diagnostics + prior-attempt summaries)
    - the source artifacts those units reference, read from the workspace

Rules:
    - Paths outside the workspace are never read.
    - Missing or unreadable files are skipped, not fatal.
    - Each artifact is truncated to a fixed character budget.
"""
import os
import logging
from typing import List

from repair_orchestrator.agents.worker import SourceArtifact, WorkerContext
from repair_orchestrator.core.config import MAX_ARTIFACT_CHARS
from repair_orchestrator.models.failure_unit import FailureGroup

logger = logging.getLogger(__name__)


def _inside(workspace_path: str, candidate: str) -> bool:
    root = os.path.realpath(workspace_path)
    target = os.path.realpath(candidate)
    return target == root or target.startswith(root + os.sep)


def collect_artifacts(
    group: FailureGroup,
    workspace_path: str,
    max_chars: int = MAX_ARTIFACT_CHARS,
) -> List[SourceArtifact]:
    """Read every distinct file the group's units point at."""
    paths: List[str] = []
    for unit in group.units:
        for path in unit.source_paths:
            if path not in paths:
                paths.append(path)

    artifacts: List[SourceArtifact] = []
    for rel_path in paths:
        abs_path = os.path.normpath(os.path.join(workspace_path, rel_path))
        if not _inside(workspace_path, abs_path):
            logger.warning("Skipping artifact outside workspace: %s", rel_path)
            continue
        if not os.path.isfile(abs_path):
            logger.debug("Artifact not found, skipping: %s", rel_path)
            continue
        try:
            with open(abs_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read(max_chars + 1)
        except OSError as exc:
            logger.warning("Failed to read %s: %s", abs_path, exc)
            continue
        truncated = len(content) > max_chars
        artifacts.append(SourceArtifact(
            path=rel_path,
            content=content[:max_chars],
            truncated=truncated,
        ))
    return artifacts


def build_context(
    group: FailureGroup,
    workspace_path: str,
    session_id: str,
    attempt_number: int,
    model_tier: str,
    max_chars: int = MAX_ARTIFACT_CHARS,
) -> WorkerContext:
    """Fresh, immutable context for one worker call."""
    return WorkerContext(
        session_id=session_id,
        attempt_number=attempt_number,
        group_id=group.group_id,
        tag=group.tag,
        model_tier=model_tier,
        units=list(group.units),
        artifacts=collect_artifacts(group, workspace_path, max_chars),
    )
