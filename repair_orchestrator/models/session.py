"""
Session Model
=============
Durable record of orchestration configuration and attempt history.

Lifecycle:
    created on first run (status=active) → loaded and reconciled on resume →
    "completed" when the suite passes, "stopped" for any other terminal reason.

Invariants (checked by invariant_violations()):
    - completed attempt numbers are contiguous starting at 1
    - at most one incomplete attempt, and only as the last entry
    - attempt k's start set equals attempt k-1's post set, unless attempt k
      was reconciled against a fresh discovery after a resume

Owned exclusively by the Orchestrator; no other component mutates it.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from repair_orchestrator.core.constants import (
    MODES,
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    SESSION_STOPPED,
)
from repair_orchestrator.models.attempt import Attempt


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    session_id: str
    status: str = SESSION_ACTIVE
    mode: str
    concurrency_cap: int
    retry_budget: int
    no_progress_threshold: int = 1
    model_tier: str = "standard"
    attempts: List[Attempt] = []
    no_progress_count: int = 0
    stop_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in (SESSION_ACTIVE, SESSION_COMPLETED, SESSION_STOPPED):
            raise ValueError(f"unknown session status {v!r}")
        return v

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if v not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {v!r}")
        return v

    @property
    def completed_attempts(self) -> List[Attempt]:
        return [a for a in self.attempts if a.completed]

    @property
    def next_attempt_number(self) -> int:
        return len(self.completed_attempts) + 1

    @property
    def last_completed(self) -> Optional[Attempt]:
        done = self.completed_attempts
        return done[-1] if done else None

    def invariant_violations(self) -> List[str]:
        """Return human-readable descriptions of every broken invariant."""
        problems: List[str] = []
        for index, attempt in enumerate(self.attempts):
            if not attempt.completed and index != len(self.attempts) - 1:
                problems.append(f"incomplete attempt {attempt.number} is not the last entry")

        completed = self.completed_attempts
        for expected, attempt in enumerate(completed, start=1):
            if attempt.number != expected:
                problems.append(
                    f"attempt numbers not contiguous: expected {expected}, found {attempt.number}"
                )
                break

        for previous, attempt in zip(completed, completed[1:]):
            if attempt.reconciled:
                continue
            if set(attempt.start_failing) != set(previous.post_failing):
                problems.append(
                    f"attempt {attempt.number} start set differs from attempt "
                    f"{previous.number} post set"
                )

        if self.no_progress_count < 0:
            problems.append("negative no-progress counter")
        if self.retry_budget < 1 or self.concurrency_cap < 1:
            problems.append("retry budget and concurrency cap must be positive")
        return problems

    def touch(self) -> None:
        self.updated_at = _utcnow()
