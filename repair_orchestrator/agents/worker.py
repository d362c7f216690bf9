"""
Worker Runtime
==============
The boundary to whatever actually repairs code.

Each worker invocation is a pure call: an immutable WorkerContext goes in,
a WorkerVerdict comes out. No worker keeps state between calls, so the
dispatcher can fan out with plain asyncio tasks and never share context
between unrelated fixes.

Verdict contract (JSON):
    {
        "changed": bool,          # did the worker apply any edit
        "confidence": float,      # 0.0–1.0, clamped
        "blocked": str | null,    # reason the failure cannot be automated
        "summary": str            # short description of the change
    }

The orchestrator never inspects how a fix was produced.
"""
import json
import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from repair_orchestrator.core.config import WORKER_API_KEY, WORKER_ENDPOINT, WORKER_TIMEOUT_SECONDS
from repair_orchestrator.core.errors import WorkerFailed
from repair_orchestrator.models.failure_unit import FailureUnit

logger = logging.getLogger(__name__)


class SourceArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    truncated: bool = False


class WorkerContext(BaseModel):
    """Everything one worker may see: its own units, their files, prior summaries."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    attempt_number: int
    group_id: str
    tag: str
    model_tier: str
    units: List[FailureUnit]
    artifacts: List[SourceArtifact] = []


class WorkerVerdict(BaseModel):
    changed: bool = False
    confidence: float = 0.0
    blocked: Optional[str] = None
    summary: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(1.0, value))


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3].rstrip()
    return cleaned


def parse_worker_response(raw: str, group_id: str) -> WorkerVerdict:
    """
    Parse a worker's raw JSON verdict.

    Markdown code fences around the JSON are tolerated.

    Raises
    ------
    WorkerFailed
        Empty body, invalid JSON, or a body that is not a verdict object.
    """
    if not raw or not raw.strip():
        raise WorkerFailed(group_id, "empty response")

    try:
        data = json.loads(_strip_code_fence(raw))
    except json.JSONDecodeError as exc:
        raise WorkerFailed(group_id, f"response is not JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise WorkerFailed(group_id, "response is not a JSON object")

    try:
        return WorkerVerdict.model_validate(data)
    except ValidationError as exc:
        raise WorkerFailed(group_id, f"invalid verdict: {exc.error_count()} error(s)") from exc


class WorkerRuntime:
    """Base class for worker runtimes. ``repair`` must not keep state across calls."""

    async def repair(self, context: WorkerContext) -> WorkerVerdict:
        raise NotImplementedError

    async def repair_raw(self, context: WorkerContext) -> tuple[WorkerVerdict, str]:
        """Like repair(), also returning the raw output for the trace log."""
        verdict = await self.repair(context)
        return verdict, verdict.model_dump_json()


class HttpWorkerRuntime(WorkerRuntime):
    """
    Posts each context bundle to an HTTP worker service.

    Parameters
    ----------
    endpoint : str
        URL accepting POSTed WorkerContext JSON and answering with a verdict.
    timeout_seconds : float
        httpx request timeout; a stuck worker is the runtime's concern.
    api_key : str or None
        Sent as a bearer token when set.
    """

    def __init__(
        self,
        endpoint: str = WORKER_ENDPOINT,
        timeout_seconds: float = WORKER_TIMEOUT_SECONDS,
        api_key: Optional[str] = WORKER_API_KEY,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.api_key = api_key

    async def repair(self, context: WorkerContext) -> WorkerVerdict:
        verdict, _ = await self.repair_raw(context)
        return verdict

    async def repair_raw(self, context: WorkerContext) -> tuple[WorkerVerdict, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        # One client per call: no connection or cookie state leaks between workers
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds)) as http:
            try:
                resp = await http.post(
                    self.endpoint,
                    content=context.model_dump_json(),
                    headers=headers,
                )
                resp.raise_for_status()
            except httpx.TimeoutException as exc:
                raise WorkerFailed(context.group_id, "worker timed out") from exc
            except httpx.HTTPStatusError as exc:
                raise WorkerFailed(
                    context.group_id, f"worker returned HTTP {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise WorkerFailed(context.group_id, f"transport error: {exc}") from exc

        raw = resp.text
        return parse_worker_response(raw, context.group_id), raw
