"""
Sessions API
============
Operator control surface for repair sessions.

Routes:
    POST   /sessions                  — start a session (fresh=true resets an existing one)
    POST   /sessions/plan             — dry-run: discover + classify, return the plan
    POST   /sessions/{id}/resume      — continue a persisted session
    POST   /sessions/{id}/directive   — continue / switch-to-unattended / stop a paused run
    GET    /sessions                  — list persisted sessions
    GET    /sessions/{id}             — persisted state plus live run position
    DELETE /sessions/{id}             — cancel any live run and discard the session

Runs are launched in the background by default; pass wait=true to block until
the final report is ready.

Error mapping:
    SessionNotFound   → 404
    SessionCorrupt    → 409
    SessionExists     → 409
    run already live  → 409
    not paused        → 409 (directive)
    ReportUnavailable → 502
    invalid id        → 422
"""
import uuid
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from repair_orchestrator.agents.orchestrator import Orchestrator
from repair_orchestrator.core.config import OrchestratorSettings, load_settings
from repair_orchestrator.core.constants import MODE_UNATTENDED
from repair_orchestrator.core.errors import (
    ReportUnavailable,
    SessionCorrupt,
    SessionExists,
    SessionNotFound,
)
from repair_orchestrator.models.failure_unit import DispatchPlan
from repair_orchestrator.models.final_report import FinalReport
from repair_orchestrator.services.run_registry import registry
from repair_orchestrator.services.session_store import SessionStore, validate_session_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])

Mode = Literal["interactive", "unattended"]


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class StartRequest(BaseModel):
    session_id: Optional[str] = None
    mode: Mode = MODE_UNATTENDED
    fresh: bool = False
    wait: bool = False
    retry_budget: Optional[int] = Field(default=None, ge=1)
    concurrency_cap: Optional[int] = Field(default=None, ge=1)
    no_progress_threshold: Optional[int] = Field(default=None, ge=1)
    model_tier: Optional[str] = None


class ResumeRequest(BaseModel):
    mode: Optional[Mode] = None
    wait: bool = False


class PlanRequest(BaseModel):
    session_id: Optional[str] = None


class DirectiveRequest(BaseModel):
    directive: Literal["continue", "switch-to-unattended", "stop"]


class RunAccepted(BaseModel):
    session_id: str
    state: str
    final_report: Optional[FinalReport] = None


class SessionSummary(BaseModel):
    session_id: str
    status: str
    mode: Optional[str] = None
    attempts: int = 0
    running: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def build_orchestrator(settings: OrchestratorSettings) -> Orchestrator:
    return Orchestrator.from_settings(settings)


def _store() -> SessionStore:
    return SessionStore(load_settings().session_dir)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, SessionNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (SessionCorrupt, SessionExists)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ReportUnavailable):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _check_id(session_id: str) -> str:
    try:
        return validate_session_id(session_id)
    except ValueError as exc:
        raise _http_error(exc)


def _ensure_not_running(session_id: str) -> None:
    if registry.is_running(session_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Session {session_id} is already running",
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("", response_model=RunAccepted, status_code=status.HTTP_202_ACCEPTED)
async def start_session(request: StartRequest):
    session_id = _check_id(request.session_id or uuid.uuid4().hex[:12])
    _ensure_not_running(session_id)

    settings = load_settings(
        retry_budget=request.retry_budget,
        concurrency_cap=request.concurrency_cap,
        no_progress_threshold=request.no_progress_threshold,
        model_tier=request.model_tier,
    )
    orchestrator = build_orchestrator(settings)
    if orchestrator.session_store.exists(session_id) and not request.fresh:
        raise _http_error(SessionExists(session_id))

    logger.info("Start requested: session=%s mode=%s fresh=%s", session_id, request.mode, request.fresh)
    coro = orchestrator.start(session_id, mode=request.mode, fresh=request.fresh)

    if request.wait:
        try:
            report = await coro
        except (ReportUnavailable, SessionExists, ValueError) as exc:
            raise _http_error(exc)
        return RunAccepted(session_id=session_id, state=orchestrator.state, final_report=report)

    registry.launch(session_id, orchestrator, coro)
    return RunAccepted(session_id=session_id, state=orchestrator.state)


@router.post("/plan", response_model=DispatchPlan)
async def plan_session(request: PlanRequest):
    if request.session_id:
        _check_id(request.session_id)
    orchestrator = build_orchestrator(load_settings())
    try:
        return await orchestrator.plan(request.session_id)
    except (ReportUnavailable, SessionCorrupt) as exc:
        raise _http_error(exc)


@router.post("/{session_id}/resume", response_model=RunAccepted, status_code=status.HTTP_202_ACCEPTED)
async def resume_session(session_id: str, request: Optional[ResumeRequest] = None):
    request = request or ResumeRequest()
    _check_id(session_id)
    _ensure_not_running(session_id)

    orchestrator = build_orchestrator(load_settings())
    try:
        # Surface missing or corrupt state before launching anything
        orchestrator.session_store.load(session_id)
    except (SessionNotFound, SessionCorrupt) as exc:
        raise _http_error(exc)

    coro = orchestrator.resume(session_id, mode=request.mode)
    if request.wait:
        try:
            report = await coro
        except (ReportUnavailable, SessionNotFound, SessionCorrupt) as exc:
            raise _http_error(exc)
        return RunAccepted(session_id=session_id, state=orchestrator.state, final_report=report)

    registry.launch(session_id, orchestrator, coro)
    return RunAccepted(session_id=session_id, state=orchestrator.state)


@router.post("/{session_id}/directive")
async def send_directive(session_id: str, request: DirectiveRequest):
    _check_id(session_id)
    handle = registry.get(session_id)
    if handle is None or not handle.running:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No live run for session {session_id}")
    if not handle.orchestrator.paused:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Session {session_id} is not paused (state {handle.orchestrator.state})",
        )
    handle.orchestrator.directives.send(request.directive)
    return {"session_id": session_id, "directive": request.directive, "accepted": True}


@router.get("", response_model=List[SessionSummary])
async def list_sessions():
    store = _store()
    summaries: List[SessionSummary] = []
    for session_id in store.list_ids():
        running = registry.is_running(session_id)
        try:
            session = store.load(session_id)
        except SessionCorrupt:
            summaries.append(SessionSummary(session_id=session_id, status="corrupt", running=running))
            continue
        summaries.append(SessionSummary(
            session_id=session_id,
            status=session.status,
            mode=session.mode,
            attempts=len(session.completed_attempts),
            running=running,
        ))
    return summaries


@router.get("/{session_id}")
async def get_session(session_id: str):
    _check_id(session_id)
    try:
        session = _store().load(session_id)
    except (SessionNotFound, SessionCorrupt) as exc:
        raise _http_error(exc)

    handle = registry.get(session_id)
    live = None
    if handle is not None:
        report = handle.orchestrator.final_report
        live = {
            "state": handle.orchestrator.state,
            "running": handle.running,
            "paused": handle.orchestrator.paused,
            "error": handle.error,
            "final_report": report.model_dump(mode="json") if report else None,
        }
    return {"session": session.model_dump(mode="json"), "live": live}


@router.delete("/{session_id}")
async def delete_session(session_id: str):
    _check_id(session_id)
    cancelled = await registry.cancel(session_id)
    deleted = _store().delete(session_id)
    if not (cancelled or deleted):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session {session_id} does not exist")
    logger.info("Session %s reset (cancelled=%s, deleted=%s)", session_id, cancelled, deleted)
    return {"session_id": session_id, "cancelled": cancelled, "deleted": deleted}
