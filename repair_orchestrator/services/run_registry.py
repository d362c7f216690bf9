"""
Run Registry
============
In-process index of sessions currently driven by this server:

    session_id → RunHandle(orchestrator, task)

The HTTP surface uses it to route directives to a paused run and to report
the live state machine position next to the persisted session.
Runs are not shared across processes; persisted sessions are the only
cross-process truth.

Finished handles are kept so their final report stays inspectable, but only
the most recent `max_finished` of them; older ones are pruned on launch.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Coroutine, Dict, List, Optional

from repair_orchestrator.agents.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

MAX_FINISHED_RUNS = 32


@dataclass
class RunHandle:
    session_id: str
    orchestrator: Orchestrator
    task: asyncio.Task

    @property
    def running(self) -> bool:
        return not self.task.done()

    @property
    def error(self) -> Optional[str]:
        if not self.task.done() or self.task.cancelled():
            return None
        exc = self.task.exception()
        return str(exc) if exc else None


class RunRegistry:
    """Tracks at most one live run per session id."""

    def __init__(self, max_finished: int = MAX_FINISHED_RUNS) -> None:
        self.max_finished = max_finished
        self._runs: Dict[str, RunHandle] = {}

    def get(self, session_id: str) -> Optional[RunHandle]:
        return self._runs.get(session_id)

    def is_running(self, session_id: str) -> bool:
        handle = self._runs.get(session_id)
        return handle is not None and handle.running

    def launch(self, session_id: str, orchestrator: Orchestrator, coro: Coroutine) -> RunHandle:
        """Schedule ``coro`` on the running loop and remember it under ``session_id``."""
        if self.is_running(session_id):
            coro.close()
            raise RuntimeError(f"Session {session_id} is already running")

        # Re-insert so the dict stays in launch order
        self._runs.pop(session_id, None)
        task = asyncio.create_task(coro, name=f"repair-{session_id}")
        task.add_done_callback(lambda t: self._on_done(session_id, t))
        handle = RunHandle(session_id=session_id, orchestrator=orchestrator, task=task)
        self._runs[session_id] = handle
        self._prune()
        logger.info("Run launched for session %s", session_id)
        return handle

    def _prune(self) -> None:
        finished = [sid for sid, h in self._runs.items() if not h.running]
        excess = len(finished) - self.max_finished
        for session_id in finished[:max(excess, 0)]:
            del self._runs[session_id]
            logger.debug("Pruned finished run handle for session %s", session_id)

    def _on_done(self, session_id: str, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info("Run for session %s cancelled", session_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Run for session %s ended with error: %s", session_id, exc)
        else:
            logger.info("Run for session %s finished", session_id)

    async def cancel(self, session_id: str) -> bool:
        handle = self._runs.pop(session_id, None)
        if handle is None or not handle.running:
            return False
        handle.task.cancel()
        try:
            await handle.task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.warning("Run for session %s raised while cancelling: %s", session_id, exc)
        return True

    async def cancel_all(self) -> List[str]:
        """Cancel every live run; returns the ids that were actually cancelled."""
        cancelled = []
        for session_id in self.session_ids():
            if await self.cancel(session_id):
                cancelled.append(session_id)
        return cancelled

    def session_ids(self) -> List[str]:
        return sorted(self._runs)


registry = RunRegistry()
