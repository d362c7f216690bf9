"""
Trace Log
=========
Optional debug side-channel: every worker's resolved input context and raw
output, appended as one JSON line per call to <trace_dir>/<session_id>.jsonl.

Purely observational. The orchestrator never reads it back, and a failing
trace write never affects the repair run.
"""
import os
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from repair_orchestrator.agents.worker import WorkerContext

logger = logging.getLogger(__name__)


class TraceLog:
    """Append-only JSONL writer, safe to call from concurrent workers."""

    def __init__(self, trace_dir: str) -> None:
        self.trace_dir = trace_dir
        self._lock = threading.Lock()

    def path_for(self, session_id: str) -> str:
        return os.path.join(self.trace_dir, f"{session_id or 'adhoc'}.jsonl")

    def record(
        self,
        context: WorkerContext,
        raw_output: Optional[str],
        error: Optional[str] = None,
    ) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "group_id": context.group_id,
            "attempt": context.attempt_number,
            "context": context.model_dump(mode="json"),
            "raw_output": raw_output,
            "error": error,
        }
        line = json.dumps(entry, ensure_ascii=False)
        path = self.path_for(context.session_id)
        try:
            with self._lock:
                os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as exc:
            logger.warning("Trace write failed for %s: %s", context.group_id, exc)
