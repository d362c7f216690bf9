"""
Session Store
=============
Durable, atomically-written record of orchestration progress.

One JSON document per session id under the store directory:
    <session_dir>/<session_id>.json

Writes use write-to-temp + fsync + os.replace, so a reader (the only
legitimate concurrent one is a human inspecting state) never sees a partial
file. The orchestrator is the single writer.

Loading validates both the schema (pydantic) and the session invariants; any
failure raises SessionCorrupt and the store refuses to hand the state out.
"""
import os
import re
import json
import logging
from typing import List

from pydantic import ValidationError

from repair_orchestrator.core.errors import SessionCorrupt, SessionNotFound
from repair_orchestrator.models.session import Session

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,127}$")


def validate_session_id(session_id: str) -> str:
    """Reject ids that could escape the store directory."""
    if not _SESSION_ID_RE.match(session_id or "") or ".." in session_id:
        raise ValueError(f"Invalid session id {session_id!r}")
    return session_id


def atomic_write_text(path: str, content: str) -> None:
    """Write ``content`` to ``path`` so the file is either old or new, never partial."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class SessionStore:
    """Filesystem-backed session persistence keyed by session id."""

    def __init__(self, session_dir: str) -> None:
        self.session_dir = session_dir

    def path_for(self, session_id: str) -> str:
        return os.path.join(self.session_dir, f"{validate_session_id(session_id)}.json")

    def exists(self, session_id: str) -> bool:
        return os.path.isfile(self.path_for(session_id))

    def save(self, session: Session) -> None:
        session.touch()
        path = self.path_for(session.session_id)
        atomic_write_text(path, session.model_dump_json(indent=2))
        logger.debug(
            "Persisted session %s (%d attempts, status=%s)",
            session.session_id, len(session.attempts), session.status,
        )

    def load(self, session_id: str) -> Session:
        """
        Load and validate a session.

        Raises
        ------
        SessionNotFound
            No file for this id.
        SessionCorrupt
            Unparsable JSON, schema mismatch, or broken invariants.
        """
        path = self.path_for(session_id)
        if not os.path.isfile(path):
            raise SessionNotFound(session_id)

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SessionCorrupt(session_id, f"unreadable: {exc}") from exc

        try:
            session = Session.model_validate(data)
        except ValidationError as exc:
            raise SessionCorrupt(session_id, f"schema: {exc.error_count()} error(s)") from exc

        if session.session_id != session_id:
            raise SessionCorrupt(session_id, f"file holds session {session.session_id!r}")

        problems = session.invariant_violations()
        if problems:
            raise SessionCorrupt(session_id, "; ".join(problems))
        return session

    def delete(self, session_id: str) -> bool:
        """Remove a session. Returns False if there was nothing to delete."""
        path = self.path_for(session_id)
        if not os.path.exists(path):
            return False
        os.remove(path)
        logger.info("Deleted session %s", session_id)
        return True

    def list_ids(self) -> List[str]:
        if not os.path.isdir(self.session_dir):
            return []
        return sorted(
            name[:-len(".json")]
            for name in os.listdir(self.session_dir)
            if name.endswith(".json")
        )
