"""
Errors
======
Exception taxonomy for the repair loop.

Environment-level conditions halt the whole run and are reported verbatim:
    ReportUnavailable — the test runner produced no report, or an invalid one
    SessionCorrupt    — persisted state fails its invariant checks on load
    SessionNotFound   — resume requested for an id with no persisted session
    SessionExists     — plain start requested for an id that is already persisted

Component-local conditions are absorbed:
    WorkerFailed      — a worker produced no usable change; the Dispatcher
                        records it and the tests stay in the failing set

Retry exhaustion and no-progress are terminal decisions, not exceptions.
"""


class OrchestratorError(Exception):
    """Base class for every error raised by the repair loop."""


class ReportUnavailable(OrchestratorError):
    """The external test runner did not leave a usable structured report."""

    def __init__(self, report_path: str, reason: str) -> None:
        self.report_path = report_path
        self.reason = reason
        super().__init__(f"Test report unavailable at {report_path}: {reason}")


class WorkerFailed(OrchestratorError):
    """A worker could not produce any change for its group."""

    def __init__(self, group_id: str, reason: str) -> None:
        self.group_id = group_id
        self.reason = reason
        super().__init__(f"Worker for group {group_id} failed: {reason}")


class SessionCorrupt(OrchestratorError):
    """Persisted session state is unreadable or violates its invariants."""

    def __init__(self, session_id: str, reason: str) -> None:
        self.session_id = session_id
        self.reason = reason
        super().__init__(
            f"Session {session_id} is corrupt ({reason}); start fresh to discard it"
        )


class SessionNotFound(OrchestratorError):
    """No persisted session exists for the requested id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} does not exist")


class SessionExists(OrchestratorError):
    """A start was requested for an id that already has a persisted session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(
            f"Session {session_id} already exists; resume it or start fresh to reset it"
        )
