"""
Report Parser
=============
Converts the test runner's structured result report into TestOutcome objects.

Supported formats (chosen by suffix, then by sniffing the first character):
    - JSON  : {"tests": [...]} or a bare list of test entries. Entries use
              "id" / "nodeid" / "test_id" and "status" / "outcome". The
              pytest-json-report layout ("call": {"crash", "longrepr",
              "traceback"}) is understood.
    - JUnit : <testsuites>/<testsuite>/<testcase> with <failure>, <error>
              or <skipped> children; <property> entries named "fixture",
              "resource" or "feature_area" become diagnostic hints.

Pipeline per failing entry:
    1. Read explicit diagnostic fields (message, location, kind, frame, resources)
    2. Fill missing kind / top frame from the traceback text via regex
    3. Normalize file paths (workspace-relative, forward slashes)
    4. Compute the error signature from kind + top frame

Contract:
    - DETERMINISTIC: same report → same outcomes, always.
    - STRICT: a missing file, undecodable content, an entry without an id or
      an unknown status raises ReportUnavailable. The runner did not produce
      a usable report; that is never mistaken for a test failure.
    - Duplicate ids keep the first occurrence.
"""
import re
import os
import json
import logging
import xml.etree.ElementTree as ET
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from repair_orchestrator.core.constants import STATUS_FAIL, STATUS_PASS, STATUS_SKIPPED
from repair_orchestrator.core.errors import ReportUnavailable
from repair_orchestrator.models.test_outcome import Diagnostic, SourceLocation, TestOutcome
from repair_orchestrator.parser.signatures import generate_error_signature, normalize_frame

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Status Normalization
# ---------------------------------------------------------------------------
_STATUS_MAP: dict[str, str] = {
    "pass":     STATUS_PASS,
    "passed":   STATUS_PASS,
    "success":  STATUS_PASS,
    "ok":       STATUS_PASS,
    "xpassed":  STATUS_PASS,
    "fail":     STATUS_FAIL,
    "failed":   STATUS_FAIL,
    "failure":  STATUS_FAIL,
    "error":    STATUS_FAIL,
    "errored":  STATUS_FAIL,
    "broken":   STATUS_FAIL,
    "skip":     STATUS_SKIPPED,
    "skipped":  STATUS_SKIPPED,
    "xfailed":  STATUS_SKIPPED,
    "deselected": STATUS_SKIPPED,
}


def normalize_status(raw: Any) -> Optional[str]:
    """Map a runner-specific status word onto pass / fail / skipped."""
    if not isinstance(raw, str):
        return None
    return _STATUS_MAP.get(raw.strip().lower())


# ---------------------------------------------------------------------------
# Path Ignore Rules
# ---------------------------------------------------------------------------
_IGNORE_PATTERNS: list[str] = [
    "site-packages",
    "dist-packages",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
    "_pytest",
    "pluggy",
    "<frozen",
]


def _should_ignore(file_path: str) -> bool:
    """Return True if the frame lives in library or interpreter code."""
    normalized = file_path.replace("\\", "/")
    for pattern in _IGNORE_PATTERNS:
        if pattern.startswith("<"):
            if normalized.startswith(pattern):
                return True
        elif f"/{pattern}/" in f"/{normalized}/":
            return True
    return False


def normalize_path(raw_path: str, workspace_path: str = "") -> str:
    """
    Convert an absolute or messy path to a clean workspace-relative path.

    Strips quotes, converts backslashes, removes the workspace prefix and the
    /workspace/ prefix used inside sandbox containers.
    """
    path = raw_path.strip().strip("'\"")
    path = path.replace("\\", "/")

    if workspace_path:
        ws = os.path.abspath(workspace_path).replace("\\", "/").rstrip("/")
        if path.startswith(ws + "/"):
            path = path[len(ws):]

    if path.startswith("/workspace/"):
        path = path[len("/workspace/"):]

    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


# ---------------------------------------------------------------------------
# Traceback Extraction Patterns
# ---------------------------------------------------------------------------
# Python traceback: File "path", line N, in func
_PY_TRACEBACK = re.compile(
    r'File\s+"([^"]+)",\s+line\s+(\d+)(?:,\s+in\s+([\w<>.]+))?',
)

# Python error label: ErrorType: message  (or a bare ErrorType line)
_PY_ERROR_LABEL = re.compile(
    r'^(?:E\s+)?([\w.]*(?:Error|Exception|Exit|Interrupt|Warning|Failure))\b:?',
    re.MULTILINE,
)

# Pytest crash line: tests/test_foo.py:42: AssertionError
_PYTEST_CRASH = re.compile(
    r'^([^\s:]+\.\w+):(\d+):\s+([\w.]+)\s*$',
    re.MULTILINE,
)

# Fixture / resource mentions in free text: fixture 'db', resource=team-seed
_RESOURCE_QUOTED = re.compile(
    r"""\b(?:fixture|resource)\s+['"]([\w\-.:/]+)['"]""",
    re.IGNORECASE,
)
_RESOURCE_ASSIGNED = re.compile(
    r"""\b(?:fixture|resource)\s*[:=]\s*['"]?([\w\-.:/]+)""",
    re.IGNORECASE,
)


def extract_top_frame(traceback_text: str, workspace_path: str = "") -> Tuple[str, Optional[SourceLocation]]:
    """
    Find the innermost project frame in a traceback.

    Returns
    -------
    tuple
        (normalised frame "path:function" or "path:line", location or None)
    """
    frame = ""
    location: Optional[SourceLocation] = None

    for match in _PY_TRACEBACK.finditer(traceback_text or ""):
        path = normalize_path(match.group(1), workspace_path)
        if _should_ignore(path):
            continue
        line_no = int(match.group(2))
        frame = normalize_frame(path, match.group(3) or line_no)
        location = SourceLocation(file_path=path, line_number=line_no)

    if frame:
        return frame, location

    crashes = list(_PYTEST_CRASH.finditer(traceback_text or ""))
    for match in reversed(crashes):
        path = normalize_path(match.group(1), workspace_path)
        if _should_ignore(path):
            continue
        line_no = int(match.group(2))
        return normalize_frame(path, line_no), SourceLocation(file_path=path, line_number=line_no)

    return "", None


def extract_error_kind(traceback_text: str) -> str:
    """Return the last exception class name mentioned in a traceback."""
    labels = list(_PY_ERROR_LABEL.finditer(traceback_text or ""))
    if labels:
        return labels[-1].group(1).rsplit(".", 1)[-1]
    crashes = list(_PYTEST_CRASH.finditer(traceback_text or ""))
    if crashes:
        return crashes[-1].group(3).rsplit(".", 1)[-1]
    return ""


def extract_resource_mentions(text: str) -> List[str]:
    """Fixture / resource identifiers named in free text, in order of appearance."""
    found: List[str] = []
    matches = list(_RESOURCE_QUOTED.finditer(text or "")) + list(_RESOURCE_ASSIGNED.finditer(text or ""))
    for match in sorted(matches, key=lambda m: m.start()):
        name = match.group(1).strip(".:")
        if name and name not in found:
            found.append(name)
    return found


# ---------------------------------------------------------------------------
# Diagnostic Assembly
# ---------------------------------------------------------------------------
def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v not in (None, "")]
    return [str(value)]


def _as_text(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    return str(value)


def _location_from(raw: Any, workspace_path: str) -> Optional[SourceLocation]:
    if isinstance(raw, dict):
        path = raw.get("file_path") or raw.get("path") or raw.get("file")
        line = raw.get("line_number") or raw.get("lineno") or raw.get("line")
    elif isinstance(raw, str) and raw:
        path, _, line = raw.partition(":")
    else:
        return None
    if not path:
        return None
    try:
        line_no = int(line) if line not in (None, "") else None
    except (TypeError, ValueError):
        line_no = None
    return SourceLocation(file_path=normalize_path(str(path), workspace_path), line_number=line_no)


def build_diagnostic(
    message: str = "",
    traceback_text: str = "",
    error_kind: str = "",
    top_frame: str = "",
    location: Optional[SourceLocation] = None,
    related_locations: Optional[List[SourceLocation]] = None,
    resources: Optional[List[str]] = None,
    feature_area: Optional[str] = None,
    error_signature: str = "",
    workspace_path: str = "",
) -> Diagnostic:
    """
    Combine explicit report fields with hints recovered from the traceback.

    Explicit values always win; regex extraction only fills gaps.
    """
    text = traceback_text or message
    if not top_frame:
        top_frame, tb_location = extract_top_frame(text, workspace_path)
        location = location or tb_location
    if not error_kind:
        error_kind = extract_error_kind(text)

    merged_resources: List[str] = []
    for name in list(resources or []) + extract_resource_mentions(message):
        if name not in merged_resources:
            merged_resources.append(name)

    return Diagnostic(
        message=message.strip(),
        location=location,
        related_locations=tuple(related_locations or ()),
        error_kind=error_kind,
        top_frame=top_frame,
        error_signature=error_signature or generate_error_signature(error_kind, top_frame),
        resources=tuple(merged_resources),
        feature_area=feature_area or None,
        traceback=traceback_text,
    )


# ---------------------------------------------------------------------------
# JSON Reports
# ---------------------------------------------------------------------------
def _json_entry_to_outcome(entry: Any, report_path: str, workspace_path: str) -> TestOutcome:
    if not isinstance(entry, dict):
        raise ReportUnavailable(report_path, f"test entry is not an object: {entry!r}")

    test_id = entry.get("id") or entry.get("nodeid") or entry.get("test_id")
    if not test_id or not isinstance(test_id, str):
        raise ReportUnavailable(report_path, f"test entry without an id: {entry!r}")

    raw_status = entry.get("status", entry.get("outcome"))
    status = normalize_status(raw_status)
    if status is None:
        raise ReportUnavailable(report_path, f"unknown status {raw_status!r} for {test_id}")

    if status != STATUS_FAIL:
        return TestOutcome(test_id=test_id, status=status)

    diag = entry.get("diagnostic") or {}
    if not isinstance(diag, dict):
        diag = {"message": str(diag)}

    # pytest-json-report keeps failure details under the failing phase
    phase = next(
        (entry[p] for p in ("call", "setup", "teardown")
         if isinstance(entry.get(p), dict) and entry[p].get("outcome") in ("failed", "error")),
        {},
    )
    crash = phase.get("crash") or {}
    if not isinstance(crash, dict):
        crash = {"message": str(crash)}

    message = diag.get("message") or entry.get("message") or crash.get("message") or ""
    traceback_text = (
        diag.get("traceback") or entry.get("longrepr") or phase.get("longrepr") or ""
    )
    if not isinstance(traceback_text, str):
        traceback_text = json.dumps(traceback_text)

    location = _location_from(diag.get("location") or entry.get("location"), workspace_path)
    if location is None and crash.get("path"):
        location = _location_from(crash, workspace_path)

    related = [
        loc for loc in (
            _location_from(raw, workspace_path)
            for raw in (diag.get("related_locations") or phase.get("traceback") or [])
        ) if loc is not None and not _should_ignore(loc.file_path)
    ]

    resources = _as_list(diag.get("resources")) + _as_list(diag.get("fixtures"))
    resources += _as_list(entry.get("resources")) + _as_list(entry.get("fixtures"))

    return TestOutcome(
        test_id=test_id,
        status=status,
        diagnostic=build_diagnostic(
            message=str(message),
            traceback_text=traceback_text,
            error_kind=str(diag.get("error_kind") or entry.get("error_kind") or ""),
            top_frame=str(diag.get("top_frame") or ""),
            location=location,
            related_locations=related,
            resources=resources,
            feature_area=_as_text(diag.get("feature_area") or entry.get("feature_area")),
            error_signature=str(diag.get("error_signature") or ""),
            workspace_path=workspace_path,
        ),
    )


def parse_json_report(content: str, report_path: str = "", workspace_path: str = "") -> List[TestOutcome]:
    """Parse a JSON report into outcomes (see module docstring for layout)."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ReportUnavailable(report_path, f"invalid JSON: {exc}") from exc

    if isinstance(data, dict):
        entries = data.get("tests")
    else:
        entries = data
    if not isinstance(entries, list):
        raise ReportUnavailable(report_path, "no 'tests' list in report")

    outcomes: List[TestOutcome] = []
    for entry in entries:
        try:
            outcomes.append(_json_entry_to_outcome(entry, report_path, workspace_path))
        except (ValidationError, AttributeError, TypeError, ValueError) as exc:
            raise ReportUnavailable(report_path, f"malformed test entry: {exc}") from exc
    return outcomes


# ---------------------------------------------------------------------------
# JUnit XML Reports
# ---------------------------------------------------------------------------
def _junit_test_id(case: ET.Element) -> str:
    name = case.get("name") or ""
    file_attr = case.get("file")
    classname = case.get("classname") or ""
    if file_attr:
        # pytest writes classname as dotted module path + class
        module_parts = file_attr.replace("\\", "/").rsplit(".", 1)[0].split("/")
        class_parts = classname.split(".")
        suffix = class_parts[len(module_parts):] if class_parts[:len(module_parts)] == module_parts else []
        return "::".join([file_attr.replace("\\", "/")] + suffix + [name])
    if classname:
        return f"{classname}::{name}"
    return name


def parse_junit_report(content: str, report_path: str = "", workspace_path: str = "") -> List[TestOutcome]:
    """Parse a JUnit XML report into outcomes."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ReportUnavailable(report_path, f"invalid JUnit XML: {exc}") from exc

    if root.tag not in ("testsuites", "testsuite"):
        raise ReportUnavailable(report_path, f"unexpected root element <{root.tag}>")

    outcomes: List[TestOutcome] = []
    for case in root.iter("testcase"):
        test_id = _junit_test_id(case)
        if not test_id:
            raise ReportUnavailable(report_path, "testcase without a name")

        problem = case.find("failure")
        if problem is None:
            problem = case.find("error")

        if problem is None:
            status = STATUS_SKIPPED if case.find("skipped") is not None else STATUS_PASS
            outcomes.append(TestOutcome(test_id=test_id, status=status))
            continue

        props = {
            p.get("name", ""): p.get("value", "")
            for p in case.iter("property")
        }
        resources = [
            p.get("value", "") for p in case.iter("property")
            if p.get("name") in ("fixture", "resource") and p.get("value")
        ]
        location = None
        if case.get("file"):
            location = _location_from(
                {"file": case.get("file"), "line": case.get("line")}, workspace_path
            )

        outcomes.append(TestOutcome(
            test_id=test_id,
            status=STATUS_FAIL,
            diagnostic=build_diagnostic(
                message=problem.get("message") or "",
                traceback_text=problem.text or "",
                error_kind=problem.get("type") or "",
                location=location,
                resources=resources,
                feature_area=props.get("feature_area") or None,
                workspace_path=workspace_path,
            ),
        ))
    return outcomes


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def parse_report(report_path: str, workspace_path: str = "") -> List[TestOutcome]:
    """
    Read and parse the report at ``report_path``.

    Raises
    ------
    ReportUnavailable
        If the file is missing, empty or malformed.
    """
    if not os.path.isfile(report_path):
        raise ReportUnavailable(report_path, "file not found")

    try:
        with open(report_path, "r", encoding="utf-8") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise ReportUnavailable(report_path, f"unreadable: {exc}") from exc

    if not content.strip():
        raise ReportUnavailable(report_path, "empty report")

    lowered = report_path.lower()
    if lowered.endswith(".xml") or (not lowered.endswith(".json") and content.lstrip().startswith("<")):
        outcomes = parse_junit_report(content, report_path, workspace_path)
    else:
        outcomes = parse_json_report(content, report_path, workspace_path)

    deduped: dict[str, TestOutcome] = {}
    for outcome in outcomes:
        kept = deduped.get(outcome.test_id)
        if kept is not None:
            # A failing duplicate outranks a passing or skipped one
            if outcome.failed and not kept.failed:
                logger.debug("Duplicate test id %s in report, keeping the failure", outcome.test_id)
                deduped[outcome.test_id] = outcome
            continue
        deduped[outcome.test_id] = outcome

    logger.info(
        "Parsed %d outcomes from %s (%d failing)",
        len(deduped), report_path, sum(1 for o in deduped.values() if o.failed),
    )
    return list(deduped.values())
