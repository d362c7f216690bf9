"""
Unit Tests — Report Parser
==========================
JSON and JUnit reports → TestOutcome, traceback hint extraction, and the
strict ReportUnavailable contract.
"""
import json
from unittest.mock import patch

import pytest

from repair_orchestrator.core.constants import STATUS_FAIL, STATUS_PASS, STATUS_SKIPPED
from repair_orchestrator.core.errors import ReportUnavailable
from repair_orchestrator.parser.report_parser import (
    extract_error_kind,
    extract_resource_mentions,
    extract_top_frame,
    normalize_path,
    normalize_status,
    parse_json_report,
    parse_junit_report,
    parse_report,
)


_TRACEBACK = """Traceback (most recent call last):
  File "/usr/lib/python3.11/site-packages/_pytest/python.py", line 195, in pytest_pyfunc_call
    result = testfunction(**testargs)
  File "/repo/app/db.py", line 12, in seed
    raise KeyError("team")
KeyError: 'team'
"""


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return str(path)


# ---------------------------------------------------------------------------
# 1. Status and path normalisation
# ---------------------------------------------------------------------------
class TestNormalization:

    def test_status_aliases(self):
        assert normalize_status("passed") == STATUS_PASS
        assert normalize_status("ERROR") == STATUS_FAIL
        assert normalize_status("xfailed") == STATUS_SKIPPED

    def test_unknown_status_is_none(self):
        assert normalize_status("flaky") is None
        assert normalize_status(None) is None

    def test_path_strips_workspace_prefix(self):
        assert normalize_path("/repo/app/db.py", "/repo") == "app/db.py"

    def test_path_strips_container_prefix(self):
        assert normalize_path("/workspace/app/db.py") == "app/db.py"

    def test_path_backslashes_and_dot_prefix(self):
        assert normalize_path(".\\app\\db.py") == "app/db.py"

    def test_hidden_directory_kept(self):
        assert normalize_path("./.config/settings.py") == ".config/settings.py"


# ---------------------------------------------------------------------------
# 2. Traceback hints
# ---------------------------------------------------------------------------
class TestTracebackHints:

    def test_top_frame_skips_library_frames(self):
        frame, location = extract_top_frame(_TRACEBACK, "/repo")
        assert frame == "app/db.py:seed"
        assert location.file_path == "app/db.py"
        assert location.line_number == 12

    def test_top_frame_from_pytest_crash_line(self):
        frame, location = extract_top_frame("tests/test_api.py:42: AssertionError")
        assert frame == "tests/test_api.py:42"
        assert location.line_number == 42

    def test_no_frame(self):
        assert extract_top_frame("nothing useful here") == ("", None)

    def test_error_kind_is_last_label(self):
        assert extract_error_kind(_TRACEBACK) == "KeyError"

    def test_error_kind_drops_module_prefix(self):
        assert extract_error_kind("requests.exceptions.ConnectionError: refused") == "ConnectionError"

    def test_resource_mentions(self):
        text = "fixture 'team-seed' failed; resource=redis-cache was busy"
        assert extract_resource_mentions(text) == ["team-seed", "redis-cache"]

    def test_plain_word_resource_is_not_a_mention(self):
        assert extract_resource_mentions("resource temporarily unavailable") == []


# ---------------------------------------------------------------------------
# 3. JSON reports
# ---------------------------------------------------------------------------
class TestJsonReports:

    def test_basic_report(self):
        content = json.dumps({"tests": [
            {"id": "tests/test_a.py::test_ok", "status": "passed"},
            {"id": "tests/test_a.py::test_skip", "status": "skipped"},
            {
                "id": "tests/test_a.py::test_bad",
                "status": "failed",
                "diagnostic": {
                    "message": "KeyError: 'team'",
                    "traceback": _TRACEBACK,
                    "resources": ["team-seed"],
                    "feature_area": "Teams",
                },
            },
        ]})
        outcomes = parse_json_report(content, "r.json", "/repo")
        assert [o.status for o in outcomes] == [STATUS_PASS, STATUS_SKIPPED, STATUS_FAIL]

        diag = outcomes[2].diagnostic
        assert diag.error_kind == "KeyError"
        assert diag.top_frame == "app/db.py:seed"
        assert diag.resources == ("team-seed",)
        assert diag.feature_area == "Teams"
        assert len(diag.error_signature) == 16

    def test_bare_list_and_nodeid(self):
        content = json.dumps([{"nodeid": "t::x", "outcome": "passed"}])
        assert parse_json_report(content)[0].test_id == "t::x"

    def test_pytest_json_report_layout(self):
        content = json.dumps({"tests": [{
            "nodeid": "tests/test_api.py::test_login",
            "outcome": "failed",
            "call": {
                "outcome": "failed",
                "crash": {"path": "/repo/app/auth.py", "lineno": 7, "message": "AssertionError: nope"},
                "traceback": [
                    {"path": "tests/test_api.py", "lineno": 3},
                    {"path": "/usr/lib/python3/site-packages/x.py", "lineno": 1},
                ],
                "longrepr": "app/auth.py:7: AssertionError",
            },
        }]})
        outcome = parse_json_report(content, "r.json", "/repo")[0]
        diag = outcome.diagnostic
        assert diag.message == "AssertionError: nope"
        assert diag.location.file_path == "app/auth.py"
        assert diag.location.line_number == 7
        assert [loc.file_path for loc in diag.related_locations] == ["tests/test_api.py"]
        assert diag.error_kind == "AssertionError"

    def test_explicit_fields_win(self):
        content = json.dumps([{
            "id": "t::x",
            "status": "fail",
            "diagnostic": {"error_kind": "ValueError", "top_frame": "lib/x.py:f", "traceback": _TRACEBACK},
        }])
        diag = parse_json_report(content, "r.json", "/repo")[0].diagnostic
        assert diag.error_kind == "ValueError"
        assert diag.top_frame == "lib/x.py:f"

    def test_same_kind_and_frame_share_signature(self):
        entry = {"status": "failed", "diagnostic": {"traceback": _TRACEBACK}}
        content = json.dumps([dict(entry, id="a"), dict(entry, id="b")])
        a, b = parse_json_report(content, "r.json", "/repo")
        assert a.diagnostic.error_signature == b.diagnostic.error_signature != ""

    def test_entry_without_id_is_unavailable(self):
        with pytest.raises(ReportUnavailable):
            parse_json_report(json.dumps([{"status": "passed"}]), "r.json")

    def test_unknown_status_is_unavailable(self):
        with pytest.raises(ReportUnavailable, match="unknown status"):
            parse_json_report(json.dumps([{"id": "a", "status": "flaky"}]), "r.json")

    def test_invalid_json_is_unavailable(self):
        with pytest.raises(ReportUnavailable, match="invalid JSON"):
            parse_json_report("{not json", "r.json")

    def test_missing_tests_list_is_unavailable(self):
        with pytest.raises(ReportUnavailable):
            parse_json_report(json.dumps({"summary": {}}), "r.json")

    def test_non_string_feature_area_coerced(self):
        outcome = parse_json_report(json.dumps({"tests": [
            {"id": "t1", "status": "failed", "feature_area": 7},
        ]}), "r.json")[0]
        assert outcome.diagnostic.feature_area == "7"

    def test_crash_that_is_not_an_object(self):
        outcome = parse_json_report(json.dumps({"tests": [
            {"id": "t1", "status": "failed", "call": {"outcome": "failed", "crash": "boom"}},
        ]}), "r.json")[0]
        assert outcome.failed
        assert outcome.diagnostic.message == "boom"

    def test_entry_that_cannot_be_built_is_unavailable(self, tmp_path):
        path = _write(tmp_path, "r.json", json.dumps({"tests": [{"id": "t1", "status": "failed"}]}))
        with patch("repair_orchestrator.parser.report_parser.build_diagnostic",
                   side_effect=AttributeError("'str' object has no attribute 'get'")):
            with pytest.raises(ReportUnavailable, match="malformed test entry"):
                parse_report(path)


# ---------------------------------------------------------------------------
# 4. JUnit reports
# ---------------------------------------------------------------------------
_JUNIT = """<?xml version="1.0" encoding="utf-8"?>
<testsuites>
  <testsuite name="pytest">
    <testcase classname="tests.test_api.TestLogin" name="test_ok" file="tests/test_api.py" line="10"/>
    <testcase classname="tests.test_api.TestLogin" name="test_bad" file="tests/test_api.py" line="20">
      <properties>
        <property name="fixture" value="team-seed"/>
        <property name="feature_area" value="auth"/>
      </properties>
      <failure message="KeyError: 'team'" type="KeyError">{traceback}</failure>
    </testcase>
    <testcase classname="tests.test_misc" name="test_skip">
      <skipped message="later"/>
    </testcase>
    <testcase classname="tests.test_misc" name="test_boom">
      <error message="fixture 'db' not found"/>
    </testcase>
  </testsuite>
</testsuites>
""".replace("{traceback}", _TRACEBACK.replace("\"", "&quot;"))


class TestJunitReports:

    def test_ids_and_statuses(self):
        outcomes = parse_junit_report(_JUNIT, "r.xml", "/repo")
        assert [o.test_id for o in outcomes] == [
            "tests/test_api.py::TestLogin::test_ok",
            "tests/test_api.py::TestLogin::test_bad",
            "tests.test_misc::test_skip",
            "tests.test_misc::test_boom",
        ]
        assert [o.status for o in outcomes] == [STATUS_PASS, STATUS_FAIL, STATUS_SKIPPED, STATUS_FAIL]

    def test_properties_become_hints(self):
        bad = parse_junit_report(_JUNIT, "r.xml", "/repo")[1]
        assert bad.diagnostic.resources == ("team-seed",)
        assert bad.diagnostic.feature_area == "auth"
        assert bad.diagnostic.error_kind == "KeyError"
        assert bad.diagnostic.top_frame == "app/db.py:seed"

    def test_error_element_counts_as_failure(self):
        boom = parse_junit_report(_JUNIT, "r.xml")[3]
        assert boom.failed
        assert boom.diagnostic.resources == ("db",)

    def test_invalid_xml_is_unavailable(self):
        with pytest.raises(ReportUnavailable, match="invalid JUnit XML"):
            parse_junit_report("<testsuites><testcase>", "r.xml")

    def test_unexpected_root_is_unavailable(self):
        with pytest.raises(ReportUnavailable, match="unexpected root"):
            parse_junit_report("<html/>", "r.xml")


# ---------------------------------------------------------------------------
# 5. parse_report file handling
# ---------------------------------------------------------------------------
class TestParseReport:

    def test_missing_file(self, tmp_path):
        with pytest.raises(ReportUnavailable, match="file not found"):
            parse_report(str(tmp_path / "nope.json"))

    def test_empty_file(self, tmp_path):
        path = _write(tmp_path, "r.json", "   \n")
        with pytest.raises(ReportUnavailable, match="empty report"):
            parse_report(path)

    def test_format_by_suffix(self, tmp_path):
        path = _write(tmp_path, "r.xml", _JUNIT)
        assert len(parse_report(path, "/repo")) == 4

    def test_format_by_sniffing(self, tmp_path):
        path = _write(tmp_path, "report.out", _JUNIT)
        assert len(parse_report(path)) == 4

    def test_failing_duplicate_wins(self, tmp_path):
        path = _write(tmp_path, "r.json", json.dumps([
            {"id": "a", "status": "passed"},
            {"id": "b", "status": "failed"},
            {"id": "a", "status": "failed", "message": "flaky rerun"},
        ]))
        outcomes = parse_report(path)
        assert [o.test_id for o in outcomes] == ["a", "b"]
        assert outcomes[0].failed
        assert outcomes[0].diagnostic.message == "flaky rerun"

    def test_duplicates_keep_first(self, tmp_path):
        path = _write(tmp_path, "r.json", json.dumps([
            {"id": "a", "status": "failed"},
            {"id": "a", "status": "passed"},
        ]))
        outcomes = parse_report(path)
        assert len(outcomes) == 1
        assert outcomes[0].status == STATUS_FAIL

    def test_parsing_is_deterministic(self, tmp_path):
        path = _write(tmp_path, "r.xml", _JUNIT)
        assert parse_report(path, "/repo") == parse_report(path, "/repo")
