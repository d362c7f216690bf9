"""
Unit Tests — Session Store
==========================
Atomic persistence, invariant checks on load, and id validation.
"""
import json
import os
from datetime import datetime, timezone

import pytest

from repair_orchestrator.core.errors import SessionCorrupt, SessionNotFound
from repair_orchestrator.models.attempt import Attempt
from repair_orchestrator.models.session import Session
from repair_orchestrator.services.session_store import (
    SessionStore,
    atomic_write_text,
    validate_session_id,
)


def _attempt(number, start, post, completed=True, reconciled=False):
    return Attempt(
        number=number,
        started_at=datetime.now(timezone.utc),
        start_failing=list(start),
        post_failing=list(post),
        decision="continue" if completed else "",
        completed=completed,
        reconciled=reconciled,
    )


def _session(session_id="s1", attempts=()):
    return Session(
        session_id=session_id,
        mode="unattended",
        concurrency_cap=2,
        retry_budget=5,
        attempts=list(attempts),
    )


@pytest.fixture
def store(tmp_path):
    return SessionStore(str(tmp_path / "sessions"))


class TestPersistence:

    def test_save_then_load(self, store):
        session = _session(attempts=[_attempt(1, ["A", "B"], ["B"]), _attempt(2, ["B"], [])])
        store.save(session)
        loaded = store.load("s1")
        assert loaded.session_id == "s1"
        assert [a.number for a in loaded.attempts] == [1, 2]
        assert loaded.attempts[0].post_failing == ["B"]

    def test_save_touches_updated_at(self, store):
        session = _session()
        before = session.updated_at
        store.save(session)
        assert session.updated_at >= before

    def test_no_temp_file_left(self, store):
        store.save(_session())
        assert os.listdir(store.session_dir) == ["s1.json"]

    def test_exists_delete_and_list(self, store):
        assert store.list_ids() == []
        store.save(_session("b"))
        store.save(_session("a"))
        assert store.exists("a")
        assert store.list_ids() == ["a", "b"]
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.list_ids() == ["b"]


class TestLoadFailures:

    def test_missing(self, store):
        with pytest.raises(SessionNotFound):
            store.load("ghost")

    def test_unparsable_json(self, store):
        os.makedirs(store.session_dir)
        with open(store.path_for("s1"), "w") as f:
            f.write("{ half a document")
        with pytest.raises(SessionCorrupt, match="unreadable"):
            store.load("s1")

    def test_schema_mismatch(self, store):
        os.makedirs(store.session_dir)
        with open(store.path_for("s1"), "w") as f:
            json.dump({"session_id": "s1", "mode": "sideways"}, f)
        with pytest.raises(SessionCorrupt, match="schema"):
            store.load("s1")

    def test_id_mismatch(self, store):
        store.save(_session("other"))
        os.replace(store.path_for("other"), store.path_for("s1"))
        with pytest.raises(SessionCorrupt, match="holds session"):
            store.load("s1")

    def test_non_contiguous_attempts(self, store):
        store.save(_session(attempts=[_attempt(1, ["A"], ["A"]), _attempt(3, ["A"], [])]))
        with pytest.raises(SessionCorrupt, match="contiguous"):
            store.load("s1")

    def test_broken_start_set_chain(self, store):
        store.save(_session(attempts=[_attempt(1, ["A", "B"], ["B"]), _attempt(2, ["C"], [])]))
        with pytest.raises(SessionCorrupt, match="start set"):
            store.load("s1")

    def test_reconciled_attempt_may_break_chain(self, store):
        store.save(_session(attempts=[
            _attempt(1, ["A", "B"], ["B"]),
            _attempt(2, ["C"], [], reconciled=True),
        ]))
        assert len(store.load("s1").attempts) == 2

    def test_incomplete_attempt_only_last(self, store):
        store.save(_session(attempts=[
            _attempt(1, ["A"], [], completed=False),
            _attempt(1, ["A"], ["A"]),
        ]))
        with pytest.raises(SessionCorrupt, match="incomplete attempt"):
            store.load("s1")

    def test_trailing_incomplete_attempt_is_valid(self, store):
        store.save(_session(attempts=[_attempt(1, ["A"], ["A"]), _attempt(2, ["A"], [], completed=False)]))
        loaded = store.load("s1")
        assert loaded.next_attempt_number == 2


class TestHelpers:

    @pytest.mark.parametrize("bad", ["", "../etc", "a/b", ".hidden", "a..b"])
    def test_invalid_ids(self, bad):
        with pytest.raises(ValueError):
            validate_session_id(bad)

    def test_valid_id(self):
        assert validate_session_id("run-2024.01_a") == "run-2024.01_a"

    def test_atomic_write_replaces(self, tmp_path):
        path = str(tmp_path / "nested" / "f.json")
        atomic_write_text(path, "one")
        atomic_write_text(path, "two")
        with open(path) as f:
            assert f.read() == "two"
        assert os.listdir(tmp_path / "nested") == ["f.json"]
