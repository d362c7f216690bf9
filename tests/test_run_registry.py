"""
Unit Tests — Run Registry
=========================
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from repair_orchestrator.services.run_registry import RunRegistry


async def _forever():
    await asyncio.sleep(3600)


async def _boom():
    raise RuntimeError("runner vanished")


def test_launch_and_duplicate_refused():
    async def scenario():
        reg = RunRegistry()
        handle = reg.launch("s1", MagicMock(), _forever())
        assert reg.is_running("s1")
        assert reg.get("s1") is handle

        duplicate = _forever()
        with pytest.raises(RuntimeError, match="already running"):
            reg.launch("s1", MagicMock(), duplicate)
        assert duplicate.cr_frame is None  # closed, never awaited

        assert await reg.cancel("s1") is True
        assert not reg.is_running("s1")
        assert await reg.cancel("s1") is False

    asyncio.run(scenario())


def test_error_exposed_after_failure():
    async def scenario():
        reg = RunRegistry()
        handle = reg.launch("s1", MagicMock(), _boom())
        await asyncio.gather(handle.task, return_exceptions=True)
        assert not handle.running
        assert handle.error == "runner vanished"

    asyncio.run(scenario())


def test_cancel_all_only_counts_live_runs():
    async def scenario():
        reg = RunRegistry()
        reg.launch("a", MagicMock(), _forever())
        done = reg.launch("b", MagicMock(), asyncio.sleep(0))
        await done.task
        return await reg.cancel_all(), reg.session_ids()

    cancelled, remaining = asyncio.run(scenario())
    assert cancelled == ["a"]
    assert remaining == []


def test_finished_handles_pruned_beyond_bound():
    async def scenario():
        reg = RunRegistry(max_finished=2)
        for n in range(5):
            handle = reg.launch(f"run-{n}", MagicMock(), asyncio.sleep(0))
            await handle.task
        reg.launch("live", MagicMock(), _forever())
        ids = reg.session_ids()
        await reg.cancel("live")
        return ids

    ids = asyncio.run(scenario())
    # the two most recent finished runs plus the live one
    assert ids == ["live", "run-3", "run-4"]


def test_relaunch_replaces_finished_handle():
    async def scenario():
        reg = RunRegistry()
        first = reg.launch("s1", MagicMock(), asyncio.sleep(0))
        await first.task
        second = reg.launch("s1", MagicMock(), asyncio.sleep(0))
        await second.task
        return reg.get("s1") is second, reg.session_ids()

    replaced, ids = asyncio.run(scenario())
    assert replaced
    assert ids == ["s1"]
