from __future__ import annotations

import asyncio
import logging

from ironchat.utils.background import DetachedTaskTracker


def test_spawned_task_runs_and_is_released():
    results = []

    async def work():
        await asyncio.sleep(0)
        results.append("done")

    async def run():
        tracker = DetachedTaskTracker()
        tracker.spawn(work(), name="work")
        assert tracker.pending == 1
        await tracker.drain(timeout=1)
        return tracker.pending

    assert asyncio.run(run()) == 0
    assert results == ["done"]


def test_failing_task_is_logged_not_raised(caplog):
    async def broken():
        raise RuntimeError("extraction exploded")

    async def run():
        tracker = DetachedTaskTracker()
        tracker.spawn(broken(), name="memory-extraction-user-1")
        await tracker.drain(timeout=1)
        return tracker.pending

    with caplog.at_level(logging.ERROR, logger="IronChat"):
        assert asyncio.run(run()) == 0

    assert "memory-extraction-user-1 failed: extraction exploded" in caplog.text


def test_drain_cancels_tasks_past_timeout():
    cancelled = []

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    async def run():
        tracker = DetachedTaskTracker()
        tracker.spawn(slow(), name="slow")
        await asyncio.sleep(0)
        await tracker.drain(timeout=0.01)
        await asyncio.sleep(0)
        return tracker.pending

    assert asyncio.run(run()) == 0
    assert cancelled == [True]


def test_drain_with_nothing_pending_returns_immediately():
    asyncio.run(DetachedTaskTracker().drain(timeout=0))
