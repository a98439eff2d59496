import asyncio

import pytest

from coursepilot.jobs.background import BackgroundTaskQueue


@pytest.mark.asyncio
async def test_submitted_tasks_run_in_order():
    queue = BackgroundTaskQueue(maxsize=10)
    ran = []

    async def job(n):
        ran.append(n)

    for n in range(3):
        assert queue.submit("job", lambda n=n: job(n), n=n) is True

    await queue.join()
    await queue.stop()

    assert ran == [0, 1, 2]
    assert queue.completed == 3


@pytest.mark.asyncio
async def test_failures_are_counted_not_raised():
    queue = BackgroundTaskQueue(maxsize=10)
    ran = {"after": False}

    async def boom():
        raise RuntimeError("index unavailable")

    async def after():
        ran["after"] = True

    queue.submit("boom", boom)
    queue.submit("after", after)
    await queue.join()

    assert queue.failed == 1
    assert ran["after"] is True
    await queue.stop()


@pytest.mark.asyncio
async def test_full_queue_drops_task():
    queue = BackgroundTaskQueue(maxsize=1)
    release = asyncio.Event()

    async def blocker():
        await release.wait()

    async def noop():
        return None

    queue.submit("blocker", blocker)
    # Let the worker pick up the blocker so the queue itself is empty
    await asyncio.sleep(0)
    assert queue.submit("second", noop) is True
    assert queue.submit("third", noop) is False
    assert queue.dropped == 1

    release.set()
    await queue.join()
    await queue.stop()
    assert queue.stats()["running"] is False


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    queue = BackgroundTaskQueue()
    await queue.stop()
    assert queue.stats()["pending"] == 0
