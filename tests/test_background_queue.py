"""
Tests for the bounded in-process background queue
"""
import asyncio

import pytest

from jobs.background_queue import BackgroundQueue


@pytest.mark.asyncio
async def test_never_runs_more_than_concurrency_jobs():
    """Seven jobs on a queue of three: at most three run at once and all finish."""
    queue = BackgroundQueue(concurrency=3)
    running = 0
    peak = 0
    finished = []

    def make_job(n):
        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            finished.append(n)
        return job

    for n in range(7):
        queue.submit(make_job(n))

    assert queue.running == 3
    assert queue.pending == 4

    await queue.join()

    assert peak == 3
    assert sorted(finished) == list(range(7))
    assert queue.running == 0
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_failing_job_does_not_stop_the_queue():
    errors = []
    queue = BackgroundQueue(concurrency=1, on_error=errors.append)
    done = []

    async def boom():
        raise RuntimeError("provider unavailable")

    async def ok():
        done.append(True)

    queue.submit(boom)
    queue.submit(ok)
    queue.submit(ok)
    await queue.join()

    assert done == [True, True]
    assert len(errors) == 1
    assert isinstance(errors[0], RuntimeError)


@pytest.mark.asyncio
async def test_error_hook_failure_is_contained():
    def bad_hook(error):
        raise ValueError("hook broke")

    queue = BackgroundQueue(concurrency=1, on_error=bad_hook)
    done = []

    async def boom():
        raise RuntimeError("job broke")

    async def ok():
        done.append(True)

    queue.submit(boom)
    queue.submit(ok)
    await queue.join()

    assert done == [True]


@pytest.mark.asyncio
async def test_jobs_start_in_submission_order():
    queue = BackgroundQueue(concurrency=1)
    order = []

    def make_job(n):
        async def job():
            order.append(n)
            await asyncio.sleep(0)
        return job

    for n in range(5):
        queue.submit(make_job(n))
    await queue.join()

    assert order == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_join_on_idle_queue_returns_immediately():
    queue = BackgroundQueue()
    await asyncio.wait_for(queue.join(), timeout=1)


@pytest.mark.asyncio
async def test_multiple_waiters_are_released():
    queue = BackgroundQueue(concurrency=2)

    async def job():
        await asyncio.sleep(0.01)

    queue.submit(job)
    queue.submit(job)
    await asyncio.wait_for(asyncio.gather(queue.join(), queue.join()), timeout=1)


def test_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        BackgroundQueue(concurrency=0)
