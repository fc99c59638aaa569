"""
In-process background queue with a fixed concurrency cap.

Jobs are zero-argument callables returning an awaitable. Submission never
blocks and never reports back; a failing job is logged and dropped so the
queue keeps draining. Nothing is persisted: pending work is lost on restart.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Optional, Set

from config.settings import settings

logger = logging.getLogger(__name__)

JobFn = Callable[[], Awaitable[None]]
ErrorHook = Callable[[BaseException], None]


class BackgroundQueue:
    """FIFO queue that runs at most ``concurrency`` jobs at once on the event loop."""

    def __init__(self, concurrency: int = 3, on_error: Optional[ErrorHook] = None):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.on_error = on_error
        self._running = 0
        self._pending: Deque[JobFn] = deque()
        # Strong references so running tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()
        self._idle: Optional[asyncio.Event] = None

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, job: JobFn) -> None:
        """Enqueue ``job`` and start it right away if a slot is free."""
        self._pending.append(job)
        self._run_next()

    def _run_next(self) -> None:
        while self._running < self.concurrency and self._pending:
            job = self._pending.popleft()
            self._running += 1
            task = asyncio.get_running_loop().create_task(self._execute(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if self._idle is not None and self._running == 0 and not self._pending:
            self._idle.set()
            self._idle = None

    async def _execute(self, job: JobFn) -> None:
        try:
            await job()
        except Exception as e:
            logger.warning(f"Background job failed: {e}", exc_info=True)
            self._report_error(e)
        finally:
            self._running -= 1
            self._run_next()

    def _report_error(self, error: BaseException) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as hook_error:
            logger.warning(f"Background queue error hook failed: {hook_error}")

    async def join(self) -> None:
        """Wait until no job is running or waiting."""
        if self._running == 0 and not self._pending:
            return
        if self._idle is None:
            self._idle = asyncio.Event()
        await self._idle.wait()


# Process-wide queue used by the schedulers and routers
background_queue = BackgroundQueue(settings.background_queue_concurrency)
