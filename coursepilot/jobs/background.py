"""
In-process background task queue.

Side effects that must not delay a response (conversation persistence,
re-indexing, dashboard sync) are submitted here and executed one at a time by
a single worker task. Failures are logged and counted, never raised to the
submitter.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from coursepilot.config import settings
from coursepilot.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class BackgroundTask:
    name: str
    factory: TaskFactory
    context: dict[str, Any] = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.perf_counter)


class BackgroundTaskQueue:
    def __init__(self, maxsize: int = 1000):
        self.maxsize = maxsize
        self._queue: asyncio.Queue[BackgroundTask] | None = None
        self._worker: asyncio.Task | None = None
        self.completed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        self._ensure_worker()
        logger.info("Background task queue started", maxsize=self.maxsize)

    def _ensure_worker(self) -> asyncio.Queue[BackgroundTask]:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        if not self.running:
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="background-task-queue"
            )
        return self._queue

    def submit(self, name: str, factory: TaskFactory, **context: Any) -> bool:
        """
        Enqueue a task without waiting for it.

        Must be called from the event loop. Returns False if the queue is full
        and the task was dropped.
        """
        queue = self._ensure_worker()
        try:
            queue.put_nowait(BackgroundTask(name=name, factory=factory, context=context))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Background queue full, dropping task", task=name, **context)
            return False
        return True

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            task = await self._queue.get()
            try:
                await self._execute(task)
            finally:
                self._queue.task_done()

    async def _execute(self, task: BackgroundTask) -> None:
        started = time.perf_counter()
        try:
            await task.factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed += 1
            logger.error(
                "Background task failed",
                task=task.name,
                error=str(e),
                error_type=type(e).__name__,
                **task.context,
            )
            return

        self.completed += 1
        logger.debug(
            "Background task completed",
            task=task.name,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            queued_ms=round((started - task.submitted_at) * 1000, 2),
            **task.context,
        )

    async def join(self) -> None:
        """Wait until every submitted task has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, timeout: float = 10.0) -> None:
        """Drain pending tasks (bounded by timeout), then stop the worker."""
        if self._worker is None:
            return

        try:
            await asyncio.wait_for(self.join(), timeout=timeout)
        except TimeoutError:
            logger.warning("Background queue did not drain before shutdown", pending=self.pending)

        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.info(
            "Background task queue stopped",
            completed=self.completed,
            failed=self.failed,
            dropped=self.dropped,
        )

    def stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pending": self.pending,
            "completed": self.completed,
            "failed": self.failed,
            "dropped": self.dropped,
        }


# Singleton queue started by the application lifespan
background_queue = BackgroundTaskQueue(maxsize=settings.BACKGROUND_QUEUE_SIZE)
