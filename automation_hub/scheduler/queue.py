"""
Execution Queue - FIFO admission with bounded concurrency
"""
import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from ..config import settings
from ..models import QueueJob

logger = logging.getLogger(__name__)

Worker = Callable[[QueueJob], Awaitable[None]]
ErrorHook = Callable[[QueueJob, Exception], Awaitable[None]]


class ExecutionQueue:
    """
    Admits jobs in submission order, at most ``max_concurrency`` at a time.

    Admitted jobs run as independent tasks; a finished job releases its slot
    exactly once and immediately promotes the next queued job. A job that
    raises is reported to ``on_error`` and never stops the queue.
    """

    def __init__(
        self,
        worker: Worker,
        max_concurrency: Optional[int] = None,
        on_error: Optional[ErrorHook] = None
    ):
        self.worker = worker
        self.max_concurrency = max(1, max_concurrency or settings.max_concurrency)
        self.on_error = on_error
        self._queue: Deque[QueueJob] = deque()
        self._queued: Dict[str, QueueJob] = {}
        self._running: Dict[str, asyncio.Task] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def queued_count(self) -> int:
        return len(self._queued)

    def queued_ids(self) -> List[str]:
        return [job.execution_id for job in self._queue if job.execution_id in self._queued]

    def is_queued(self, execution_id: str) -> bool:
        return execution_id in self._queued

    def is_running(self, execution_id: str) -> bool:
        return execution_id in self._running

    def enqueue(self, job: QueueJob):
        self._queue.append(job)
        self._queued[job.execution_id] = job
        self._idle.clear()
        self._pump()

    def remove_queued(self, execution_id: str) -> bool:
        """Drop a job that has not started. False once it is running."""
        job = self._queued.pop(execution_id, None)
        if job is None:
            return False
        self._queue.remove(job)
        self._check_idle()
        return True

    def _pump(self):
        while len(self._running) < self.max_concurrency and self._queue:
            job = self._queue.popleft()
            if self._queued.pop(job.execution_id, None) is None:
                continue
            self._running[job.execution_id] = asyncio.create_task(self._run(job))
        self._check_idle()

    async def _run(self, job: QueueJob):
        try:
            await self.worker(job)
        except Exception as e:
            logger.exception(f"Job {job.execution_id} failed: {e}")
            if self.on_error is not None:
                try:
                    await self.on_error(job, e)
                except Exception as hook_error:
                    logger.error(f"Error hook failed for {job.execution_id}: {hook_error}")
        finally:
            self._running.pop(job.execution_id, None)
            self._pump()

    def _check_idle(self):
        if not self._running and not self._queue:
            self._idle.set()

    async def join(self):
        """Wait until nothing is queued or running."""
        await self._idle.wait()

    async def shutdown(self):
        """Drop queued jobs and cancel running ones."""
        self._queue.clear()
        self._queued.clear()
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._check_idle()
