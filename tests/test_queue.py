"""
Tests for ExecutionQueue admission.
"""
import asyncio

import pytest

from automation_hub.models import QueueJob
from automation_hub.scheduler import ExecutionQueue


def job(n: int) -> QueueJob:
    return QueueJob(execution_id=f"exe-{n}", case_id="case")


class GatedWorker:
    def __init__(self):
        self.started = []
        self.active = 0
        self.peak = 0
        self.gates = {}

    def gate(self, execution_id):
        return self.gates.setdefault(execution_id, asyncio.Event())

    async def __call__(self, queue_job: QueueJob):
        self.started.append(queue_job.execution_id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.gate(queue_job.execution_id).wait()
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_bounded_concurrency():
    worker = GatedWorker()
    queue = ExecutionQueue(worker, max_concurrency=2)
    for n in range(6):
        queue.enqueue(job(n))

    await asyncio.sleep(0.01)
    assert queue.running_count == 2
    assert queue.queued_ids() == ["exe-2", "exe-3", "exe-4", "exe-5"]

    worker.gate("exe-0").set()
    await asyncio.sleep(0.01)
    assert worker.started == ["exe-0", "exe-1", "exe-2"]
    assert queue.running_count == 2

    for n in range(6):
        worker.gate(f"exe-{n}").set()
    await asyncio.wait_for(queue.join(), 1)
    assert worker.peak == 2
    assert worker.started == [f"exe-{n}" for n in range(6)]


@pytest.mark.asyncio
async def test_removed_job_never_runs():
    worker = GatedWorker()
    queue = ExecutionQueue(worker, max_concurrency=1)
    queue.enqueue(job(0))
    queue.enqueue(job(1))
    queue.enqueue(job(2))

    assert queue.is_running("exe-0")
    assert queue.remove_queued("exe-1") is True
    assert queue.remove_queued("exe-0") is False

    for n in range(3):
        worker.gate(f"exe-{n}").set()
    await asyncio.wait_for(queue.join(), 1)
    assert worker.started == ["exe-0", "exe-2"]


@pytest.mark.asyncio
async def test_failing_job_reports_and_releases_slot():
    errors = []
    started = []

    async def worker(queue_job):
        started.append(queue_job.execution_id)
        if queue_job.execution_id == "exe-0":
            raise RuntimeError("engine crashed")

    async def on_error(queue_job, error):
        errors.append((queue_job.execution_id, str(error)))

    queue = ExecutionQueue(worker, max_concurrency=1, on_error=on_error)
    queue.enqueue(job(0))
    queue.enqueue(job(1))
    await asyncio.wait_for(queue.join(), 1)

    assert errors == [("exe-0", "engine crashed")]
    assert started == ["exe-0", "exe-1"]
    assert queue.running_count == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_running():
    worker = GatedWorker()
    queue = ExecutionQueue(worker, max_concurrency=1)
    queue.enqueue(job(0))
    queue.enqueue(job(1))
    await asyncio.sleep(0.01)

    await queue.shutdown()
    assert queue.running_count == 0
    assert queue.queued_count == 0
    assert worker.started == ["exe-0"]


def test_concurrency_floor_is_one():
    async def worker(queue_job):
        pass

    assert ExecutionQueue(worker, max_concurrency=0).max_concurrency >= 1
    assert ExecutionQueue(worker, max_concurrency=-3).max_concurrency == 1
