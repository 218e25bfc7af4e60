"""
Shared pytest fixtures for automation hub tests.

This module provides:
- FakeRunner: a controllable local runner that blocks until released
- FakeConnection: an in-memory agent/observer connection
- Scheduler fixtures backed by the in-memory record store
"""
import asyncio
import json
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import pytest

from automation_hub.agents.protocol import encode, register
from automation_hub.models import AgentInfo, RunResult, Step, TestCase
from automation_hub.runners import BaseRunner
from automation_hub.scheduler import Scheduler
from automation_hub.storage import InMemoryRecordStore


class FakeRunner(BaseRunner):
    """Runner whose executions finish only when released (unless auto_complete)."""

    def __init__(self, auto_complete: bool = False, result: Optional[RunResult] = None):
        super().__init__(name="Fake", description="Test runner")
        self.auto_complete = auto_complete
        self.result = result or RunResult(status="success", report_path="/var/reports/out/report.html")
        self.started: List[str] = []
        self.cases: Dict[str, TestCase] = {}
        self.cancelled: List[str] = []
        self.running: set = set()
        self.max_active = 0
        self._gates: Dict[str, asyncio.Event] = {}

    def _gate(self, execution_id: str) -> asyncio.Event:
        return self._gates.setdefault(execution_id, asyncio.Event())

    def release(self, execution_id: str):
        self._gate(execution_id).set()

    def release_all(self):
        for execution_id in list(self.running):
            self.release(execution_id)

    async def run(self, test_case, execution_id, sink, target_agent_id=None):
        self.started.append(execution_id)
        self.cases[execution_id] = test_case
        self.running.add(execution_id)
        self.max_active = max(self.max_active, len(self.running))
        try:
            await sink.on_patch({"progress": 10})
            await sink.on_log("fake step")
            if not self.auto_complete:
                await self._gate(execution_id).wait()
            if execution_id in self.cancelled:
                return RunResult(status="failed", error_message="Execution cancelled")
            return self.result
        finally:
            self.running.discard(execution_id)

    async def cancel(self, execution_id):
        if execution_id not in self.running:
            return False
        self.cancelled.append(execution_id)
        self.release(execution_id)
        return True


class FakeConnection:
    """Connection that records frames, optionally forwarding them."""

    def __init__(self, connection_id: str, on_send: Optional[Callable[[str], Awaitable[None]]] = None):
        self.connection_id = connection_id
        self.on_send = on_send
        self.sent: List[str] = []
        self.closed: Optional[tuple] = None

    async def send_text(self, data: str) -> None:
        self.sent.append(data)
        if self.on_send is not None:
            await self.on_send(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def messages(self, message_type: Optional[str] = None) -> List[dict]:
        parsed = [json.loads(frame) for frame in self.sent]
        if message_type is None:
            return parsed
        return [m for m in parsed if m["type"] == message_type]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll an (optionally async) predicate until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        value = predicate()
        if asyncio.iscoroutine(value):
            value = await value
        if value:
            return value
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


async def connect_agent(scheduler: Scheduler, connection_id: str, agent_id: str,
                        platform: str = "ios", device_name: str = "iPhone", status: str = "idle",
                        on_send=None) -> FakeConnection:
    connection = FakeConnection(connection_id, on_send)
    await scheduler.hub.connect(connection)
    info = AgentInfo(id=agent_id, platform=platform, device_name=device_name, status=status)
    await scheduler.hub.handle(connection, encode(register(info)))
    return connection


def make_case(case_id: str = "case-1", name: str = "Login flow", platform: str = "web", steps: int = 2) -> TestCase:
    return TestCase(
        id=case_id,
        name=name,
        platform=platform,
        steps=[Step(id=f"s{i}", action=f"click 'button {i}'") for i in range(steps)],
    )


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
async def make_scheduler(store, runner, tmp_path: Path):
    created = []

    def factory(max_concurrency: int = 5, local_runner: Optional[BaseRunner] = None) -> Scheduler:
        scheduler = Scheduler(
            store,
            max_concurrency=max_concurrency,
            local_runner=local_runner or runner,
            report_dir=tmp_path / "reports"
        )
        created.append(scheduler)
        return scheduler

    yield factory
    runner.release_all()
    for scheduler in created:
        await scheduler.shutdown()


@pytest.fixture
async def scheduler(make_scheduler):
    return make_scheduler()
