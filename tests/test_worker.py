"""
Tests for the agent worker, including an in-process loop through the hub.
"""
import json

import pytest

from automation_hub.agents.protocol import encode, execute_task, register
from automation_hub.agents.worker import AgentWorker
from automation_hub.runners import LocalRunner

from conftest import FakeConnection, make_case, wait_until


def worker_for(tmp_path, delay_ms=0, platform="android"):
    runner = LocalRunner(platform, report_dir=tmp_path / "agent-reports", placeholder_delay_ms=delay_ms)
    return AgentWorker(
        server_url="ws://unused",
        platform=platform,
        device_name="Pixel 8",
        agent_id="agent-7",
        runner=runner,
        reconnect_seconds=0,
    )


@pytest.mark.asyncio
async def test_execute_task_reports_back_with_content(tmp_path):
    worker = worker_for(tmp_path)
    sent = []

    async def send(data):
        sent.append(json.loads(data))

    assert await worker.handle_message(encode(execute_task("exe-1", make_case(platform="android"))), send)
    await wait_until(lambda: any(m["type"] == "TASK_COMPLETED" for m in sent))

    types = [m["type"] for m in sent]
    assert types[0] == "AGENT_STATUS"
    assert "UPDATE_EXECUTION" in types
    completed = next(m for m in sent if m["type"] == "TASK_COMPLETED")["payload"]
    assert completed["executionId"] == "exe-1"
    assert completed["result"]["status"] == "success"
    assert completed["result"]["reportPath"] == "exe-1.html"
    assert "placeholder report" in completed["reportContent"]
    assert sent[-1] == {"type": "AGENT_STATUS", "payload": {"status": "idle"}}


@pytest.mark.asyncio
async def test_cancel_task_stops_running_case(tmp_path):
    worker = worker_for(tmp_path, delay_ms=5000)
    sent = []

    async def send(data):
        sent.append(json.loads(data))

    await worker.handle_message(encode(execute_task("exe-2", make_case(platform="android"))), send)
    await wait_until(lambda: worker.runner.is_running("exe-2"))
    await worker.handle_message('{"type":"CANCEL_TASK","payload":{"executionId":"exe-2"}}', send)

    await wait_until(lambda: any(m["type"] == "TASK_COMPLETED" for m in sent))
    completed = next(m for m in sent if m["type"] == "TASK_COMPLETED")["payload"]
    assert completed["result"]["status"] == "failed"
    assert completed["result"]["errorMessage"] == "Execution cancelled"


@pytest.mark.asyncio
async def test_broadcasts_are_ignored(tmp_path):
    worker = worker_for(tmp_path)

    async def send(data):
        raise AssertionError("nothing should be sent")

    assert await worker.handle_message('{"type":"execution-changed","payload":{}}', send) is False
    assert worker.info.device_name == "Pixel 8"
    assert not worker.busy


class FakeSocket:
    """Stand-in for an aiohttp client socket."""

    def __init__(self):
        self.closed = False
        self.sent = []

    async def send_str(self, data):
        self.sent.append(json.loads(data))

    def types(self):
        return [m["type"] for m in self.sent]


@pytest.mark.asyncio
async def test_result_survives_reconnect_mid_task(tmp_path):
    worker = worker_for(tmp_path, delay_ms=200)
    first = FakeSocket()
    await worker.attach(first)
    assert first.types() == ["REGISTER"]

    await worker.handle_message(encode(execute_task("exe-3", make_case(platform="android"))))
    await wait_until(lambda: worker.runner.is_running("exe-3"))

    first.closed = True
    second = FakeSocket()
    await worker.attach(second)
    await wait_until(lambda: "TASK_COMPLETED" in second.types())

    assert "TASK_COMPLETED" not in first.types()
    assert second.types()[0] == "REGISTER"
    completed = next(m for m in second.sent if m["type"] == "TASK_COMPLETED")["payload"]
    assert completed["executionId"] == "exe-3"
    assert completed["result"]["status"] == "success"


@pytest.mark.asyncio
async def test_frames_are_held_while_disconnected(tmp_path):
    worker = worker_for(tmp_path, delay_ms=100)
    first = FakeSocket()
    await worker.attach(first)
    await worker.handle_message(encode(execute_task("exe-4", make_case(platform="android"))))
    await wait_until(lambda: worker.runner.is_running("exe-4"))

    first.closed = True
    await wait_until(lambda: not worker.busy)

    second = FakeSocket()
    await worker.attach(second)
    types = second.types()
    assert types[0] == "REGISTER"
    assert "TASK_COMPLETED" in types
    assert "TASK_COMPLETED" not in first.types()
    assert second.sent[-1] == {"type": "AGENT_STATUS", "payload": {"status": "idle"}}


@pytest.mark.asyncio
async def test_worker_loop_through_hub(scheduler, store, tmp_path):
    """A real worker connected to the hub through in-memory connections."""
    worker = worker_for(tmp_path)
    connection = FakeConnection("conn-w")

    async def to_hub(data):
        await scheduler.hub.handle(connection, data)

    async def to_worker(data):
        await worker.handle_message(data, to_hub)

    connection.on_send = to_worker
    await scheduler.hub.connect(connection)
    await to_hub(encode(register(worker.info)))
    assert scheduler.registry.connection_for("agent-7") == "conn-w"

    await store.save_case(make_case("m", platform="android"))
    execution = await scheduler.submit("m")
    await scheduler.queue.join()

    record = await store.get_execution(execution.id)
    assert record.status == "success"
    assert record.agent_id == "agent-7"
    assert record.agent_name == "Pixel 8"
    assert record.report_path == f"{execution.id}.html"
    assert (tmp_path / "reports" / f"{execution.id}.html").exists()
    assert any("finished: success" in line for line in record.logs)
