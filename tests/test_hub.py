"""
Tests for AgentHub message handling.
"""
import asyncio
import json

import pytest

from automation_hub.agents.connection import DUPLICATE_AGENT_CLOSE_CODE, DUPLICATE_AGENT_CLOSE_REASON
from automation_hub.scheduler import EXECUTION_CHANGED, TESTCASE_CHANGED, Notifier

from conftest import FakeConnection, connect_agent, make_case, wait_until


def frame(message_type, **payload):
    return json.dumps({"type": message_type, "payload": payload})


async def dispatched(scheduler, store, platform="ios"):
    await store.save_case(make_case("m", platform=platform))
    connection = await connect_agent(scheduler, "conn-a", "agent-a", platform=platform)
    execution = await scheduler.submit("m")
    await wait_until(lambda: connection.messages("EXECUTE_TASK"))
    return connection, execution


@pytest.mark.asyncio
async def test_duplicate_agent_closes_old_connection(scheduler):
    old = await connect_agent(scheduler, "conn-1", "agent-a")
    new = await connect_agent(scheduler, "conn-2", "agent-a")

    assert old.closed == (DUPLICATE_AGENT_CLOSE_CODE, DUPLICATE_AGENT_CLOSE_REASON)
    assert new.closed is None
    assert [a.id for a in scheduler.registry.list()] == ["agent-a"]
    assert scheduler.registry.connection_for("agent-a") == "conn-2"


@pytest.mark.asyncio
async def test_malformed_frames_are_ignored(scheduler):
    connection = FakeConnection("conn-x")
    await scheduler.hub.connect(connection)

    assert await scheduler.hub.handle(connection, "{{{") is False
    assert await scheduler.hub.handle(connection, frame("REGISTER", id="a")) is False
    assert len(scheduler.registry) == 0


@pytest.mark.asyncio
async def test_messages_for_unknown_execution_are_ignored(scheduler, store):
    connection = await connect_agent(scheduler, "conn-a", "agent-a")
    assert await scheduler.hub.handle(connection, frame("APPEND_LOG", executionId="ghost", log="hi")) is False
    assert await scheduler.hub.handle(connection, frame(
        "TASK_COMPLETED", executionId="ghost", result={"status": "success"}
    )) is False
    assert await store.get_execution("ghost") is None


@pytest.mark.asyncio
async def test_update_and_log_are_applied(scheduler, store):
    connection, execution = await dispatched(scheduler, store)

    await scheduler.hub.handle(connection, frame(
        "UPDATE_EXECUTION", executionId=execution.id,
        patch={"progress": 60, "reportPath": "/tmp/deep/dir/r.html"}
    ))
    await scheduler.hub.handle(connection, frame("APPEND_LOG", executionId=execution.id, log="tapped login"))

    record = await store.get_execution(execution.id)
    assert record.progress == 60
    assert record.report_path == "r.html"
    assert record.logs[-1].endswith("tapped login")
    await scheduler.stop(execution.id)


@pytest.mark.asyncio
async def test_status_never_regresses(scheduler, store):
    connection, execution = await dispatched(scheduler, store)
    await scheduler.hub.handle(connection, frame(
        "UPDATE_EXECUTION", executionId=execution.id, patch={"status": "queued", "progress": 5}
    ))
    record = await store.get_execution(execution.id)
    assert record.status == "running"
    assert record.progress == 5
    await scheduler.stop(execution.id)


@pytest.mark.asyncio
async def test_task_completed_saves_report_content(scheduler, store, tmp_path):
    connection, execution = await dispatched(scheduler, store, platform="android")

    await scheduler.hub.handle(connection, frame(
        "TASK_COMPLETED", executionId=execution.id,
        result={"status": "success", "reportPath": "midscene_run/report/run-7.html"},
        reportContent="<html>ok</html>"
    ))
    await scheduler.queue.join()

    saved = tmp_path / "reports" / "run-7.html"
    assert saved.read_text(encoding="utf-8") == "<html>ok</html>"
    record = await store.get_execution(execution.id)
    assert record.status == "success"
    assert record.report_path == "run-7.html"
    assert (await store.get_case("m")).last_report_path == "run-7.html"


@pytest.mark.asyncio
async def test_late_completion_after_reconnect(scheduler, store):
    connection, execution = await dispatched(scheduler, store)
    await scheduler.hub.disconnect(connection)

    again = await connect_agent(scheduler, "conn-b", "agent-a")
    assert scheduler.dispatcher.pending()[0].connection_id == "conn-b"

    await scheduler.hub.handle(again, frame(
        "TASK_COMPLETED", executionId=execution.id, result={"status": "failed", "errorMessage": "device lost"}
    ))
    await scheduler.queue.join()
    record = await store.get_execution(execution.id)
    assert record.status == "failed"
    assert record.error_message == "device lost"


@pytest.mark.asyncio
async def test_agent_status_updates_registry(scheduler):
    connection = await connect_agent(scheduler, "conn-a", "agent-a")
    assert await scheduler.hub.handle(connection, frame("AGENT_STATUS", status="busy")) is True
    assert scheduler.registry.get("conn-a").status == "busy"


@pytest.mark.asyncio
async def test_observers_receive_events_agents_do_not(scheduler, store):
    observer = FakeConnection("conn-obs")
    await scheduler.hub.connect(observer)
    agent_connection = await connect_agent(scheduler, "conn-a", "agent-a")

    await scheduler.notifier.publish(TESTCASE_CHANGED, {"id": "x"})
    await scheduler.notifier.join()
    assert observer.messages(TESTCASE_CHANGED) == [{"type": TESTCASE_CHANGED, "payload": {"id": "x"}}]
    assert agent_connection.messages(TESTCASE_CHANGED) == []

    await scheduler.hub.disconnect(observer)
    assert scheduler.notifier.subscriber_count == 0


@pytest.mark.asyncio
async def test_slow_observer_does_not_block_publish():
    notifier = Notifier(timeout=0.05)
    received = []
    release = asyncio.Event()

    async def slow(message):
        await release.wait()

    async def fast(message):
        received.append(message["type"])

    notifier.subscribe("slow", slow)
    notifier.subscribe("fast", fast)

    await asyncio.wait_for(notifier.publish(TESTCASE_CHANGED, {"id": "a"}), 0.01)
    await asyncio.wait_for(notifier.publish(EXECUTION_CHANGED, {"id": "b"}), 0.01)
    await notifier.join()

    assert received == [TESTCASE_CHANGED, EXECUTION_CHANGED]
    assert notifier.subscriber_count == 1
    await notifier.close()
