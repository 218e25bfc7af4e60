"""
Agent Worker - remote process that executes mobile test cases for the scheduler

Run with ``python -m automation_hub.agents.worker``; configuration comes from
SERVER_URL, AGENT_PLATFORM, AGENT_NAME/AGENT_DEVICE_NAME and AGENT_ID.
"""
import asyncio
import logging
import socket
import uuid
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional

import aiohttp

from .protocol import (
    CancelTask,
    ExecuteTask,
    agent_status,
    append_log,
    decode_server_message,
    encode,
    register,
    task_completed,
    update_execution,
)
from ..config import settings
from ..errors import ProtocolError
from ..models import AgentInfo, RunResult
from ..runners import BaseRunner, LocalRunner

logger = logging.getLogger(__name__)

Send = Callable[[str], Awaitable[None]]

OUTBOX_LIMIT = 500


class ChannelSink:
    """Forwards runner progress to the scheduler as protocol messages."""

    def __init__(self, send: Send, execution_id: str):
        self.send = send
        self.execution_id = execution_id

    async def on_patch(self, patch) -> None:
        await self.send(encode(update_execution(self.execution_id, patch)))

    async def on_log(self, line: str) -> None:
        await self.send(encode(append_log(self.execution_id, line)))


class AgentWorker:
    """
    Connects to the scheduler, registers, and runs the tasks it receives.

    Each EXECUTE_TASK runs as its own task so CANCEL_TASK can be handled
    while a case is in progress. The connection is re-established after
    ``reconnect_seconds`` whenever it drops.
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        platform: Optional[str] = None,
        device_name: Optional[str] = None,
        agent_id: Optional[str] = None,
        runner: Optional[BaseRunner] = None,
        reconnect_seconds: Optional[float] = None
    ):
        self.server_url = server_url or settings.SERVER_URL
        platform = platform or settings.AGENT_PLATFORM
        self.info = AgentInfo(
            id=agent_id or settings.AGENT_ID or f"agent-{uuid.uuid4().hex[:7]}",
            platform=platform,
            device_name=device_name or settings.AGENT_NAME or settings.AGENT_DEVICE_NAME or socket.gethostname(),
        )
        self.runner = runner or LocalRunner(platform)
        self.reconnect_seconds = (
            reconnect_seconds if reconnect_seconds is not None else settings.AGENT_RECONNECT_SECONDS
        )
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stopping = False
        # Live socket of the current session; tasks outlive sessions
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._outbox: Deque[str] = deque(maxlen=OUTBOX_LIMIT)

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    async def run_forever(self):
        logger.info(f"Starting agent {self.info.id} ({self.info.platform}, {self.info.device_name})")
        logger.info(f"Server: {self.server_url}")
        async with aiohttp.ClientSession() as session:
            while not self._stopping:
                try:
                    await self._session(session)
                except aiohttp.ClientError as e:
                    logger.error(f"Connection error: {e}")
                if self._stopping:
                    break
                logger.info(f"Reconnecting in {self.reconnect_seconds}s...")
                await asyncio.sleep(self.reconnect_seconds)

    def stop(self):
        self._stopping = True

    async def send(self, data: str):
        """Send on the current connection, holding frames while disconnected."""
        ws = self._ws
        if ws is None or ws.closed:
            self._outbox.append(data)
            return
        try:
            await ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.warning(f"Send failed, holding frame until reconnect: {e}")
            self._outbox.append(data)

    async def _flush_outbox(self):
        while self._outbox and self._ws is not None and not self._ws.closed:
            await self._ws.send_str(self._outbox.popleft())

    async def attach(self, ws):
        """Make ``ws`` the live connection, register, and deliver held frames."""
        self._ws = ws
        await ws.send_str(encode(register(self.info)))
        await self._flush_outbox()

    async def _session(self, session: aiohttp.ClientSession):
        async with session.ws_connect(self.server_url) as ws:
            logger.info("Connected to server")
            await self.attach(ws)
            try:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        await self.handle_message(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        logger.error(f"WebSocket error: {ws.exception()}")
                        break
            finally:
                if self._ws is ws:
                    self._ws = None
            logger.info(f"Disconnected from server (code {ws.close_code})")

    async def handle_message(self, raw: str, send: Optional[Send] = None) -> bool:
        """
        Handle one frame from the scheduler.

        Returns:
            False when the frame was not a scheduler message (e.g. an
            observer broadcast) and was ignored
        """
        send = send or self.send
        try:
            message = decode_server_message(raw)
        except ProtocolError as e:
            logger.debug(f"Ignoring frame: {e}")
            return False

        if isinstance(message, ExecuteTask):
            execution_id = message.payload.execution_id
            if execution_id in self._tasks:
                logger.warning(f"Task {execution_id} is already running")
                return False
            task = asyncio.create_task(self._execute(message, send))
            self._tasks[execution_id] = task
            task.add_done_callback(lambda _: self._tasks.pop(execution_id, None))
        elif isinstance(message, CancelTask):
            logger.info(f"Cancelling task {message.payload.execution_id}")
            await self.runner.cancel(message.payload.execution_id)
        return True

    async def _execute(self, message: ExecuteTask, send: Send):
        execution_id = message.payload.execution_id
        test_case = message.payload.test_case
        logger.info(f"Executing task {execution_id} for case {test_case.id}")
        await send(encode(agent_status("busy")))

        try:
            result = await self.runner.run(test_case, execution_id, ChannelSink(send, execution_id))
        except Exception as e:
            logger.exception(f"Execution error: {e}")
            result = RunResult(status="failed", error_message=str(e))

        report_content = self._read_report(result.report_path)
        logger.info(f"Task {execution_id} completed. Status: {result.status}. Sending result to server...")
        await send(encode(task_completed(execution_id, result, report_content)))
        if len(self._tasks) <= 1:
            await send(encode(agent_status("idle")))

    def _read_report(self, report_path: Optional[str]) -> Optional[str]:
        report_dir = getattr(self.runner, "report_dir", None)
        if not report_path or report_dir is None:
            return None
        path = report_dir / report_path
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not read report {path}: {e}")
            return None


def main():
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    worker = AgentWorker()
    try:
        asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        logger.info("Agent stopped")


if __name__ == "__main__":
    main()
