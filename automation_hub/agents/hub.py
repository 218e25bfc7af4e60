"""
Agent Hub - handles the message stream of every WebSocket connection
"""
import json
import logging
from pathlib import Path
from typing import Optional

from .connection import DUPLICATE_AGENT_CLOSE_CODE, DUPLICATE_AGENT_CLOSE_REASON, Connection
from .dispatcher import RemoteDispatcher
from .protocol import (
    AgentStatus,
    AppendLog,
    Register,
    TaskCompleted,
    UpdateExecution,
    decode_agent_message,
)
from .registry import AgentRegistry
from ..errors import ProtocolError
from ..utils.helpers import normalize_report_path

logger = logging.getLogger(__name__)


class AgentHub:
    """
    Connection-level handler shared by agents and observers.

    A connection starts as an observer that receives broadcast events; a
    REGISTER turns it into an agent. Malformed frames are logged and
    ignored, and messages about executions that are not awaiting a remote
    result are dropped.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        dispatcher: RemoteDispatcher,
        reconciler,
        notifier,
        report_dir: Path
    ):
        self.registry = registry
        self.dispatcher = dispatcher
        self.reconciler = reconciler
        self.notifier = notifier
        self.report_dir = Path(report_dir)

    async def connect(self, connection: Connection):
        self.dispatcher.attach(connection)

        async def deliver(message):
            await connection.send_text(json.dumps(message, ensure_ascii=False))

        self.notifier.subscribe(connection.connection_id, deliver)

    async def disconnect(self, connection: Connection):
        self.notifier.unsubscribe(connection.connection_id)
        self.registry.unregister(connection.connection_id)
        self.dispatcher.connection_lost(connection.connection_id)

    async def handle(self, connection: Connection, raw) -> bool:
        """
        Process one frame. Returns False when the frame was ignored.
        """
        try:
            message = decode_agent_message(raw)
        except ProtocolError as e:
            logger.warning(f"Ignoring frame from {connection.connection_id}: {e}")
            return False

        if isinstance(message, Register):
            await self._register(connection, message)
            return True
        if isinstance(message, AgentStatus):
            return self.registry.set_status(connection.connection_id, message.payload.status) is not None

        execution_id = message.payload.execution_id
        if not self.dispatcher.has_pending(execution_id):
            logger.info(f"Ignoring {message.type} for unknown execution {execution_id}")
            return False

        if isinstance(message, UpdateExecution):
            await self.reconciler.apply_patch(execution_id, message.payload.patch.as_patch())
        elif isinstance(message, AppendLog):
            await self.reconciler.append_log(execution_id, message.payload.log)
        elif isinstance(message, TaskCompleted):
            await self._complete(message)
        return True

    async def _register(self, connection: Connection, message: Register):
        result = self.registry.register(connection.connection_id, message.payload)
        # Agents do not receive observer broadcasts
        self.notifier.unsubscribe(connection.connection_id)

        if result.evicted_connection_id:
            evicted = self.dispatcher.connection(result.evicted_connection_id)
            self.dispatcher.connection_lost(result.evicted_connection_id)
            if evicted is not None:
                try:
                    await evicted.close(DUPLICATE_AGENT_CLOSE_CODE, DUPLICATE_AGENT_CLOSE_REASON)
                except Exception as e:
                    logger.debug(f"Closing evicted connection failed: {e}")

        rebound = self.dispatcher.rebind_agent(result.info.id, connection.connection_id)
        if rebound:
            logger.info(f"Agent {result.info.id} reconnected with in-flight executions: {rebound}")

    async def _complete(self, message: TaskCompleted):
        payload = message.payload
        result = payload.result
        logger.info(f"Received TASK_COMPLETED for {payload.execution_id}: {result.status}")

        if payload.report_content and result.report_path:
            saved = self.save_report(result.report_path, payload.report_content)
            if saved:
                result = result.model_copy(update={"report_path": saved})

        self.dispatcher.complete(payload.execution_id, result)

    def save_report(self, report_path: str, content: str) -> Optional[str]:
        """Write report content under the report directory using its basename."""
        name = normalize_report_path(report_path)
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            logger.warning(f"Refusing to save report with unsafe name: {report_path}")
            return None
        try:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            (self.report_dir / name).write_text(content, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to save report {name}: {e}")
            return None
        return name
