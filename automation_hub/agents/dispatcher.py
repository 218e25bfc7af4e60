"""
Remote Dispatcher - routes jobs to agents and correlates their results
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .connection import Connection
from .protocol import cancel_task, encode, execute_task
from .registry import AgentRegistry
from ..errors import DispatchError
from ..models import AgentInfo, RunResult, TestCase

logger = logging.getLogger(__name__)


@dataclass
class PendingDispatch:
    """Correlation entry for one in-flight remote execution."""

    execution_id: str
    future: asyncio.Future
    agent: AgentInfo
    connection_id: Optional[str]

    @property
    def orphaned(self) -> bool:
        return self.connection_id is None


class RemoteDispatcher:
    """
    Sends EXECUTE_TASK to a selected agent and suspends until the matching
    TASK_COMPLETED arrives.

    The correlation table maps ``execution_id`` to a one-shot future. An
    entry is consumed exactly once, by :meth:`complete` or :meth:`cancel`.
    There is no protocol-level timeout; callers that want one wrap
    :meth:`dispatch` in ``asyncio.wait_for``.
    """

    def __init__(self, registry: AgentRegistry):
        self.registry = registry
        self._connections: Dict[str, Connection] = {}
        self._pending: Dict[str, PendingDispatch] = {}

    # Connection bookkeeping

    def attach(self, connection: Connection):
        self._connections[connection.connection_id] = connection

    def connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connection_lost(self, connection_id: str) -> List[str]:
        """
        Forget a dropped connection.

        Executions dispatched to it stay pending but lose their transport;
        a TASK_COMPLETED from the same worker on a new connection still
        resolves them, otherwise they wait for stop/reset.
        """
        self._connections.pop(connection_id, None)
        orphaned = []
        for entry in self._pending.values():
            if entry.connection_id == connection_id:
                entry.connection_id = None
                orphaned.append(entry.execution_id)
        if orphaned:
            logger.warning(f"Connection {connection_id} dropped with in-flight executions: {orphaned}")
        return orphaned

    def rebind_agent(self, agent_id: str, connection_id: str) -> List[str]:
        """Move in-flight executions of a re-registered agent onto its new connection."""
        rebound = []
        for entry in self._pending.values():
            if entry.agent.id == agent_id and entry.connection_id != connection_id:
                entry.connection_id = connection_id
                rebound.append(entry.execution_id)
        return rebound

    # Correlation table

    def has_pending(self, execution_id: str) -> bool:
        return execution_id in self._pending

    def pending(self) -> List[PendingDispatch]:
        return list(self._pending.values())

    async def dispatch(
        self,
        test_case: TestCase,
        execution_id: str,
        sink,
        target_agent_id: Optional[str] = None
    ) -> RunResult:
        """
        Run a test case on a remote agent.

        Args:
            test_case: Case to execute; its platform drives selection
            execution_id: Correlation key
            sink: Receives the chosen agent id/name as a patch
            target_agent_id: Restrict dispatch to this agent

        Returns:
            The result carried by TASK_COMPLETED

        Raises:
            DispatchError: no suitable agent, or the send failed
        """
        if execution_id in self._pending:
            raise DispatchError(f"Execution already dispatched: {execution_id}")

        connection_id, agent = self.registry.select(test_case.platform, target_agent_id)
        connection = self._connections.get(connection_id)
        if connection is None:
            raise DispatchError(f"Agent {agent.id} has no open connection")

        future = asyncio.get_running_loop().create_future()
        entry = PendingDispatch(execution_id, future, agent, connection_id)
        self._pending[execution_id] = entry

        try:
            await sink.on_patch({"agent_id": agent.id, "agent_name": agent.device_name})
            await connection.send_text(encode(execute_task(execution_id, test_case)))
        except Exception as e:
            self._discard(entry)
            raise DispatchError(f"Failed to send task to agent {agent.device_name}: {e}") from e

        logger.info(f"Dispatched {execution_id} to {agent.device_name} ({agent.id})")
        try:
            return await future
        finally:
            self._discard(entry)

    def complete(self, execution_id: str, result: RunResult) -> bool:
        """Resolve a pending dispatch. Unknown ids are ignored."""
        entry = self._pending.pop(execution_id, None)
        if entry is None:
            logger.debug(f"Ignoring completion for unknown execution {execution_id}")
            return False
        if not entry.future.done():
            entry.future.set_result(result)
        return True

    async def cancel(self, execution_id: str, message: str = "Execution cancelled") -> bool:
        """
        Cancel a running remote execution.

        CANCEL_TASK is sent best-effort with no acknowledgement; the pending
        dispatch is resolved as failed right away so the caller never waits
        on a worker that ignores the request.
        """
        entry = self._pending.pop(execution_id, None)
        if entry is None:
            return False
        connection = self._connections.get(entry.connection_id) if entry.connection_id else None
        if connection is not None:
            try:
                await connection.send_text(encode(cancel_task(execution_id)))
            except Exception as e:
                logger.warning(f"Failed to send CANCEL_TASK for {execution_id}: {e}")
        if not entry.future.done():
            entry.future.set_result(RunResult(status="failed", error_message=message))
        return True

    async def abandon_orphans(self, message: str) -> int:
        """Resolve every pending dispatch whose connection is gone."""
        orphans = [e.execution_id for e in self._pending.values() if e.orphaned]
        for execution_id in orphans:
            await self.cancel(execution_id, message)
        return len(orphans)

    def _discard(self, entry: PendingDispatch):
        if self._pending.get(entry.execution_id) is entry:
            del self._pending[entry.execution_id]
