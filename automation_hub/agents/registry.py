"""
Agent Registry - live set of connected remote workers
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..errors import DispatchError
from ..models import AgentInfo

logger = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    """Outcome of a REGISTER: the stored info and the evicted connection, if any."""

    info: AgentInfo
    evicted_connection_id: Optional[str] = None


class AgentRegistry:
    """
    Tracks connected agents as ``connection_id -> AgentInfo`` plus
    ``agent_id -> connection_id``.

    Nothing here is persisted: an agent exists exactly as long as its
    connection. Insertion order is preserved and is the order used by
    :meth:`select`.
    """

    def __init__(self):
        self._by_connection: Dict[str, AgentInfo] = {}
        self._connection_by_agent: Dict[str, str] = {}

    def register(self, connection_id: str, info: AgentInfo) -> RegistrationResult:
        """
        Register an agent on a connection.

        An existing connection holding the same agent id is evicted (the
        caller closes it). A device name that collides with another
        connected agent gets a " (n)" suffix.
        """
        evicted = self._connection_by_agent.get(info.id)
        if evicted is not None and evicted != connection_id:
            logger.info(f"[Register] Duplicate agent id {info.id} detected, evicting {evicted}")
            self._by_connection.pop(evicted, None)
            del self._connection_by_agent[info.id]
        else:
            evicted = None

        # Re-registering on the same connection replaces the previous entry
        previous = self._by_connection.pop(connection_id, None)
        if previous is not None and self._connection_by_agent.get(previous.id) == connection_id:
            del self._connection_by_agent[previous.id]

        taken = {a.device_name for a in self._by_connection.values()}
        name = info.device_name
        suffix = 1
        while name in taken:
            name = f"{info.device_name} ({suffix})"
            suffix += 1
        if name != info.device_name:
            logger.info(f"[Register] Device name collision, renaming '{info.device_name}' to '{name}'")
            info = info.model_copy(update={"device_name": name})

        self._by_connection[connection_id] = info
        self._connection_by_agent[info.id] = connection_id
        logger.info(f"Agent registered: {info.device_name} ({info.platform}) on {connection_id}")
        return RegistrationResult(info=info, evicted_connection_id=evicted)

    def unregister(self, connection_id: str) -> Optional[AgentInfo]:
        info = self._by_connection.pop(connection_id, None)
        if info is None:
            return None
        if self._connection_by_agent.get(info.id) == connection_id:
            del self._connection_by_agent[info.id]
        logger.info(f"Agent disconnected: {info.device_name}")
        return info

    def get(self, connection_id: str) -> Optional[AgentInfo]:
        return self._by_connection.get(connection_id)

    def connection_for(self, agent_id: str) -> Optional[str]:
        return self._connection_by_agent.get(agent_id)

    def set_status(self, connection_id: str, status: str) -> Optional[AgentInfo]:
        info = self._by_connection.get(connection_id)
        if info is None:
            return None
        info = info.model_copy(update={"status": status})
        self._by_connection[connection_id] = info
        return info

    def list(self) -> List[AgentInfo]:
        return list(self._by_connection.values())

    def check_target(self, target_agent_id: str, platform: str) -> Tuple[str, AgentInfo]:
        """Return the connection of a targeted agent, or raise DispatchError."""
        connection_id = self._connection_by_agent.get(target_agent_id)
        info = self._by_connection.get(connection_id) if connection_id else None
        if info is None or info.platform != platform:
            raise DispatchError(f"Target agent not found or not connected: {target_agent_id}")
        return connection_id, info

    def select(self, platform: str, target_agent_id: Optional[str] = None) -> Tuple[str, AgentInfo]:
        """
        Pick the connection for a job.

        1. A targeted agent must be connected with a matching platform,
           otherwise the dispatch fails (no fallback).
        2. Otherwise the first idle agent with a matching platform.
        3. Otherwise the first agent with a matching platform, whatever its
           status; the worker serializes or rejects concurrent tasks itself.

        "First" is registration order, not least-recently-used.
        """
        if target_agent_id:
            return self.check_target(target_agent_id, platform)

        matching = [(cid, a) for cid, a in self._by_connection.items() if a.platform == platform]
        for cid, info in matching:
            if info.status == "idle":
                return cid, info
        if matching:
            return matching[0]
        raise DispatchError(f"No available agent for platform: {platform}")

    def __len__(self):
        return len(self._by_connection)

    def __contains__(self, connection_id: str):
        return connection_id in self._by_connection
