"""
Agent Info Data Model
"""
from typing import Literal

from .test_case import WireModel


AgentPlatform = Literal["ios", "android"]
AgentStatus = Literal["idle", "busy"]


class AgentInfo(WireModel):
    """Capabilities advertised by a connected remote worker."""

    id: str
    platform: AgentPlatform
    device_name: str
    status: AgentStatus = "idle"
