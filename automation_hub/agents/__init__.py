"""Agents package - remote worker protocol, registry and dispatch"""
from .connection import Connection, WebSocketConnection, next_connection_id
from .dispatcher import PendingDispatch, RemoteDispatcher
from .registry import AgentRegistry, RegistrationResult

__all__ = [
    "Connection",
    "WebSocketConnection",
    "next_connection_id",
    "PendingDispatch",
    "RemoteDispatcher",
    "AgentRegistry",
    "RegistrationResult",
]
