"""Models package"""
from .test_case import TestCase, Step, WireModel
from .execution import Execution, RunResult, QueueJob, ACTIVE_STATUSES, TERMINAL_STATUSES
from .agent_info import AgentInfo

__all__ = [
    "TestCase",
    "Step",
    "WireModel",
    "Execution",
    "RunResult",
    "QueueJob",
    "AgentInfo",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]
