"""
Execution Data Model
"""
from typing import List, Literal, Optional
from pydantic import Field

from .test_case import WireModel


ExecutionStatus = Literal["queued", "running", "success", "failed"]

ACTIVE_STATUSES = ("queued", "running")
TERMINAL_STATUSES = ("success", "failed")

_STATUS_ORDER = {"queued": 0, "running": 1, "success": 2, "failed": 2}


def is_regression(current: str, proposed: str) -> bool:
    """True when moving from ``current`` to ``proposed`` goes backwards."""
    if current in TERMINAL_STATUSES:
        return proposed != current
    return _STATUS_ORDER[proposed] < _STATUS_ORDER[current]


class Execution(WireModel):
    """One attempt to run a test case."""

    id: str
    case_id: str
    batch_id: Optional[str] = None
    target_agent_id: Optional[str] = None
    status: ExecutionStatus = "queued"
    progress: int = Field(default=0, ge=0, le=100)
    created_at: int
    updated_at: int
    report_path: Optional[str] = None
    error_message: Optional[str] = None
    file_name: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    logs: Optional[List[str]] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class RunResult(WireModel):
    """Terminal result reported by a runner."""

    status: Literal["success", "failed"]
    report_path: Optional[str] = None
    error_message: Optional[str] = None


class QueueJob(WireModel):
    """Ephemeral admission ticket for an execution."""

    execution_id: str
    case_id: str
