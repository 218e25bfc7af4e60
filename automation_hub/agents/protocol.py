"""
Remote dispatch protocol - messages exchanged with agent workers

Every frame is a JSON object ``{"type": ..., "payload": {...}}`` with
camelCase payload keys.
"""
import json
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ..errors import ProtocolError
from ..models import AgentInfo, RunResult, TestCase, WireModel
from ..models.execution import ExecutionStatus


class ExecutionPatch(WireModel):
    """Partial execution update accepted from a worker."""

    status: Optional[ExecutionStatus] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    report_path: Optional[str] = None
    error_message: Optional[str] = None

    def as_patch(self) -> dict:
        return self.model_dump(exclude_none=True)


# Scheduler -> agent

class ExecuteTaskPayload(WireModel):
    execution_id: str
    test_case: TestCase


class CancelTaskPayload(WireModel):
    execution_id: str


class ExecuteTask(BaseModel):
    type: Literal["EXECUTE_TASK"] = "EXECUTE_TASK"
    payload: ExecuteTaskPayload


class CancelTask(BaseModel):
    type: Literal["CANCEL_TASK"] = "CANCEL_TASK"
    payload: CancelTaskPayload


# Agent -> scheduler

class UpdateExecutionPayload(WireModel):
    execution_id: str
    patch: ExecutionPatch


class AppendLogPayload(WireModel):
    execution_id: str
    log: str


class TaskCompletedPayload(WireModel):
    execution_id: str
    result: RunResult
    report_content: Optional[str] = None


class AgentStatusPayload(WireModel):
    status: Literal["idle", "busy"]


class Register(BaseModel):
    type: Literal["REGISTER"] = "REGISTER"
    payload: AgentInfo


class UpdateExecution(BaseModel):
    type: Literal["UPDATE_EXECUTION"] = "UPDATE_EXECUTION"
    payload: UpdateExecutionPayload


class AppendLog(BaseModel):
    type: Literal["APPEND_LOG"] = "APPEND_LOG"
    payload: AppendLogPayload


class TaskCompleted(BaseModel):
    type: Literal["TASK_COMPLETED"] = "TASK_COMPLETED"
    payload: TaskCompletedPayload


class AgentStatus(BaseModel):
    type: Literal["AGENT_STATUS"] = "AGENT_STATUS"
    payload: AgentStatusPayload


ServerToAgentMessage = Annotated[
    Union[ExecuteTask, CancelTask],
    Field(discriminator="type")
]
AgentToServerMessage = Annotated[
    Union[Register, UpdateExecution, AppendLog, TaskCompleted, AgentStatus],
    Field(discriminator="type")
]

_server_adapter = TypeAdapter(ServerToAgentMessage)
_agent_adapter = TypeAdapter(AgentToServerMessage)


def encode(message: BaseModel) -> str:
    """Serialize a protocol message to a JSON text frame."""
    return message.model_dump_json(by_alias=True, exclude_none=True)


def _decode(adapter: TypeAdapter, raw: Union[str, bytes]):
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid JSON frame: {e}") from e
    if not isinstance(data, dict) or "type" not in data:
        raise ProtocolError("Frame is not a typed message")
    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {data.get('type')} message: {e.error_count()} error(s)") from e


def decode_agent_message(raw: Union[str, bytes]):
    """Parse a frame sent by an agent. Raises ProtocolError."""
    return _decode(_agent_adapter, raw)


def decode_server_message(raw: Union[str, bytes]):
    """Parse a frame sent by the scheduler. Raises ProtocolError."""
    return _decode(_server_adapter, raw)


def execute_task(execution_id: str, test_case: TestCase) -> ExecuteTask:
    return ExecuteTask(payload=ExecuteTaskPayload(execution_id=execution_id, test_case=test_case))


def cancel_task(execution_id: str) -> CancelTask:
    return CancelTask(payload=CancelTaskPayload(execution_id=execution_id))


def register(info: AgentInfo) -> Register:
    return Register(payload=info)


def update_execution(execution_id: str, patch: dict) -> UpdateExecution:
    return UpdateExecution(payload=UpdateExecutionPayload(
        execution_id=execution_id,
        patch=ExecutionPatch.model_validate(patch)
    ))


def append_log(execution_id: str, log: str) -> AppendLog:
    return AppendLog(payload=AppendLogPayload(execution_id=execution_id, log=log))


def task_completed(execution_id: str, result: RunResult, report_content: Optional[str] = None) -> TaskCompleted:
    return TaskCompleted(payload=TaskCompletedPayload(
        execution_id=execution_id,
        result=result,
        report_content=report_content
    ))


def agent_status(status: str) -> AgentStatus:
    return AgentStatus(payload=AgentStatusPayload(status=status))
