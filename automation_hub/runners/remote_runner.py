"""
Remote Runner - executes mobile test cases on connected agents
"""
from typing import Optional

from .base_runner import BaseRunner, ExecutionSink
from ..agents.dispatcher import RemoteDispatcher
from ..models import RunResult, TestCase


class RemoteRunner(BaseRunner):
    """
    Delegates execution to a remote agent through the dispatcher.

    Unlike local runners, a dispatch failure (no agent, send error) is raised
    as DispatchError instead of being folded into the result.
    """

    def __init__(self, dispatcher: RemoteDispatcher):
        super().__init__(
            name="Remote",
            description="Dispatches test cases to remote agents"
        )
        self.dispatcher = dispatcher

    async def run(
        self,
        test_case: TestCase,
        execution_id: str,
        sink: ExecutionSink,
        target_agent_id: Optional[str] = None
    ) -> RunResult:
        self.log_info(f"Dispatching {execution_id} ({test_case.platform}) to {target_agent_id or 'any agent'}")
        return await self.dispatcher.dispatch(test_case, execution_id, sink, target_agent_id)

    async def cancel(self, execution_id: str) -> bool:
        return await self.dispatcher.cancel(execution_id)
