"""
Base Runner - Abstract base class for all execution engines
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Protocol
import logging

from ..models import RunResult, TestCase


class ExecutionSink(Protocol):
    """Receives progress patches and log lines from a runner."""

    async def on_patch(self, patch: Dict[str, Any]) -> None:
        ...

    async def on_log(self, line: str) -> None:
        ...


class NullSink:
    """Sink that discards everything."""

    async def on_patch(self, patch: Dict[str, Any]) -> None:
        pass

    async def on_log(self, line: str) -> None:
        pass


class BaseRunner(ABC):
    """
    Abstract base class for runners.
    A runner executes one test case per call and can cancel it by id.
    """

    def __init__(self, name: str, description: str = ""):
        """
        Initialize the base runner.

        Args:
            name: Unique name for the runner
            description: Description of the runner's purpose
        """
        self.name = name
        self.description = description
        self.logger = logging.getLogger(f"runner.{name}")

    @abstractmethod
    async def run(
        self,
        test_case: TestCase,
        execution_id: str,
        sink: ExecutionSink,
        target_agent_id: Optional[str] = None
    ) -> RunResult:
        """
        Execute a test case.

        Args:
            test_case: Case whose steps are executed in order
            execution_id: Id of the execution record being driven
            sink: Receives progress patches and log lines
            target_agent_id: Agent to run on; only meaningful for remote runners

        Returns:
            Terminal result; engine errors are folded into a failed result
        """
        pass

    @abstractmethod
    async def cancel(self, execution_id: str) -> bool:
        """Abort a running execution. Returns False when it is not running here."""
        pass

    def log_info(self, message: str):
        """Log an info message"""
        self.logger.info(f"[{self.name}] {message}")

    def log_error(self, message: str):
        """Log an error message"""
        self.logger.error(f"[{self.name}] {message}")

    def log_debug(self, message: str):
        """Log a debug message"""
        self.logger.debug(f"[{self.name}] {message}")

    def __repr__(self):
        return f"<{self.__class__.__name__}(name='{self.name}')>"
