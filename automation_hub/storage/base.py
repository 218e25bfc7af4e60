"""
Execution Record Store - durable key-value store for test cases and executions
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from ..models import Execution, TestCase


class RecordStore(ABC):
    """
    Abstract record store consumed by the scheduler.

    The scheduler treats the store as the source of truth and re-reads a
    record before merging a patch into it. ``update_*`` must be safe to call
    from several concurrent coroutines.
    """

    # Test cases

    @abstractmethod
    async def get_case(self, case_id: str) -> Optional[TestCase]:
        ...

    @abstractmethod
    async def list_cases(self) -> List[TestCase]:
        ...

    @abstractmethod
    async def save_case(self, case: TestCase) -> TestCase:
        ...

    @abstractmethod
    async def update_case(self, case_id: str, patch: Dict[str, Any]) -> Optional[TestCase]:
        ...

    @abstractmethod
    async def delete_case(self, case_id: str) -> bool:
        """Delete a case and cascade to its executions."""

    def get_case_filename(self, case_id: str) -> Optional[str]:
        return None

    # Executions

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Optional[Execution]:
        ...

    @abstractmethod
    async def list_executions(
        self,
        case_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Execution]:
        """List executions, newest first."""

    @abstractmethod
    async def count_executions(self, case_id: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def save_execution(self, execution: Execution) -> Execution:
        ...

    @abstractmethod
    async def update_execution(self, execution_id: str, patch: Dict[str, Any]) -> Optional[Execution]:
        """Merge ``patch`` into the stored record and bump ``updated_at``."""

    @abstractmethod
    async def generate_execution_id(self, seed_name: str) -> str:
        """Return an execution id that no other caller will receive."""
