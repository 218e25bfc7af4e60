"""
In-memory record store
"""
import asyncio
from typing import Any, Dict, Iterable, List, Optional, Set

from .base import RecordStore
from ..models import Execution, TestCase
from ..utils.helpers import format_stamp, now_ms, sanitize_filename


class InMemoryRecordStore(RecordStore):
    """
    Record store backed by dictionaries.

    All mutations go through a single ``asyncio.Lock`` so a read-modify-write
    never interleaves with another writer.
    """

    def __init__(self):
        self._cases: Dict[str, TestCase] = {}
        self._executions: Dict[str, Execution] = {}
        self._reserved_ids: Set[str] = set()
        self._lock = asyncio.Lock()

    # Persistence hooks, overridden by file-backed stores

    def _persist_case(self, case: TestCase):
        pass

    def _remove_case_file(self, case_id: str):
        pass

    def _persist_execution(self, execution: Execution):
        pass

    def _remove_execution_file(self, execution_id: str):
        pass

    # Test cases

    async def get_case(self, case_id: str) -> Optional[TestCase]:
        case = self._cases.get(case_id)
        return case.model_copy(deep=True) if case else None

    async def list_cases(self) -> List[TestCase]:
        return [c.model_copy(deep=True) for c in self._cases.values()]

    async def save_case(self, case: TestCase) -> TestCase:
        async with self._lock:
            stored = case.model_copy(deep=True)
            self._cases[case.id] = stored
            self._persist_case(stored)
        return stored.model_copy(deep=True)

    async def update_case(self, case_id: str, patch: Dict[str, Any]) -> Optional[TestCase]:
        async with self._lock:
            current = self._cases.get(case_id)
            if current is None:
                return None
            updated = current.model_copy(update=patch, deep=True)
            self._cases[case_id] = updated
            self._persist_case(updated)
        return updated.model_copy(deep=True)

    async def delete_case(self, case_id: str) -> bool:
        async with self._lock:
            if case_id not in self._cases:
                return False
            self._remove_case_file(case_id)
            del self._cases[case_id]
            for exe_id in [e.id for e in self._executions.values() if e.case_id == case_id]:
                self._remove_execution_file(exe_id)
                del self._executions[exe_id]
        return True

    # Executions

    async def get_execution(self, execution_id: str) -> Optional[Execution]:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(
        self,
        case_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Execution]:
        wanted = set(statuses) if statuses is not None else None
        items = [
            e for e in self._executions.values()
            if (case_id is None or e.case_id == case_id)
            and (wanted is None or e.status in wanted)
        ]
        items.sort(key=lambda e: e.created_at, reverse=True)
        end = offset + limit if limit is not None else None
        return [e.model_copy(deep=True) for e in items[offset:end]]

    async def count_executions(self, case_id: Optional[str] = None) -> int:
        if case_id is None:
            return len(self._executions)
        return sum(1 for e in self._executions.values() if e.case_id == case_id)

    async def save_execution(self, execution: Execution) -> Execution:
        async with self._lock:
            stored = execution.model_copy(deep=True)
            self._executions[execution.id] = stored
            self._reserved_ids.discard(execution.id)
            self._persist_execution(stored)
        return stored.model_copy(deep=True)

    async def update_execution(self, execution_id: str, patch: Dict[str, Any]) -> Optional[Execution]:
        async with self._lock:
            current = self._executions.get(execution_id)
            if current is None:
                return None
            updated = current.model_copy(update={**patch, "updated_at": now_ms()}, deep=True)
            self._executions[execution_id] = updated
            self._persist_execution(updated)
        return updated.model_copy(deep=True)

    async def generate_execution_id(self, seed_name: str) -> str:
        async with self._lock:
            base = f"{sanitize_filename(seed_name)}_{format_stamp(now_ms(), with_ms=True)}"
            candidate = base
            suffix = 0
            while candidate in self._executions or candidate in self._reserved_ids:
                suffix += 1
                candidate = f"{base}_{suffix}"
            self._reserved_ids.add(candidate)
        return candidate
