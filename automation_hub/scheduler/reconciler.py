"""
Execution Reconciler - status transitions, case projection and recovery
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .notifier import EXECUTION_CHANGED, TESTCASE_CHANGED, Notifier
from ..config import settings
from ..models import ACTIVE_STATUSES, TERMINAL_STATUSES, Execution, RunResult
from ..models.execution import is_regression
from ..storage import RecordStore
from ..utils.helpers import normalize_report_path, now_ms

logger = logging.getLogger(__name__)

ORPHAN_MESSAGE = "Service terminated unexpectedly, status has been reset"
MISSING_RECORD_MESSAGE = "Test case or execution record not found"


class ExecutionReconciler:
    """
    Single entry point for execution and test case state changes.

    Every patch is merged into a freshly re-read record: report paths are
    reduced to their basename, status never moves backwards, and terminal
    records ignore further patches. Each change is published to observers.
    """

    def __init__(self, store: RecordStore, notifier: Notifier, log_limit: Optional[int] = None):
        self.store = store
        self.notifier = notifier
        self.log_limit = log_limit or settings.LOG_MAX_ENTRIES
        self._log_lock = asyncio.Lock()

    async def notify_execution(self, execution: Optional[Execution]):
        if execution is not None:
            await self.notifier.publish(EXECUTION_CHANGED, execution.to_wire())

    async def apply_patch(self, execution_id: str, patch: Dict[str, Any]) -> Optional[Execution]:
        current = await self.store.get_execution(execution_id)
        if current is None:
            return None
        if current.status in TERMINAL_STATUSES:
            logger.debug(f"Ignoring patch for finished execution {execution_id}: {patch}")
            return current

        patch = dict(patch)
        if "report_path" in patch:
            patch["report_path"] = normalize_report_path(patch["report_path"])
        status = patch.get("status")
        if status is not None and is_regression(current.status, status):
            del patch["status"]
        if not patch:
            return current

        updated = await self.store.update_execution(execution_id, patch)
        await self.notify_execution(updated)
        return updated

    async def append_log(self, execution_id: str, line: str) -> Optional[Execution]:
        """Append a timestamped line, keeping only the newest entries."""
        entry = f"{datetime.now(timezone.utc).isoformat()} {line}"
        async with self._log_lock:
            current = await self.store.get_execution(execution_id)
            if current is None:
                return None
            logs = (current.logs or []) + [entry]
            updated = await self.store.update_execution(execution_id, {"logs": logs[-self.log_limit:]})
        await self.notify_execution(updated)
        return updated

    async def mark_running(self, execution_id: str) -> Optional[Execution]:
        return await self.apply_patch(execution_id, {"status": "running", "progress": 0})

    async def finish(self, execution_id: str, result: RunResult) -> Optional[Execution]:
        patch = {"status": result.status, "progress": 100}
        if result.report_path:
            patch["report_path"] = result.report_path
        if result.error_message:
            patch["error_message"] = result.error_message
        return await self.apply_patch(execution_id, patch)

    async def fail(self, execution_id: str, message: str) -> Optional[Execution]:
        return await self.apply_patch(execution_id, {
            "status": "failed",
            "progress": 100,
            "error_message": message,
        })

    async def refresh_case_status(
        self,
        case_id: str,
        last_status: str,
        report_path: Optional[str] = None
    ):
        """
        Project execution state onto the parent test case.

        The case reads ``running`` while any of its executions is queued or
        running; otherwise it takes ``last_status`` (done/error) and records
        the run time and report.
        """
        active = await self.store.list_executions(case_id=case_id, statuses=ACTIVE_STATUSES, limit=1)
        if active:
            patch = {"status": "running"}
        else:
            patch = {"status": last_status, "last_run_at": now_ms()}
            if report_path:
                patch["last_report_path"] = normalize_report_path(report_path)
        updated = await self.store.update_case(case_id, patch)
        if updated is not None:
            await self.notifier.publish(TESTCASE_CHANGED, updated.to_wire())
        return updated

    async def recover_orphans(self, message: str = ORPHAN_MESSAGE) -> int:
        """
        Fail every queued/running execution and reset stuck test cases.

        Returns:
            Number of executions swept; 0 when nothing was pending
        """
        pending = await self.store.list_executions(statuses=ACTIVE_STATUSES)
        if pending:
            logger.info(f"Resetting {len(pending)} pending executions")
        for execution in pending:
            await self.fail(execution.id, message)

        for case in await self.store.list_cases():
            if case.status != "running":
                continue
            active = await self.store.list_executions(case_id=case.id, statuses=ACTIVE_STATUSES, limit=1)
            if not active:
                updated = await self.store.update_case(case.id, {"status": "error"})
                if updated is not None:
                    await self.notifier.publish(TESTCASE_CHANGED, updated.to_wire())
        return len(pending)


class RecordSink:
    """Execution sink that writes through the reconciler."""

    def __init__(self, reconciler: ExecutionReconciler, execution_id: str):
        self.reconciler = reconciler
        self.execution_id = execution_id

    async def on_patch(self, patch: Dict[str, Any]) -> None:
        await self.reconciler.apply_patch(self.execution_id, patch)

    async def on_log(self, line: str) -> None:
        await self.reconciler.append_log(self.execution_id, line)
