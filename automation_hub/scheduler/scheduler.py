"""
Scheduler - admission, dispatch and administrative operations
"""
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .notifier import NOTICE, TESTCASE_CHANGED, Notifier
from .queue import ExecutionQueue
from .reconciler import MISSING_RECORD_MESSAGE, ORPHAN_MESSAGE, ExecutionReconciler, RecordSink
from ..agents.dispatcher import RemoteDispatcher
from ..agents.hub import AgentHub
from ..agents.registry import AgentRegistry
from ..config import settings
from ..errors import CaseNotFoundError, DispatchError, ExecutionNotFoundError, SchedulerError
from ..models import ACTIVE_STATUSES, Execution, QueueJob, RunResult, Step, TestCase
from ..runners import BaseRunner, LocalRunner, RemoteRunner
from ..storage import RecordStore
from ..utils.helpers import now_ms

logger = logging.getLogger(__name__)

QUEUE_CANCEL_MESSAGE = "Cancelled"
STOP_ALL_MESSAGE = "Force stopped: all tasks cancelled by administrator"

RETURN_HOME_ACTION = (
    "Open the recent tasks view, clear the current app and return to the home screen "
    "(auto-added by batch execution)"
)
RETURN_HOME_KEYWORDS = ("home", "close", "返回主界面", "回到桌面", "关闭")

_ASSERT_PREFIX = re.compile(r'^(assert|check|断言|检查)\s*[:：]\s*', re.IGNORECASE)
_QUERY_PREFIX = re.compile(r'^(query|ask|查询|询问)\s*[:：]\s*', re.IGNORECASE)


def infer_step(step: Dict[str, Any]) -> Step:
    """Build a Step, deriving its type from an ``assert:``/``query:`` prefix when unset."""
    data = dict(step)
    data.setdefault("id", str(uuid.uuid4()))
    if not data.get("type"):
        action = data.get("action", "")
        if _ASSERT_PREFIX.match(action):
            data["type"] = "assert"
            data["action"] = _ASSERT_PREFIX.sub("", action, count=1)
        elif _QUERY_PREFIX.match(action):
            data["type"] = "query"
            data["action"] = _QUERY_PREFIX.sub("", action, count=1)
        else:
            data["type"] = "action"
    return Step.model_validate(data)


def with_return_home(case: TestCase) -> TestCase:
    """Append a return-to-home step to a mobile case unless it already ends there."""
    if not case.is_mobile:
        return case
    last = case.steps[-1].action.lower() if case.steps else ""
    if any(keyword in last for keyword in RETURN_HOME_KEYWORDS):
        return case
    step = Step(id=str(uuid.uuid4()), type="action", action=RETURN_HOME_ACTION)
    logger.info(f"[Batch] Auto-appended return-home step to case {case.name} ({case.id})")
    return case.model_copy(update={"steps": [*case.steps, step]})


class Scheduler:
    """
    Owns the queue, agent registry, correlation table and runners.

    Web cases run on the local runner; android and ios cases are dispatched
    to remote agents. All state is held by this instance, so several
    schedulers can coexist in one process.
    """

    def __init__(
        self,
        store: RecordStore,
        max_concurrency: Optional[int] = None,
        notifier: Optional[Notifier] = None,
        local_runner: Optional[BaseRunner] = None,
        report_dir: Optional[Path] = None
    ):
        self.store = store
        self.report_dir = Path(report_dir or settings.REPORTS_DIR)
        self.notifier = notifier or Notifier()
        self.reconciler = ExecutionReconciler(store, self.notifier)
        self.registry = AgentRegistry()
        self.dispatcher = RemoteDispatcher(self.registry)
        self.hub = AgentHub(self.registry, self.dispatcher, self.reconciler, self.notifier, self.report_dir)
        self.queue = ExecutionQueue(self._run_job, max_concurrency, on_error=self._record_job_error)

        remote = RemoteRunner(self.dispatcher)
        self.runners: Dict[str, BaseRunner] = {
            "web": local_runner or LocalRunner("web", report_dir=self.report_dir),
            "android": remote,
            "ios": remote,
        }
        # Per-execution case overrides, e.g. batch-appended steps
        self._case_overrides: Dict[str, TestCase] = {}

    # Lifecycle

    async def start(self) -> int:
        """Sweep executions orphaned by a previous process."""
        count = await self.reconciler.recover_orphans()
        if count:
            logger.info(f"[Startup] Reset {count} pending executions from previous session")
        return count

    async def shutdown(self):
        await self.queue.shutdown()
        await self.notifier.close()

    # Submission

    async def submit(self, case_id: str, target_agent_id: Optional[str] = None) -> Execution:
        case = await self.store.get_case(case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        self._check_dispatchable(case, target_agent_id)
        logger.info(f"Executing case: {case.name}, agent: {target_agent_id or 'any'}")
        return await self._create_execution(case, target_agent_id=target_agent_id)

    async def submit_batch(self, case_ids: List[str]) -> Tuple[str, List[Execution]]:
        if not case_ids:
            raise SchedulerError("caseIds must be a non-empty list")
        cases = []
        missing = []
        for case_id in case_ids:
            case = await self.store.get_case(case_id)
            if case is None:
                missing.append(case_id)
            else:
                cases.append(case)
        if missing:
            raise CaseNotFoundError(missing)
        for case in cases:
            self._check_dispatchable(case)

        batch_id = str(uuid.uuid4())
        executions = []
        for case in cases:
            execution = await self._create_execution(
                case,
                batch_id=batch_id,
                run_case=with_return_home(case),
                log_line=f"queued: batch {batch_id}"
            )
            executions.append(execution)
        return batch_id, executions

    async def submit_raw(
        self,
        platform: str,
        steps: List[Dict[str, Any]],
        name: Optional[str] = None,
        description: Optional[str] = None,
        context: Optional[str] = None,
        target_agent_id: Optional[str] = None
    ) -> Execution:
        """Run an ad-hoc case that is saved as ``temp-<uuid>``."""
        if platform not in ("web", "android", "ios"):
            raise SchedulerError("Missing or invalid platform (web, android, ios)")
        if not steps:
            raise SchedulerError("Missing or empty steps array")

        case = TestCase(
            id=f"temp-{uuid.uuid4()}",
            name=name or f"Dynamic Case {now_ms()}",
            description=description or "Dynamic execution from API",
            platform=platform,
            context=context,
            steps=[infer_step(step) for step in steps],
        )
        self._check_dispatchable(case, target_agent_id)
        await self.store.save_case(case)
        return await self._create_execution(
            case,
            target_agent_id=target_agent_id,
            file_name="dynamic-request",
            log_line="queued (dynamic)"
        )

    def _check_dispatchable(self, case: TestCase, target_agent_id: Optional[str] = None):
        """Reject mobile submissions that no connected agent can take."""
        if case.is_mobile:
            self.registry.select(case.platform, target_agent_id)

    async def _create_execution(
        self,
        case: TestCase,
        batch_id: Optional[str] = None,
        target_agent_id: Optional[str] = None,
        run_case: Optional[TestCase] = None,
        file_name: Optional[str] = None,
        log_line: str = "queued"
    ) -> Execution:
        execution_id = await self.store.generate_execution_id(case.name)
        created_at = now_ms()
        execution = Execution(
            id=execution_id,
            case_id=case.id,
            batch_id=batch_id,
            target_agent_id=target_agent_id,
            status="queued",
            progress=0,
            created_at=created_at,
            updated_at=created_at,
            file_name=file_name or self.store.get_case_filename(case.id),
        )
        await self.store.save_execution(execution)
        if run_case is not None and run_case is not case:
            self._case_overrides[execution_id] = run_case

        updated_case = await self.store.update_case(case.id, {"status": "running"})
        if updated_case is not None:
            await self.notifier.publish(TESTCASE_CHANGED, updated_case.to_wire())
        await self.reconciler.notify_execution(execution)
        await self.reconciler.append_log(execution_id, log_line)

        self.queue.enqueue(QueueJob(execution_id=execution_id, case_id=case.id))
        return await self.store.get_execution(execution_id)

    # Queue worker

    async def _run_job(self, job: QueueJob):
        execution_id, case_id = job.execution_id, job.case_id
        override = self._case_overrides.pop(execution_id, None)
        case = await self.store.get_case(case_id)
        execution = await self.store.get_execution(execution_id)

        if case is None or execution is None:
            await self.reconciler.fail(execution_id, MISSING_RECORD_MESSAGE)
            await self.reconciler.append_log(execution_id, "failed: testcase or execution missing")
            return
        if execution.status != "queued":
            logger.info(f"Skipping {execution_id}: already {execution.status}")
            return

        await self.reconciler.mark_running(execution_id)
        await self.reconciler.append_log(execution_id, "started")

        run_case = override or case
        runner = self.runners[run_case.platform]
        sink = RecordSink(self.reconciler, execution_id)
        try:
            result = await runner.run(run_case, execution_id, sink, execution.target_agent_id)
        except DispatchError as e:
            result = RunResult(status="failed", error_message=str(e))

        # A sweep may already have closed the record; its stored status wins
        record = await self.reconciler.finish(execution_id, result) or execution
        final = "done" if record.status == "success" else "error"
        await self.reconciler.refresh_case_status(case_id, final, record.report_path)
        await self.reconciler.append_log(
            execution_id,
            "finished: success" if final == "done" else f"finished: failed ({record.error_message})"
        )

    async def _record_job_error(self, job: QueueJob, error: Exception):
        self._case_overrides.pop(job.execution_id, None)
        await self.reconciler.fail(job.execution_id, str(error) or error.__class__.__name__)
        await self.reconciler.refresh_case_status(job.case_id, "error")
        await self.reconciler.append_log(job.execution_id, f"failed: {error}")

    # Cancellation

    async def _cancel_running(self, execution: Execution) -> bool:
        case = await self.store.get_case(execution.case_id)
        if case is not None:
            return await self.runners[case.platform].cancel(execution.id)
        cancelled = False
        for runner in set(self.runners.values()):
            cancelled = await runner.cancel(execution.id) or cancelled
        return cancelled

    async def stop(self, execution_id: str) -> bool:
        """
        Stop one execution.

        A queued job is removed without ever reaching a runner and marked
        failed/"Cancelled". A running job is cancelled through its runner
        (local abort or remote CANCEL_TASK). Returns False when nothing was
        running under that id.
        """
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)

        if self.queue.remove_queued(execution_id):
            self._case_overrides.pop(execution_id, None)
            await self.reconciler.fail(execution_id, QUEUE_CANCEL_MESSAGE)
            await self.reconciler.append_log(execution_id, "cancelled: removed from queue")
            await self.reconciler.refresh_case_status(execution.case_id, "error")
            return True

        if await self._cancel_running(execution):
            await self.reconciler.append_log(execution_id, "cancel requested")
            return True
        return False

    async def stop_all(self) -> int:
        """
        Stop every queued or running execution.

        Each record is forced to failed before its runner is cancelled, so the
        late result of a runner or remote worker cannot overwrite it.
        """
        active = await self.store.list_executions(statuses=ACTIVE_STATUSES)
        for execution in active:
            await self.reconciler.fail(execution.id, STOP_ALL_MESSAGE)
            if self.queue.remove_queued(execution.id):
                self._case_overrides.pop(execution.id, None)
                await self.reconciler.append_log(execution.id, "force stopped: removed from queue")
            elif await self._cancel_running(execution):
                await self.reconciler.append_log(execution.id, "force stopped: process cancelled")
            else:
                await self.reconciler.append_log(execution.id, "force stopped: process not found, resetting status")
            await self.reconciler.refresh_case_status(execution.case_id, "error")
        return len(active)

    async def reset_orphaned(self) -> int:
        """Force every queued/running record to failed and release orphaned dispatches."""
        count = await self.reconciler.recover_orphans(ORPHAN_MESSAGE)
        released = await self.dispatcher.abandon_orphans(ORPHAN_MESSAGE)
        if released:
            logger.info(f"Released {released} dispatches whose agent disconnected")
        await self.notifier.publish(NOTICE, {"message": f"Force reset {count} stuck executions"})
        return count
