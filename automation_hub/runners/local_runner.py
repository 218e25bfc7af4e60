"""
Local Runner - executes test cases in-process on the embedded engine
"""
import asyncio
from pathlib import Path
from typing import Callable, Dict, Optional

from .base_runner import BaseRunner, ExecutionSink
from .performer import BrowserStepPerformer, StepPerformer
from .step_runner import cancellable_sleep, race_step
from ..config import settings
from ..errors import ExecutionCancelled
from ..models import RunResult, TestCase
from ..utils.helpers import find_report


PerformerFactory = Callable[[TestCase], StepPerformer]

PLACEHOLDER_REPORT = (
    "<!doctype html><html><head><meta charset=\"utf-8\"><title>Placeholder report</title></head>"
    "<body><h2>{platform} runner: no automation engine configured, placeholder report</h2>"
    "<p>Set AUTOMATION_ENGINE=browser for web cases or install a device performer.</p></body></html>"
)


class LocalRunner(BaseRunner):
    """
    Executes a test case step by step:
    - Progress is reported through the sink before each step
    - Each step races a timeout and the execution's abort signal
    - Device/browser cleanup always runs, even after a timeout
    - On failure the best available report is still attached

    Without a performer the runner writes a placeholder report, which keeps
    the scheduling path exercisable on machines without a browser or device.
    """

    def __init__(
        self,
        platform: str = "web",
        performer_factory: Optional[PerformerFactory] = None,
        report_dir: Optional[Path] = None,
        step_timeout: Optional[float] = None,
        placeholder_delay_ms: Optional[int] = None
    ):
        super().__init__(
            name=f"Local_{platform}",
            description="Executes test cases in-process"
        )
        self.platform = platform
        if performer_factory is None and platform == "web" and settings.AUTOMATION_ENGINE == "browser":
            performer_factory = BrowserStepPerformer
        self.performer_factory = performer_factory
        self.report_dir = Path(report_dir or settings.REPORTS_DIR)
        self.step_timeout = step_timeout if step_timeout is not None else settings.STEP_TIMEOUT_SECONDS
        self.placeholder_delay_ms = (
            placeholder_delay_ms if placeholder_delay_ms is not None else settings.PLACEHOLDER_DELAY_MS
        )
        self._running: Dict[str, asyncio.Event] = {}

    def is_running(self, execution_id: str) -> bool:
        return execution_id in self._running

    async def cancel(self, execution_id: str) -> bool:
        abort = self._running.get(execution_id)
        if abort is None:
            return False
        self.log_info(f"Cancelling {execution_id}")
        abort.set()
        return True

    async def run(
        self,
        test_case: TestCase,
        execution_id: str,
        sink: ExecutionSink,
        target_agent_id: Optional[str] = None
    ) -> RunResult:
        abort = asyncio.Event()
        self._running[execution_id] = abort
        performer: Optional[StepPerformer] = None
        try:
            if self.performer_factory is None:
                return await self._run_placeholder(test_case, execution_id, sink, abort)

            performer = self.performer_factory(test_case)
            await race_step(performer.start(), abort, self.step_timeout)
            await sink.on_patch({"status": "running", "progress": 0})

            total = len(test_case.steps)
            for index, step in enumerate(test_case.steps):
                if abort.is_set():
                    raise ExecutionCancelled()
                await sink.on_patch({"progress": round(index / total * 100)})
                await sink.on_log(f"step {index + 1}/{total}: {step.type or 'action'} - {step.action}")
                await race_step(performer.perform(step), abort, self.step_timeout)

            await sink.on_patch({"progress": 100})
            report = performer.write_report(self.report_dir, execution_id)
            return RunResult(status="success", report_path=report)

        except Exception as e:
            self.log_error(f"Execution {execution_id} failed: {e}")
            report = None
            try:
                if performer is not None:
                    report = performer.write_report(self.report_dir, execution_id)
                else:
                    report = find_report(self.report_dir, execution_id)
            except OSError as report_error:
                self.log_error(f"Failed to resolve report after error: {report_error}")
            return RunResult(status="failed", error_message=str(e) or e.__class__.__name__, report_path=report)

        finally:
            self._running.pop(execution_id, None)
            if performer is not None:
                try:
                    await performer.stop()
                except Exception as e:
                    self.log_error(f"Cleanup failed for {execution_id}: {e}")

    async def _run_placeholder(
        self,
        test_case: TestCase,
        execution_id: str,
        sink: ExecutionSink,
        abort: asyncio.Event
    ) -> RunResult:
        self.log_info(f"No engine for {self.platform}, writing placeholder report for {execution_id}")
        await sink.on_patch({"status": "running", "progress": 50})

        self.report_dir.mkdir(parents=True, exist_ok=True)
        name = f"{execution_id}.html"
        (self.report_dir / name).write_text(
            PLACEHOLDER_REPORT.format(platform=self.platform.capitalize()),
            encoding="utf-8"
        )

        await cancellable_sleep(self.placeholder_delay_ms / 1000, abort)
        await sink.on_patch({"progress": 100})
        return RunResult(status="success", report_path=name)
