"""
JSON file record store - one file per test case and per execution
"""
import json
import re
import logging
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from .memory import InMemoryRecordStore
from ..models import Execution, TestCase
from ..utils.helpers import format_stamp, now_ms, sanitize_filename

logger = logging.getLogger(__name__)


class JsonFileRecordStore(InMemoryRecordStore):
    """
    File-backed record store.

    Records are cached in memory and written through to
    ``<data_dir>/testcases`` and ``<data_dir>/executions`` on every change.
    """

    def __init__(self, data_dir: Path):
        super().__init__()
        self.cases_dir = Path(data_dir) / "testcases"
        self.executions_dir = Path(data_dir) / "executions"
        self.cases_dir.mkdir(parents=True, exist_ok=True)
        self.executions_dir.mkdir(parents=True, exist_ok=True)
        self._case_files: Dict[str, str] = {}
        self._load()

    def _load(self):
        """Load all records from disk, skipping unreadable files."""
        for file in sorted(self.cases_dir.glob("*.json")):
            try:
                case = TestCase.model_validate(json.loads(file.read_text(encoding="utf-8")))
            except (OSError, ValueError, ValidationError) as e:
                logger.error(f"Failed to load test case {file.name}: {e}")
                continue
            self._cases[case.id] = case
            self._case_files[case.id] = file.name

        for file in sorted(self.executions_dir.glob("*.json")):
            try:
                execution = Execution.model_validate(json.loads(file.read_text(encoding="utf-8")))
            except (OSError, ValueError, ValidationError) as e:
                logger.error(f"Failed to load execution {file.name}: {e}")
                continue
            self._executions[execution.id] = execution

        logger.info(
            f"Loaded {len(self._cases)} test cases and "
            f"{len(self._executions)} executions from {self.cases_dir.parent}"
        )

    def get_case_filename(self, case_id: str) -> Optional[str]:
        return self._case_files.get(case_id)

    def _case_file_name(self, case: TestCase) -> str:
        return f"{sanitize_filename(case.name)}_{format_stamp(now_ms())}_{case.id[:8]}.json"

    def _persist_case(self, case: TestCase):
        existing = self._case_files.get(case.id)
        file_name = existing
        if existing is None:
            file_name = self._case_file_name(case)
        elif not re.match(rf"{re.escape(sanitize_filename(case.name))}_\d{{8}}_\d{{6}}_", existing):
            # Name changed, keep the file name in step with it
            file_name = self._case_file_name(case)
            old_path = self.cases_dir / existing
            if old_path.exists():
                old_path.rename(self.cases_dir / file_name)
        self._case_files[case.id] = file_name
        self._write(self.cases_dir / file_name, case.to_wire())

    def _remove_case_file(self, case_id: str):
        file_name = self._case_files.pop(case_id, None)
        if file_name:
            (self.cases_dir / file_name).unlink(missing_ok=True)

    def _persist_execution(self, execution: Execution):
        self._write(self.executions_dir / f"{execution.id}.json", execution.to_wire())

    def _remove_execution_file(self, execution_id: str):
        (self.executions_dir / f"{execution_id}.json").unlink(missing_ok=True)

    @staticmethod
    def _write(path: Path, data: dict):
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)
