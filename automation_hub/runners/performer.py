"""
Step Performers - interpret test steps on a concrete device or browser
"""
import html
import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..browser.controller import BrowserController
from ..models import Step, TestCase


def case_context(test_case: TestCase) -> Dict[str, Any]:
    """Parse the JSON context of a test case, tolerating free text."""
    if not test_case.context:
        return {}
    try:
        parsed = json.loads(test_case.context)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def quoted(text: str) -> Optional[str]:
    """First quoted fragment of a step, if any."""
    match = re.search(r'["“\'‘]([^"”\'’]+)["”\'’]', text)
    return match.group(1) if match else None


class StepPerformer(ABC):
    """
    Drives one device or browser session for one execution.

    The runner calls :meth:`start` once, :meth:`perform` per step and
    :meth:`stop` exactly once, even after a timeout or cancellation.
    """

    def __init__(self, test_case: TestCase):
        self.test_case = test_case
        self.results: List[Dict[str, Any]] = []

    async def start(self):
        pass

    @abstractmethod
    async def perform(self, step: Step) -> Any:
        """Execute one step; raise to fail the execution."""

    async def stop(self):
        pass

    def record(self, step: Step, status: str, detail: Any = None):
        self.results.append({
            "action": step.action,
            "type": step.type or "action",
            "status": status,
            "detail": detail,
        })

    def write_report(self, report_dir: Path, execution_id: str) -> str:
        """Write a step summary as ``<execution_id>.html`` and return its name."""
        rows = "".join(
            f"<tr><td>{i + 1}</td><td>{html.escape(r['type'])}</td>"
            f"<td>{html.escape(r['action'])}</td><td>{html.escape(r['status'])}</td>"
            f"<td>{html.escape(str(r['detail'] or ''))}</td></tr>"
            for i, r in enumerate(self.results)
        )
        name = f"{execution_id}.html"
        report_dir.mkdir(parents=True, exist_ok=True)
        (report_dir / name).write_text(
            "<!doctype html><html><head><meta charset=\"utf-8\">"
            f"<title>{html.escape(self.test_case.name)}</title></head><body>"
            f"<h2>{html.escape(self.test_case.name)}</h2>"
            f"<table border=\"1\"><tr><th>#</th><th>Type</th><th>Step</th><th>Status</th><th>Detail</th></tr>{rows}</table>"
            "</body></html>",
            encoding="utf-8"
        )
        return name


class BrowserStepPerformer(StepPerformer):
    """
    Performs steps in a Playwright browser using rule-based interpretation.

    ``action`` and ``input`` steps are mapped to navigation, clicks, typing,
    key presses and waits; ``query`` returns page text; ``assert`` checks that
    the quoted text of the step is visible on the page.
    """

    def __init__(self, test_case: TestCase, browser: BrowserController = None):
        super().__init__(test_case)
        self.browser = browser or BrowserController()
        self.context = case_context(test_case)

    async def start(self):
        await self.browser.start()
        url = self.context.get("url")
        if url:
            await self.browser.navigate(url)

    async def stop(self):
        await self.browser.stop()

    async def perform(self, step: Step) -> Any:
        step_type = step.type or "action"
        try:
            if step_type == "query":
                detail = await self._query(step)
            elif step_type == "assert":
                detail = await self._assert(step)
            elif step_type == "input":
                detail = await self._input(step)
            else:
                detail = await self._act(step)
        except Exception as e:
            self.record(step, "failed", str(e))
            raise
        self.record(step, "passed", detail)
        return detail

    async def _act(self, step: Step) -> Dict[str, Any]:
        action = self._interpret(step.action)
        kind = action["type"]

        if kind == "navigate":
            await self.browser.navigate(action["url"])
        elif kind == "click":
            await self.browser.click_text(action["text"])
        elif kind == "type":
            await self.browser.type_text(action.get("selector", "input"), action["text"])
        elif kind == "press_key":
            await self.browser.press_key(action["key"])
        elif kind == "wait":
            await self.browser.wait_for_timeout(action["ms"])
        return action

    async def _input(self, step: Step) -> Dict[str, Any]:
        text = quoted(step.action) or step.action
        await self.browser.type_text("input", text)
        return {"type": "type", "text": text}

    async def _query(self, step: Step) -> str:
        title = await self.browser.get_title()
        text = await self.browser.get_text()
        return f"{title}: {text[:500]}"

    async def _assert(self, step: Step) -> str:
        expected = quoted(step.action)
        if not expected:
            return "no quoted text to check"
        text = await self.browser.get_text()
        if expected not in text:
            raise AssertionError(f"Expected text not found on page: {expected}")
        return f"found '{expected}'"

    def _interpret(self, instruction: str) -> Dict[str, Any]:
        """
        Interpret a natural language step into an executable action.

        Args:
            instruction: Step description in natural language

        Returns:
            Action dictionary with type and parameters
        """
        lower = instruction.lower()

        url_match = re.search(r'https?://\S+', instruction)
        if url_match and any(kw in lower for kw in ("open", "go to", "navigate", "visit")):
            return {"type": "navigate", "url": url_match.group(0)}

        if "wait" in lower:
            match = re.search(r'(\d+)\s*(second|sec|s\b|ms|millisecond)', lower)
            ms = 1000
            if match:
                ms = int(match.group(1))
                if not match.group(2).startswith("m"):
                    ms *= 1000
            return {"type": "wait", "ms": ms}

        if "press" in lower:
            match = re.search(r'press\s+(?:the\s+)?(\w+)', lower)
            key = match.group(1).capitalize() if match else "Enter"
            return {"type": "press_key", "key": key}

        target = quoted(instruction)
        if any(kw in lower for kw in ("type", "enter", "input", "fill")) and target:
            return {"type": "type", "selector": "input", "text": target}

        if target:
            return {"type": "click", "text": target}

        match = re.search(r'click\s+(?:on\s+)?(?:the\s+)?(.+)', instruction, re.IGNORECASE)
        if match:
            return {"type": "click", "text": match.group(1).strip().rstrip('.')}

        raise ValueError(f"Cannot interpret step: {instruction}")
