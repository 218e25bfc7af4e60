"""
Notifier - best-effort fan-out of state changes to observers
"""
import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from ..config import settings

logger = logging.getLogger(__name__)

EXECUTION_CHANGED = "execution-changed"
TESTCASE_CHANGED = "testcase-changed"
NOTICE = "notice"

Subscriber = Callable[[Dict[str, Any]], Awaitable[None]]


class Notifier:
    """
    Delivers ``{"type": event, "payload": ...}`` to every subscriber.

    Publishing only enqueues the event. A background task delivers events in
    order; sends for one event run concurrently with a per-subscriber time
    limit. A subscriber that raises or times out is dropped; delivery is
    never retried.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.NOTIFY_TIMEOUT_SECONDS
        self._subscribers: Dict[str, Subscriber] = {}
        self._pending: Deque[Dict[str, Any]] = deque()
        self._delivery: Optional[asyncio.Task] = None

    def subscribe(self, key: str, callback: Subscriber):
        self._subscribers[key] = callback

    def unsubscribe(self, key: str):
        self._subscribers.pop(key, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: str, payload: Any):
        if not self._subscribers:
            return
        self._pending.append({"type": event, "payload": payload})
        if self._delivery is None or self._delivery.done():
            self._delivery = asyncio.create_task(self._deliver_pending())

    async def join(self):
        """Wait until every published event has been delivered."""
        while self._delivery is not None and not self._delivery.done():
            await asyncio.shield(self._delivery)

    async def close(self):
        self._pending.clear()
        if self._delivery is not None and not self._delivery.done():
            self._delivery.cancel()
            try:
                await self._delivery
            except asyncio.CancelledError:
                pass
        self._delivery = None

    async def _deliver_pending(self):
        while self._pending:
            await self._deliver(self._pending.popleft())

    async def _deliver(self, message: Dict[str, Any]):
        targets = list(self._subscribers.items())
        if not targets:
            return
        results = await asyncio.gather(
            *(asyncio.wait_for(callback(message), self.timeout) for _, callback in targets),
            return_exceptions=True
        )
        for (key, _), outcome in zip(targets, results):
            if isinstance(outcome, Exception):
                logger.debug(f"Dropping subscriber {key}: {outcome!r}")
                self.unsubscribe(key)
