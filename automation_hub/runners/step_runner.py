"""
Step racing - per-step timeout and cooperative cancellation
"""
import asyncio
from typing import Any, Awaitable, Optional

from ..errors import ExecutionCancelled, StepTimeoutError
from ..utils.helpers import format_duration


async def race_step(
    operation: Awaitable[Any],
    abort: asyncio.Event,
    timeout: Optional[float] = None
) -> Any:
    """
    Run a step against a timer and an abort signal; the first to settle wins.

    Args:
        operation: The step coroutine
        abort: Set when the execution is cancelled
        timeout: Seconds before the step is abandoned

    Returns:
        The step's result

    Raises:
        ExecutionCancelled: abort was set first
        StepTimeoutError: the timer fired first
    """
    step_task = asyncio.ensure_future(operation)
    abort_task = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait(
            {step_task, abort_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED
        )
        if step_task in done:
            return step_task.result()
        if abort_task in done:
            raise ExecutionCancelled()
        raise StepTimeoutError(f"Step timeout ({format_duration(int(timeout * 1000))})")
    finally:
        abort_task.cancel()
        if not step_task.done():
            step_task.cancel()


async def cancellable_sleep(seconds: float, abort: asyncio.Event):
    """Sleep unless aborted first."""
    try:
        await asyncio.wait_for(abort.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise ExecutionCancelled()
