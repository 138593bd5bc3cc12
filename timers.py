"""
timers.py
"Schedule a repeating task, get back a cancellation handle" on asyncio.

The engine only depends on `schedule_repeating`; nothing here knows about
Streamlit reruns or any other refresh mechanism.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

Task = Callable[[], Union[None, Awaitable[Any]]]


class RepeatingHandle:
    def __init__(self, name: str, task: asyncio.Task):
        self.name = name
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()
            logger.debug(f"Repeating task '{self.name}' cancelled")


async def _run_once(name: str, fn: Task) -> None:
    try:
        result = fn()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        # One failed run must never kill the schedule
        logger.exception(f"Repeating task '{name}' failed")


def schedule_repeating(
    interval_seconds: float,
    fn: Task,
    *,
    run_immediately: bool = False,
    name: str = "task",
) -> RepeatingHandle:
    """
    Run `fn` every `interval_seconds` on the running loop.

    `fn` may be a plain callable or return an awaitable. A run that is still
    in progress delays the next one instead of overlapping it.
    """
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive")

    async def loop() -> None:
        if run_immediately:
            await _run_once(name, fn)
        while True:
            await asyncio.sleep(interval_seconds)
            await _run_once(name, fn)

    task = asyncio.get_running_loop().create_task(loop(), name=f"repeat:{name}")
    return RepeatingHandle(name, task)
