"""Tracked in-process timers for retries and deferred sends."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TimerSet:
    """One pending asyncio task per notification id.

    Arming a timer for an id replaces the previous one, unless the previous
    one is the task doing the arming (a retry re-arming itself). Timers that
    were lost (process restart) are recovered by the periodic sweeps.

    Args:
        name: Label used in log records
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def arm(self, key: str, delay: float, callback: Callable[[], Awaitable[object]]) -> None:
        """Run ``callback`` after ``delay`` seconds."""
        current = asyncio.current_task()
        existing = self._tasks.get(key)
        if existing is not None and existing is not current and not existing.done():
            existing.cancel()

        task = asyncio.create_task(self._run(key, max(delay, 0.0), callback), name=f"{self.name}:{key}")
        self._tasks[key] = task

    def cancel(self, key: str) -> bool:
        """Cancel the timer for ``key``; return True if one was pending."""
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def is_armed(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def wait_idle(self) -> None:
        """Wait until every timer, including ones armed meanwhile, has finished."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every pending timer and wait for the cancellations."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, key: str, delay: float, callback: Callable[[], Awaitable[object]]) -> None:
        try:
            await asyncio.sleep(delay)
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Timer callback failed",
                extra={"timer": self.name, "notification_id": key, "operation": "timers.run"},
            )
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]


__all__ = ["TimerSet"]
