"""Per-notification async locks.

Serializes read-modify-write sequences on one record within a process.
Cross-process safety comes from conditional store updates.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class RecordLocks:
    """``asyncio.Lock`` keyed by notification id.

    Locks are dropped once no coroutine holds or waits for them, so the map
    does not grow with the number of records ever touched.

    Example:
        async with locks.hold(notification.id):
            current = await store.find_by_id(notification.id)
            await store.update(current.id, changes, expected={"status": current.status})
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, notification_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(notification_id, asyncio.Lock())
        self._waiters[notification_id] = self._waiters.get(notification_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[notification_id] -= 1
            if self._waiters[notification_id] == 0:
                del self._waiters[notification_id]
                del self._locks[notification_id]

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["RecordLocks"]
