"""
Order Tracking — Per-order mutex registry

Serializes status transitions for the same order inside one process.
Entries are dropped once no task holds or waits on them, so the registry
does not grow with the number of orders ever touched.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class KeyedLock:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def waiters(self, key: str) -> int:
        """Tasks holding or queued on `key`."""
        return self._waiters.get(key, 0)

    def __len__(self) -> int:
        return len(self._locks)
