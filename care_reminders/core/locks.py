"""Per-key asyncio locks used to serialize writes to one entity."""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLocks:
    """
    Hands out one asyncio.Lock per key.

    Locks are dropped once no task holds or waits on them, so the registry
    does not grow with every reminder source ever edited.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        """Acquire the lock for key for the duration of the block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
