"""
Keyed asyncio locks.

One lock per key (trip id, booking id), created on first use. This is the
in-process single-writer point for a trip's seat holds and a booking's state
transitions. It does not replace the database guarantees (unique seat holds,
versioned / status-conditional updates), which still hold across processes.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLock:
    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiters: dict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        self._waiters[key] += 1
        lock = self._locks[key]
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                # Nobody else queued on this key; drop it so the map stays small
                del self._waiters[key]
                self._locks.pop(key, None)
