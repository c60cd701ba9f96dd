"""
Keyed asyncio locks.

One lock per key (expediente id, certificate id), created on demand and
dropped once nobody holds or waits on it.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class KeyedLock:
    """Mutual exclusion per key; different keys never block each other"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
