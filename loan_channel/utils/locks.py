import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLock:
    """One ``asyncio.Lock`` per key, created on demand.

    Locks are held weakly and disappear once nobody is waiting on them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._lock_for(key)
        async with lock:
            yield

