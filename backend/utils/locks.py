"""
Per-key asyncio locks.

Used to serialize work on one natural key (a registration MAC, a prefix
tree) while unrelated keys proceed in parallel. Entries are dropped once
nobody holds or waits on them, so the table does not grow with every key
ever seen.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Hashable


class KeyedLocks:
    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
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

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: Any) -> bool:
        return key in self._locks
