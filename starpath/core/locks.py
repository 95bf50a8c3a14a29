"""Per-key asyncio locks for serializing reward paths within one worker."""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Tuple


class KeyedLocks:
    """Hand out one asyncio.Lock per key and drop it once nobody holds it."""

    def __init__(self):
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @staticmethod
    def make_key(operation: str, *identifiers) -> str:
        return f"{operation}:{':'.join(str(i) for i in identifiers)}"

    @asynccontextmanager
    async def hold(self, operation: str, *identifiers):
        key = self.make_key(operation, *identifiers)
        lock, waiters = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, waiters + 1)

        try:
            async with lock:
                yield
        finally:
            lock, waiters = self._locks[key]
            if waiters <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, waiters - 1)

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every completion handler in this process
reward_locks = KeyedLocks()
