"""Registry of asyncio locks keyed by name."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


class KeyedLocks:
    """Lazily creates one :class:`asyncio.Lock` per key.

    Used wherever a single caller per storage account or per node must do
    a read-check-write against remote state while others wait.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def discard(self, key: str) -> None:
        """Forget the lock for *key* if nobody holds or waits on it."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    async def acquire(self, key: str, *, timeout: float | None = None) -> asyncio.Lock:
        """Acquire and return the lock for *key*; the caller releases it.

        Raises :class:`TimeoutError` if it cannot be acquired within
        *timeout* seconds.
        """
        lock = self.lock_for(key)
        if timeout is None:
            await lock.acquire()
        else:
            async with asyncio.timeout(timeout):
                await lock.acquire()
        return lock

    @asynccontextmanager
    async def hold(self, key: str, *, timeout: float | None = None) -> AsyncGenerator[None, None]:
        """Hold the lock for *key* for the duration of the block."""
        lock = await self.acquire(key, timeout=timeout)
        try:
            yield
        finally:
            lock.release()
