"""
Per-key asyncio mutexes.

Serializes work on a single key (a user, a conversation, a message) while
letting work on unrelated keys run concurrently. Lock objects are
reference-counted and dropped once nobody holds or waits on them, so the
table does not grow with every key ever seen.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Tuple


class KeyedLock:
    """Mutex table keyed by an arbitrary string."""

    def __init__(self, name: str = "keyed") -> None:
        self.name = name
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock, refs = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, refs + 1)
        return lock

    def _checkin(self, key: str) -> None:
        lock, refs = self._locks[key]
        if refs <= 1:
            del self._locks[key]
        else:
            self._locks[key] = (lock, refs - 1)

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        lock = self._checkout(key)
        try:
            async with lock:
                yield
        finally:
            self._checkin(key)

    @asynccontextmanager
    async def acquire_many(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """Acquire several keys in sorted order (deadlock-free across callers)."""
        ordered: List[str] = sorted(set(keys))
        async with AsyncExitStack() as stack:
            for key in ordered:
                await stack.enter_async_context(self.acquire(key))
            yield

    def locked(self, key: str) -> bool:
        entry = self._locks.get(key)
        return bool(entry and entry[0].locked())

    def __len__(self) -> int:
        return len(self._locks)
