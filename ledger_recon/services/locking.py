"""
Per-entity critical sections.

Two concurrent requests on the same parent transaction (or the same
budget) must not interleave their read-check-write sequences. Requests
on different entities never wait for each other.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable
from uuid import UUID


class KeyedLockRegistry:
    """
    One asyncio.Lock per (kind, id) key, created on first use.

    A lock is dropped again once no task holds or waits on it, so the
    registry only grows with the number of entities in flight.

    Usage:
        async with locks.hold("transaction", parent_id):
            ...
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, kind: str, entity_id: UUID) -> AsyncIterator[None]:
        key = (kind, entity_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, kind: str, entity_id: UUID) -> bool:
        lock = self._locks.get((kind, entity_id))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
