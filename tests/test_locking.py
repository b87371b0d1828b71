"""
Tests for the per-entity lock registry.
"""

import asyncio
from uuid import uuid4

import pytest

from ledger_recon.services.locking import KeyedLockRegistry


class TestKeyedLockRegistry:
    """Locking per (kind, id) key."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self, locks):
        entity_id = uuid4()
        order = []

        async def worker(name):
            async with locks.hold("transaction", entity_id):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self, locks):
        first = uuid4()
        second = uuid4()

        async with locks.hold("transaction", first):
            assert locks.is_locked("transaction", first)
            assert not locks.is_locked("transaction", second)
            async with locks.hold("transaction", second):
                assert locks.is_locked("transaction", second)

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self):
        locks = KeyedLockRegistry()
        for _ in range(50):
            async with locks.hold("budget", uuid4()):
                pass

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_kept_while_waited_on(self):
        locks = KeyedLockRegistry()
        entity_id = uuid4()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("transaction", entity_id):
                entered.set()
                await release.wait()

        async def waiter():
            async with locks.hold("transaction", entity_id):
                pass

        holding = asyncio.create_task(holder())
        await entered.wait()
        waiting = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        assert len(locks) == 1

        release.set()
        await asyncio.gather(holding, waiting)
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_dropped_after_error(self):
        locks = KeyedLockRegistry()
        with pytest.raises(RuntimeError):
            async with locks.hold("transaction", uuid4()):
                raise RuntimeError("boom")

        assert len(locks) == 0
