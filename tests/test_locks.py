"""Tests for blobdisk.locks — keyed asyncio locks."""

from __future__ import annotations

import asyncio

import pytest

from blobdisk.locks import KeyedLocks


class TestKeyedLocks:
    def test_same_key_same_lock(self):
        locks = KeyedLocks()
        assert locks.lock_for("a") is locks.lock_for("a")
        assert locks.lock_for("a") is not locks.lock_for("b")

    async def test_hold_serializes(self):
        locks = KeyedLocks()
        order: list[str] = []

        async def worker(tag: str) -> None:
            async with locks.hold("node"):
                order.append(f"{tag}-in")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_locked(self):
        locks = KeyedLocks()
        assert not locks.locked("x")
        async with locks.hold("x"):
            assert locks.locked("x")
        assert not locks.locked("x")

    async def test_hold_timeout(self):
        locks = KeyedLocks()
        await locks.lock_for("x").acquire()
        with pytest.raises(TimeoutError):
            async with locks.hold("x", timeout=0.01):
                pass

    async def test_discard(self):
        locks = KeyedLocks()
        first = locks.lock_for("x")
        locks.discard("x")
        assert locks.lock_for("x") is not first

    async def test_discard_keeps_held_lock(self):
        locks = KeyedLocks()
        held = locks.lock_for("x")
        await held.acquire()
        locks.discard("x")
        assert locks.lock_for("x") is held

    async def test_acquire_returns_held_lock(self):
        locks = KeyedLocks()
        lock = await locks.acquire("x", timeout=0.01)
        assert lock is locks.lock_for("x")
        assert locks.locked("x")
        lock.release()
        assert not locks.locked("x")
