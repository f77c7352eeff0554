"""Tests for delayed actions and per-key locks."""

import asyncio
import logging

import pytest

from rezkyoo.services.scheduling import AsyncioScheduler, KeyedLocks, run_action


class TestRunAction:
    """Test running scheduled callbacks."""

    @pytest.mark.asyncio
    async def test_sync_and_async_actions(self):
        """Test that both plain and coroutine callbacks run."""
        ran = []

        async def async_action():
            ran.append("async")

        await run_action(lambda: ran.append("sync"))
        await run_action(async_action)

        assert ran == ["sync", "async"]

    @pytest.mark.asyncio
    async def test_failures_are_logged(self, caplog):
        """Test that a failing action does not raise."""

        def broken():
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR):
            await run_action(broken)

        assert "Scheduled action failed" in caplog.text


class TestAsyncioScheduler:
    """Test the asyncio-backed scheduler."""

    @pytest.mark.asyncio
    async def test_runs_after_delay(self):
        """Test that the action runs once the delay has passed."""
        scheduler = AsyncioScheduler()
        done = asyncio.Event()

        scheduler.schedule(0.01, done.set)

        assert scheduler.pending == 1
        await asyncio.wait_for(done.wait(), timeout=1)


class TestKeyedLocks:
    """Test per-key serialization."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        """Test that holders of one key never overlap."""
        locks = KeyedLocks()
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with locks.hold("call_1"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(3)))

        assert peak == 1

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        """Test that distinct keys do not block each other."""
        locks = KeyedLocks()
        entered = asyncio.Event()

        async def first():
            async with locks.hold("call_1"):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def second():
            async with locks.hold("call_2"):
                entered.set()

        await asyncio.gather(first(), second())

        assert entered.is_set()

    @pytest.mark.asyncio
    async def test_released_keys_are_forgotten(self):
        """Test that locks are dropped once nobody holds or waits for them."""
        locks = KeyedLocks()

        for i in range(1000):
            async with locks.hold(f"call_{i}"):
                assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_waiter_keeps_the_lock_alive(self):
        """Test that a key stays locked for a waiter after the first holder leaves."""
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("batch_1"):
                order.append(f"{name} in")
                await asyncio.sleep(0.01)
                order.append(f"{name} out")

        await asyncio.gather(worker("a"), worker("b"), worker("c"))

        assert order == ["a in", "a out", "b in", "b out", "c in", "c out"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_failure_inside_hold_releases_key(self):
        """Test that an exception in the block still drops the key."""
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("call_1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
