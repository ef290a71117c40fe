"""
Unit tests for pollers and timers
"""
import asyncio

import pytest
from unittest.mock import AsyncMock

from marketplace_chat.core.scheduler import Poller, ResettableTimer


@pytest.mark.asyncio
class TestPoller:
    """Tests for the adaptive poller"""

    async def test_runs_immediately_and_repeats(self):
        func = AsyncMock()
        poller = Poller("t", func, interval=0.01)
        poller.start()
        await asyncio.sleep(0.05)
        await poller.stop()
        assert func.await_count >= 2

    async def test_interval_reread_every_cycle(self):
        state = {"interval": 10.0}
        poller = Poller("t", AsyncMock(), interval=lambda: state["interval"])
        assert poller.interval == 10.0
        state["interval"] = 0.5
        assert poller.interval == 0.5

    async def test_poke_refreshes_now(self):
        func = AsyncMock()
        poller = Poller("t", func, interval=60, run_immediately=False)
        poller.start()
        await asyncio.sleep(0)
        assert func.await_count == 0

        poller.poke()
        await asyncio.sleep(0.01)
        assert func.await_count == 1
        await poller.stop()

    async def test_poke_during_tick_runs_another(self):
        gate = asyncio.Event()
        calls = 0

        async def func():
            nonlocal calls
            calls += 1
            if calls == 1:
                await gate.wait()

        poller = Poller("t", func, interval=60)
        poller.start()
        await asyncio.sleep(0)
        assert calls == 1

        poller.poke()
        gate.set()
        await asyncio.sleep(0.01)
        assert calls == 2
        await poller.stop()

    async def test_errors_do_not_stop_the_loop(self):
        func = AsyncMock(side_effect=RuntimeError("down"))
        poller = Poller("t", func, interval=0.01)
        poller.start()
        await asyncio.sleep(0.04)
        assert poller.running
        await poller.stop()
        assert func.await_count >= 2

    async def test_no_calls_after_stop(self):
        func = AsyncMock()
        poller = Poller("t", func, interval=0.01)
        poller.start()
        await asyncio.sleep(0.02)
        await poller.stop()
        count = func.await_count
        await asyncio.sleep(0.03)
        assert func.await_count == count
        assert not poller.running


@pytest.mark.asyncio
class TestResettableTimer:
    """Tests for the one-shot timer"""

    async def test_fires_after_delay(self):
        callback = AsyncMock()
        timer = ResettableTimer("t", 0.02, callback)
        timer.reset()
        assert timer.pending
        await asyncio.sleep(0.04)
        callback.assert_awaited_once()

    async def test_reset_pushes_deadline(self):
        callback = AsyncMock()
        timer = ResettableTimer("t", 0.05, callback)
        timer.reset()
        await asyncio.sleep(0.03)
        timer.reset()
        await asyncio.sleep(0.03)
        callback.assert_not_awaited()
        await asyncio.sleep(0.05)
        callback.assert_awaited_once()

    async def test_cancel(self):
        callback = AsyncMock()
        timer = ResettableTimer("t", 0.01, callback)
        timer.reset()
        timer.cancel()
        await asyncio.sleep(0.03)
        callback.assert_not_awaited()
        assert not timer.pending
