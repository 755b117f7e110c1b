"""Tests for the virtual-time and asyncio schedulers."""

import asyncio

import pytest

from lessonbuddy.scheduler import AsyncioScheduler, ManualScheduler


class TestManualScheduler:
    @pytest.mark.asyncio
    async def test_nothing_fires_until_advanced(self, scheduler):
        fired = []
        scheduler.call_later(100, lambda: fired.append("a"))
        assert fired == []

        await scheduler.advance(99)
        assert fired == []
        await scheduler.advance(1)
        assert fired == ["a"]
        assert scheduler.now_ms() == 100

    @pytest.mark.asyncio
    async def test_fires_in_time_order(self, scheduler):
        fired = []
        scheduler.call_later(30, lambda: fired.append(30))
        scheduler.call_later(10, lambda: fired.append(10))
        scheduler.call_later(10, lambda: fired.append("10b"))

        await scheduler.advance(50)
        assert fired == [10, "10b", 30]

    @pytest.mark.asyncio
    async def test_interval_repeats_until_cancelled(self, scheduler):
        ticks = []
        handle = scheduler.call_every(1000, lambda: ticks.append(scheduler.now_ms()))

        await scheduler.advance(3500)
        assert ticks == [1000, 2000, 3000]

        handle.cancel()
        await scheduler.advance(5000)
        assert ticks == [1000, 2000, 3000]
        assert scheduler.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancel_before_due(self, scheduler):
        fired = []
        handle = scheduler.call_later(10, lambda: fired.append(1), name="once")
        assert scheduler.pending_names() == ["once"]

        handle.cancel()
        await scheduler.advance(20)
        assert fired == []
        assert handle.cancelled

    @pytest.mark.asyncio
    async def test_coroutine_callbacks_are_awaited(self, scheduler):
        done = []

        async def work():
            await asyncio.sleep(0)
            done.append(scheduler.now_ms())

        scheduler.call_later(5, work)
        await scheduler.advance(5)
        assert done == [5]

    @pytest.mark.asyncio
    async def test_clock_cannot_go_backwards(self, scheduler):
        with pytest.raises(ValueError):
            await scheduler.advance(-1)

    def test_interval_must_be_positive(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.call_every(0, lambda: None)

    def test_start_time(self):
        assert ManualScheduler(start_ms=500).now_ms() == 500


class TestAsyncioScheduler:
    @pytest.mark.asyncio
    async def test_call_later_runs_on_loop(self):
        scheduler = AsyncioScheduler()
        event = asyncio.Event()
        scheduler.call_later(10, event.set)

        await asyncio.wait_for(event.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancelled_callback_never_runs(self):
        scheduler = AsyncioScheduler()
        fired = []
        handle = scheduler.call_later(10, lambda: fired.append(1))
        handle.cancel()

        await asyncio.sleep(0.05)
        assert fired == []

    @pytest.mark.asyncio
    async def test_coroutine_callbacks_tracked_until_done(self):
        scheduler = AsyncioScheduler()
        done = asyncio.Event()

        async def work():
            await asyncio.sleep(0.01)
            done.set()

        scheduler.call_later(0, work)
        await asyncio.sleep(0.005)
        await scheduler.drain()

        assert done.is_set()
        assert not scheduler._running_tasks

    @pytest.mark.asyncio
    async def test_interval_keeps_firing(self):
        scheduler = AsyncioScheduler()
        ticks = []
        handle = scheduler.call_every(5, lambda: ticks.append(1))

        await asyncio.sleep(0.1)
        handle.cancel()
        count = len(ticks)
        await asyncio.sleep(0.03)

        assert count >= 2
        assert len(ticks) == count
