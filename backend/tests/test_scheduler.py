from __future__ import annotations

import asyncio

import pytest

from pipelines.scheduler import CycleScheduler


def test_overlapping_tick_is_skipped_not_queued():
    async def scenario():
        release = asyncio.Event()
        runs = 0

        async def slow_cycle():
            nonlocal runs
            runs += 1
            await release.wait()

        scheduler = CycleScheduler(slow_cycle, interval_seconds=60)
        assert scheduler.tick() is True
        await asyncio.sleep(0)
        assert scheduler.tick() is False
        assert scheduler.tick() is False
        release.set()
        await scheduler.wait_idle()
        assert scheduler.tick() is True
        await scheduler.wait_idle()
        return scheduler, runs

    scheduler, runs = asyncio.run(scenario())

    assert runs == 2
    assert scheduler.ticks == 4
    assert scheduler.skipped_ticks == 2
    assert scheduler.started_cycles == 2


def test_failed_cycle_does_not_stop_the_loop():
    async def scenario():
        calls = 0

        async def flaky_cycle():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")

        scheduler = CycleScheduler(flaky_cycle, interval_seconds=0.01)
        await scheduler.run_forever(max_ticks=3)
        return scheduler, calls

    scheduler, calls = asyncio.run(scenario())

    assert calls == 3
    assert scheduler.failed_cycles == 1


def test_stop_ends_run_forever():
    async def scenario():
        async def cycle():
            return None

        scheduler = CycleScheduler(cycle, interval_seconds=30)
        task = asyncio.create_task(scheduler.run_forever())
        await asyncio.sleep(0.01)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1)
        return scheduler

    scheduler = asyncio.run(scenario())

    assert scheduler.ticks == 1


def test_interval_must_be_positive():
    async def cycle():
        return None

    with pytest.raises(ValueError):
        CycleScheduler(cycle, interval_seconds=0)


def test_tick_is_skipped_while_a_manual_cycle_runs():
    async def scenario():
        lock = asyncio.Lock()
        release = asyncio.Event()
        runs: list[str] = []

        async def cycle(name):
            async with lock:
                runs.append(name)
                await release.wait()

        scheduler = CycleScheduler(
            lambda: cycle("tick"), interval_seconds=60, is_busy=lock.locked
        )
        manual = asyncio.create_task(cycle("manual"))
        await asyncio.sleep(0)
        started = scheduler.tick()
        release.set()
        await manual
        await scheduler.wait_idle()
        return scheduler, started, runs

    scheduler, started, runs = asyncio.run(scenario())

    assert started is False
    assert runs == ["manual"]
    assert scheduler.skipped_ticks == 1
    assert scheduler.started_cycles == 0
