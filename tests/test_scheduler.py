"""Tests for the periodic scan loops."""

import asyncio

from models.data_models import AlertKind
from alerts.scheduler import AlertScheduler
from utils.errors import StoreUnavailableError


class FakeEngine:
    """Records requested kinds; optionally fails every tick."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def run_tick(self, kinds, now=None):
        self.calls.append(list(kinds))
        if self.fail:
            raise StoreUnavailableError("store down")


def test_loops_and_intervals():
    scheduler = AlertScheduler(FakeEngine(), scan_interval=60, stalled_interval=300)
    assert scheduler.loops["stale/unreviewed"] == ([AlertKind.STALE, AlertKind.UNREVIEWED], 60)
    assert scheduler.loops["stalled"] == ([AlertKind.STALLED], 300)


def test_stalled_interval_defaults_to_scan_interval():
    scheduler = AlertScheduler(FakeEngine(), scan_interval=30)
    assert scheduler.loops["stalled"][1] == 30


def test_run_once_swallows_tick_failure():
    engine = FakeEngine(fail=True)
    scheduler = AlertScheduler(engine)

    asyncio.run(scheduler.run_once("stalled"))

    assert engine.calls == [[AlertKind.STALLED]]


def test_start_runs_both_loops_until_stopped():
    engine = FakeEngine()

    async def scenario():
        scheduler = AlertScheduler(engine, scan_interval=0.01, stalled_interval=0.01)
        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.05)
        await scheduler.stop()
        return scheduler.running

    assert asyncio.run(scenario()) is False
    assert [AlertKind.STALE, AlertKind.UNREVIEWED] in engine.calls
    assert [AlertKind.STALLED] in engine.calls
    assert len(engine.calls) > 2


def test_failing_ticks_keep_loop_alive():
    engine = FakeEngine(fail=True)

    async def scenario():
        scheduler = AlertScheduler(engine, scan_interval=0.01)
        scheduler.start()
        await asyncio.sleep(0.05)
        running = scheduler.running
        await scheduler.stop()
        return running

    assert asyncio.run(scenario()) is True
    assert len(engine.calls) > 2


def test_stop_without_start():
    asyncio.run(AlertScheduler(FakeEngine()).stop())
