"""
Tests for the scan-and-execute scheduler.
"""

import asyncio

from core.recovery import RecoveryExecutor
from core.warden import Warden
from tests.fakes import P1, P2, P3, FakeLedger, FakeSource, make_pact


def run(coro):
    return asyncio.run(coro)


def build(pacts=None, now=100_000, ledger=None, source=None, interval=60):
    ledger = ledger or FakeLedger()
    source = source or FakeSource(pacts)
    warden = Warden(source, RecoveryExecutor(ledger), interval_seconds=interval, clock=lambda: now)
    return warden, ledger, source


def test_cycle_reports_counts():
    pacts = [
        make_pact(P1, last_check_in=0, interval=1000),        # expired
        make_pact(P2, last_check_in=99_000, interval=5000),   # active
        make_pact(P3, last_check_in=0, interval=0),           # interval unknown
    ]

    async def scenario():
        warden, ledger, _ = build(pacts)
        return await warden.run_cycle(), ledger

    report, ledger = run(scenario())
    assert report.evaluated == 3
    assert report.expired == 1
    assert report.succeeded == 1
    assert report.failed == 0
    assert report.error == ""
    assert ledger.stages_for(P1) == ["simulate", "submit", "confirm"]
    assert ledger.stages_for(P2) == []
    assert ledger.stages_for(P3) == []


def test_query_failure_aborts_cycle_only():
    async def scenario():
        warden, ledger, source = build(source=FakeSource(fail=True))
        first = await warden.run_cycle()
        source.fail = False
        source.pacts = [make_pact(P1, 0, 10)]
        second = await warden.run_cycle()
        return first, second, ledger

    first, second, ledger = run(scenario())
    assert first.aborted
    assert "connection refused" in first.error
    assert first.evaluated == 0
    assert second.error == ""
    assert second.succeeded == 1


def test_recovered_pact_fails_fast_on_next_cycle():
    async def scenario():
        warden, ledger, _ = build([make_pact(P1, 0, 10)])
        first = await warden.run_cycle()
        second = await warden.run_cycle()
        return first, second, ledger

    first, second, ledger = run(scenario())
    assert first.succeeded == 1
    assert second.expired == 1
    assert second.succeeded == 0
    assert second.failed == 1
    assert ledger.stages_for(P1) == ["simulate", "submit", "confirm", "simulate"]


def test_overlapping_cycle_is_skipped():
    async def scenario():
        warden, _, source = build(source=FakeSource([make_pact(P1, 0, 10)], delay=0.1))
        first, second = await asyncio.gather(warden.run_cycle(), warden.run_cycle())
        return first, second, source, warden

    first, second, source, warden = run(scenario())
    assert first is not None
    assert second is None
    assert source.calls == 1
    assert warden.get_status()["skipped_ticks"] == 1


def test_run_forever_runs_immediately_and_stops():
    async def scenario():
        warden, _, source = build([make_pact(P1, 0, 10)], interval=3600)
        task = asyncio.create_task(warden.run_forever())
        await asyncio.sleep(0.05)
        assert warden.is_running
        await warden.stop()
        await task
        return warden, source

    warden, source = run(scenario())
    assert source.calls == 1
    assert not warden.is_running
    assert len(warden.history()) == 1


def test_stop_lets_in_flight_cycle_finish():
    async def scenario():
        source = FakeSource([make_pact(P1, 0, 10)], delay=0.2)
        warden, ledger, _ = build(source=source, interval=3600)
        task = asyncio.create_task(warden.run_forever())
        await asyncio.sleep(0.05)
        assert warden.cycle_in_flight
        await warden.stop()
        await task
        return warden, ledger

    warden, ledger = run(scenario())
    report = warden.last_report()
    assert report is not None
    assert report.succeeded == 1
    assert ledger.stages_for(P1) == ["simulate", "submit", "confirm"]


def test_ticks_during_long_cycle_never_overlap():
    class CountingSource(FakeSource):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.active = 0
            self.max_active = 0

        async def fetch_pacts(self):
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                return await super().fetch_pacts()
            finally:
                self.active -= 1

    async def scenario():
        source = CountingSource([], delay=0.12)
        warden, _, _ = build(source=source, interval=0.03)
        task = asyncio.create_task(warden.run_forever())
        await asyncio.sleep(0.4)
        await warden.stop()
        await task
        return source, warden

    source, warden = run(scenario())
    assert source.max_active == 1
    assert warden.get_status()["skipped_ticks"] >= 1


def test_status_includes_last_cycle():
    async def scenario():
        warden, _, _ = build([make_pact(P1, 0, 10)])
        await warden.run_cycle()
        return warden.get_status()

    status = run(scenario())
    assert status["cycles"] == 1
    assert status["last_cycle"]["succeeded"] == 1
    assert status["executor"]["recovered_total"] == 1
