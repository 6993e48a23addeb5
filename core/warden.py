"""
Warden - the scan-and-execute scheduler.

One cycle = fetch snapshot -> scan -> recover expired subset -> report.
Runs once immediately, then every `interval_seconds` until stop().

Overlap guard: a tick that fires while a cycle is still running is skipped,
never run alongside it. Two concurrent cycles could both pick the same Pact
and double-submit.

Nothing raised inside a cycle unwinds past this module.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from .errors import SnapshotQueryError
from .pact import Pact
from .recovery import RecoveryExecutor, RecoveryOutcome
from .rules import WARDEN_RULES
from .scanner import scan

logger = logging.getLogger("warden.scheduler")


class SnapshotSource(Protocol):
    async def fetch_pacts(self) -> list[Pact]: ...


def unix_now() -> int:
    return int(time.time())


@dataclass
class CycleReport:
    """What every cycle reports: evaluated, expired, succeeded, failed."""
    cycle: int
    started_at: float
    finished_at: float = 0.0
    now: int = 0
    evaluated: int = 0
    expired: int = 0
    succeeded: int = 0
    failed: int = 0
    error: str = ""
    outcomes: list[RecoveryOutcome] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return bool(self.error)

    def to_dict(self) -> dict:
        return {
            "cycle": self.cycle,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "now": self.now,
            "evaluated": self.evaluated,
            "expired": self.expired,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "error": self.error,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class Warden:
    """
    Usage:
        warden = Warden(source, executor, interval_seconds=60)
        task = asyncio.create_task(warden.run_forever())
        ...
        await warden.stop()    # lets an in-flight cycle finish
    """

    def __init__(
        self,
        source: SnapshotSource,
        executor: RecoveryExecutor,
        interval_seconds: float = WARDEN_RULES.DEFAULT_SCAN_INTERVAL_SECONDS,
        clock: Callable[[], int] = unix_now,
        history_size: int = WARDEN_RULES.CYCLE_HISTORY_SIZE,
    ):
        self.source = source
        self.executor = executor
        self.interval_seconds = interval_seconds
        self._clock = clock

        self._cycle_lock = asyncio.Lock()
        self._cycle_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_done: Optional[asyncio.Event] = None

        self._cycle_count: int = 0
        self._skipped_ticks: int = 0
        self._history: deque = deque(maxlen=history_size)

    @property
    def is_running(self) -> bool:
        return self._loop_done is not None and not self._loop_done.is_set()

    @property
    def cycle_in_flight(self) -> bool:
        return self._cycle_lock.locked()

    # ============================================================
    # ONE CYCLE
    # ============================================================

    async def run_cycle(self) -> Optional[CycleReport]:
        """
        Run one scan-and-execute cycle. Returns None if another cycle holds the
        lock (the call is skipped, not queued).
        """
        if self._cycle_lock.locked():
            self._skipped_ticks += 1
            logger.warning("Previous scan cycle still running - skipping this tick")
            return None

        async with self._cycle_lock:
            self._cycle_count += 1
            report = CycleReport(cycle=self._cycle_count, started_at=time.time())
            try:
                await self._run_cycle(report)
            except Exception as e:
                # Last line of defense; executor already isolates per-Pact errors
                report.error = f"{type(e).__name__}: {e}"
                logger.error(f"Scan cycle {report.cycle} crashed: {report.error}")
            finally:
                report.finished_at = time.time()
                self._history.append(report)

            logger.info(
                f"Cycle {report.cycle} done: evaluated={report.evaluated} "
                f"expired={report.expired} succeeded={report.succeeded} "
                f"failed={report.failed}" + (f" error={report.error}" if report.error else "")
            )
            return report

    async def _run_cycle(self, report: CycleReport) -> None:
        logger.info("Scanning for expired pacts...")

        try:
            pacts = await self.source.fetch_pacts()
        except SnapshotQueryError as e:
            report.error = str(e)
            logger.error(f"Failed to scan for pacts: {e}")
            return

        report.evaluated = len(pacts)
        if not pacts:
            logger.info("No active pacts found. Standing by.")
            return
        logger.info(f"Found {len(pacts)} pact(s) to evaluate.")

        report.now = self._clock()
        expired = scan(report.now, pacts)
        report.expired = len(expired)
        if not expired:
            logger.info("All pacts are up to date.")
            return

        logger.info(f"Found {len(expired)} expired pact(s). Preparing to execute recovery...")
        batch = await self.executor.execute(expired)
        report.outcomes = batch.outcomes
        report.succeeded = batch.succeeded
        report.failed = batch.failed

        for outcome in batch.failures():
            logger.warning(
                f"Recovery failed for pact {outcome.pact_id} at "
                f"{outcome.failed_stage.value if outcome.failed_stage else '?'}: {outcome.error}"
            )

    # ============================================================
    # SCHEDULER LOOP
    # ============================================================

    async def run_forever(self) -> None:
        """One immediate cycle, then one per interval, until stop()."""
        self._stop_event = asyncio.Event()
        self._loop_done = asyncio.Event()
        logger.info(f"Starting scheduler. Will scan every {self.interval_seconds} seconds.")

        try:
            while not self._stop_event.is_set():
                if self._cycle_task is not None and not self._cycle_task.done():
                    self._skipped_ticks += 1
                    logger.warning("Previous scan cycle still running - skipping this tick")
                else:
                    self._cycle_task = asyncio.create_task(self.run_cycle())

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            # Let the in-flight cycle finish; never cut a Pact mid-protocol
            if self._cycle_task is not None and not self._cycle_task.done():
                logger.info("Waiting for in-flight scan cycle to finish...")
                await asyncio.shield(self._cycle_task)
            self._loop_done.set()
            logger.info("Scheduler stopped.")

    async def stop(self) -> None:
        """Request shutdown and wait for the loop (and any in-flight cycle) to end."""
        if self._stop_event is None or self._loop_done is None:
            return
        self._stop_event.set()
        await self._loop_done.wait()

    # ============================================================
    # STATUS
    # ============================================================

    def last_report(self) -> Optional[CycleReport]:
        return self._history[-1] if self._history else None

    def history(self) -> list[CycleReport]:
        return list(self._history)

    def get_status(self) -> dict:
        last = self.last_report()
        return {
            "running": self.is_running,
            "cycle_in_flight": self.cycle_in_flight,
            "interval_seconds": self.interval_seconds,
            "cycles": self._cycle_count,
            "skipped_ticks": self._skipped_ticks,
            "last_cycle": last.to_dict() if last else None,
            "executor": self.executor.get_status(),
        }
