"""
Recovery Executor - drive recoverAssets() for each expired Pact.

Per Pact, an explicit stage machine:

    SIMULATING -> SUBMITTING -> CONFIRMING -> SUCCEEDED
         |             |             |
         +-------------+-------------+----> FAILED(stage, reason)

Stages never reorder for one Pact. Across Pacts the batch runs sequentially
by default, or with bounded concurrency; either way every Pact's protocol is
wrapped at its own boundary, so one failure is invisible to the others and
the batch never aborts early.

No "already attempted" memory: a Pact the ledger already recovered is
selected again next cycle and fails fast at SIMULATING.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Protocol

from .chain import PreparedTx, TxReceipt
from .pact import Pact

logger = logging.getLogger("warden.recovery")


class RecoveryStage(Enum):
    SIMULATING = "simulating"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RecoveryLedger(Protocol):
    """What the executor needs from the ledger. PactLedger implements it."""

    async def simulate_recovery(self, pact_id: str) -> PreparedTx: ...

    async def submit(self, prepared: PreparedTx) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, pact_id: Optional[str] = None) -> TxReceipt: ...


@dataclass
class RecoveryOutcome:
    """Final state of one Pact's recovery attempt."""
    pact_id: str
    stage: RecoveryStage = RecoveryStage.SIMULATING
    failed_stage: Optional[RecoveryStage] = None   # Where it stopped, when FAILED
    error: str = ""
    tx_hash: str = ""
    reverted: bool = False
    gas_used: int = 0
    gas_cost_wei: int = 0
    started_at: float = field(default_factory=time.time)
    finished_at: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.stage == RecoveryStage.SUCCEEDED

    def fail(self, error: str, reverted: bool = False) -> "RecoveryOutcome":
        self.failed_stage = self.stage
        self.stage = RecoveryStage.FAILED
        self.error = error
        self.reverted = reverted
        return self

    def to_dict(self) -> dict:
        return {
            "pact_id": self.pact_id,
            "stage": self.stage.value,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": self.error,
            "tx_hash": self.tx_hash,
            "reverted": self.reverted,
            "gas_used": self.gas_used,
            "gas_cost_wei": str(self.gas_cost_wei),
            "duration_seconds": round(max(self.finished_at - self.started_at, 0.0), 3),
        }


@dataclass
class BatchReport:
    outcomes: list[RecoveryOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    def failures(self) -> list[RecoveryOutcome]:
        return [o for o in self.outcomes if not o.succeeded]


class RecoveryExecutor:
    """
    Usage:
        executor = RecoveryExecutor(ledger)
        report = await executor.execute(expired_pacts)
    """

    def __init__(
        self,
        ledger: RecoveryLedger,
        max_concurrency: int = 1,
        stage_timeout_seconds: Optional[float] = None,
    ):
        self.ledger = ledger
        self.max_concurrency = max(1, max_concurrency)
        # Extra bound on top of the ledger's own per-call timeouts
        self.stage_timeout_seconds = stage_timeout_seconds

        self._recovered_total: int = 0
        self._failed_total: int = 0

    async def _bounded(self, coro):
        if self.stage_timeout_seconds is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=self.stage_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise asyncio.TimeoutError(f"no result after {self.stage_timeout_seconds}s") from e

    async def recover(self, pact: Pact) -> RecoveryOutcome:
        """Run the three-stage protocol for one Pact. Never raises (except cancellation)."""
        outcome = RecoveryOutcome(pact_id=pact.id)
        logger.info(f"- Executing recovery for pact: {pact.id}")
        try:
            prepared = await self._bounded(self.ledger.simulate_recovery(pact.id))

            outcome.stage = RecoveryStage.SUBMITTING
            outcome.tx_hash = await self._bounded(self.ledger.submit(prepared))
            logger.info(f"  - Transaction sent for {pact.id}: {outcome.tx_hash}")

            outcome.stage = RecoveryStage.CONFIRMING
            receipt = await self._bounded(self.ledger.wait_for_receipt(outcome.tx_hash, pact.id))
            outcome.gas_used = receipt.gas_used
            outcome.gas_cost_wei = receipt.gas_cost_wei

            if receipt.succeeded:
                outcome.stage = RecoveryStage.SUCCEEDED
                logger.info(
                    f"  - Recovery successful for pact {pact.id} | "
                    f"tx={outcome.tx_hash} | gas={receipt.gas_used}"
                )
            else:
                outcome.fail(f"TX reverted: {outcome.tx_hash}", reverted=True)
                logger.warning(
                    f"  - Transaction reverted for pact {pact.id} "
                    f"(block {receipt.block_number}): {outcome.tx_hash}"
                )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            outcome.fail(f"timed out: {str(e) or type(e).__name__}")
            logger.warning(f"  - Recovery for pact {pact.id} failed at {outcome.failed_stage.value}: {outcome.error}")
        except Exception as e:
            outcome.fail(f"{type(e).__name__}: {e}")
            logger.warning(f"  - Recovery for pact {pact.id} failed at {outcome.failed_stage.value}: {outcome.error}")
        finally:
            outcome.finished_at = time.time()

        if outcome.succeeded:
            self._recovered_total += 1
        else:
            self._failed_total += 1
        return outcome

    async def execute(self, pacts: Iterable[Pact]) -> BatchReport:
        """Recover every Pact. Outcomes come back in input order."""
        pacts = list(pacts)
        if not pacts:
            return BatchReport()

        if self.max_concurrency == 1:
            outcomes = []
            for pact in pacts:
                outcomes.append(await self.recover(pact))
            return BatchReport(outcomes=outcomes)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(pact: Pact) -> RecoveryOutcome:
            async with semaphore:
                return await self.recover(pact)

        outcomes = await asyncio.gather(*(_one(p) for p in pacts))
        return BatchReport(outcomes=list(outcomes))

    def get_status(self) -> dict:
        return {
            "max_concurrency": self.max_concurrency,
            "recovered_total": self._recovered_total,
            "failed_total": self._failed_total,
        }
