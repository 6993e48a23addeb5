"""
Tests for the recovery executor: stage ordering, isolation, idempotence.
"""

import asyncio

from core.recovery import RecoveryExecutor, RecoveryStage
from tests.fakes import P1, P2, P3, FakeLedger, make_pact


def run(coro):
    return asyncio.run(coro)


def test_successful_recovery_runs_stages_in_order():
    ledger = FakeLedger()
    outcome = run(RecoveryExecutor(ledger).recover(make_pact(P1)))

    assert outcome.succeeded
    assert outcome.stage == RecoveryStage.SUCCEEDED
    assert outcome.tx_hash.startswith("0x")
    assert outcome.gas_cost_wei == 50_000 * 1_000_000_000
    assert ledger.stages_for(P1) == ["simulate", "submit", "confirm"]


def test_batch_isolation_second_fails_simulation():
    ledger = FakeLedger(fail_simulate={P2})
    executor = RecoveryExecutor(ledger)
    report = run(executor.execute([make_pact(P1), make_pact(P2), make_pact(P3)]))

    assert report.attempted == 3
    assert report.succeeded == 2
    assert report.failed == 1
    assert [o.pact_id for o in report.outcomes] == [P1, P2, P3]

    failed = report.failures()[0]
    assert failed.pact_id == P2
    assert failed.stage == RecoveryStage.FAILED
    assert failed.failed_stage == RecoveryStage.SIMULATING
    assert "not expired" in failed.error

    assert ledger.stages_for(P1) == ["simulate", "submit", "confirm"]
    assert ledger.stages_for(P2) == ["simulate"]
    assert ledger.stages_for(P3) == ["simulate", "submit", "confirm"]


def test_second_recovery_fails_at_simulation():
    ledger = FakeLedger()
    executor = RecoveryExecutor(ledger)

    first = run(executor.recover(make_pact(P1)))
    second = run(executor.recover(make_pact(P1)))

    assert first.succeeded
    assert not second.succeeded
    assert second.failed_stage == RecoveryStage.SIMULATING
    assert "already recovered" in second.error
    # No second submission
    assert ledger.stages_for(P1).count("submit") == 1
    assert executor.get_status()["recovered_total"] == 1
    assert executor.get_status()["failed_total"] == 1


def test_submission_failure_is_reported_with_stage():
    ledger = FakeLedger(fail_submit={P1})
    outcome = run(RecoveryExecutor(ledger).recover(make_pact(P1)))

    assert outcome.failed_stage == RecoveryStage.SUBMITTING
    assert "nonce too low" in outcome.error
    assert ledger.stages_for(P1) == ["simulate", "submit"]


def test_revert_is_failure_at_confirm():
    ledger = FakeLedger(revert={P1})
    outcome = run(RecoveryExecutor(ledger).recover(make_pact(P1)))

    assert not outcome.succeeded
    assert outcome.reverted
    assert outcome.failed_stage == RecoveryStage.CONFIRMING
    assert outcome.tx_hash
    assert outcome.to_dict()["stage"] == "failed"


def test_stage_timeout_is_reported_not_raised():
    ledger = FakeLedger(simulate_delay=1.0)
    executor = RecoveryExecutor(ledger, stage_timeout_seconds=0.05)
    report = run(executor.execute([make_pact(P1), make_pact(P2)]))

    assert report.failed == 2
    assert all(o.failed_stage == RecoveryStage.SIMULATING for o in report.outcomes)
    assert all("timed out" in o.error for o in report.outcomes)
    assert all("0.05s" in o.error for o in report.outcomes)


def test_ledger_timeout_without_stage_bound_names_the_cause():
    class SlowConfirmLedger(FakeLedger):
        async def wait_for_receipt(self, tx_hash, pact_id=None):
            raise asyncio.TimeoutError()

    report = run(RecoveryExecutor(SlowConfirmLedger()).execute([make_pact(P1)]))
    outcome = report.outcomes[0]

    assert outcome.failed_stage == RecoveryStage.CONFIRMING
    assert outcome.error == "timed out: TimeoutError"
    assert "None" not in outcome.error


def test_unexpected_exception_is_isolated():
    class ExplodingLedger(FakeLedger):
        async def submit(self, prepared):
            if prepared.pact_id == P1:
                raise RuntimeError("boom")
            return await super().submit(prepared)

    ledger = ExplodingLedger()
    report = run(RecoveryExecutor(ledger).execute([make_pact(P1), make_pact(P2)]))

    assert report.outcomes[0].failed_stage == RecoveryStage.SUBMITTING
    assert "RuntimeError: boom" in report.outcomes[0].error
    assert report.outcomes[1].succeeded


def test_concurrent_batch_keeps_per_pact_order_and_isolation():
    ledger = FakeLedger(fail_simulate={P2}, simulate_delay=0.01)
    executor = RecoveryExecutor(ledger, max_concurrency=3)
    report = run(executor.execute([make_pact(P1), make_pact(P2), make_pact(P3)]))

    assert [o.pact_id for o in report.outcomes] == [P1, P2, P3]
    assert report.succeeded == 2
    for pact_id in (P1, P3):
        assert ledger.stages_for(pact_id) == ["simulate", "submit", "confirm"]


def test_empty_batch():
    report = run(RecoveryExecutor(FakeLedger()).execute([]))
    assert report.attempted == 0
    assert report.failed == 0
