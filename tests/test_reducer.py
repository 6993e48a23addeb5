"""
Tests for the Pact event reducer.

Critical: state is a pure function of the ordered event sequence.
"""

import pytest

from core.errors import UnknownEventError
from core.pact import CheckedIn, PactCreated, PactDetails
from core.reducer import (
    EMPTY,
    EnrichPact,
    RegisterContract,
    apply_checked_in,
    apply_pact_created,
    apply_pact_details,
    reduce,
    replay,
)
from tests.fakes import BENEFICIARY, OWNER, P1, P2, TOKEN, WARDEN


def created(pact_id=P1, ts=1000):
    return PactCreated(pact_address=pact_id, owner=OWNER, beneficiary=BENEFICIARY, block_timestamp=ts)


def test_pact_created_uses_block_timestamp_and_defaults():
    result = apply_pact_created(EMPTY, created(ts=1700000000))
    pact = result.pacts[P1]

    assert pact.created_at == 1700000000
    assert pact.last_check_in == 1700000000
    assert pact.owner == OWNER
    assert pact.beneficiary == BENEFICIARY
    assert pact.check_in_interval == 0
    assert pact.protected_token == ""
    assert pact.warden == ""
    assert pact.deadline is None
    assert not pact.is_expired(10**12)


def test_pact_created_requests_registration_and_enrichment():
    result = apply_pact_created(EMPTY, created())
    assert result.effects == (RegisterContract(P1), EnrichPact(P1))
    assert result.anomalies == ()


def test_input_mapping_is_never_mutated():
    first = apply_pact_created(EMPTY, created())
    second = apply_checked_in(first.pacts, CheckedIn(src_address=P1, timestamp=2000))

    assert len(EMPTY) == 0
    assert first.pacts[P1].last_check_in == 1000
    assert second.pacts[P1].last_check_in == 2000


def test_duplicate_creation_is_anomaly():
    state = apply_pact_created(EMPTY, created(ts=1000)).pacts
    result = apply_pact_created(state, created(ts=5000))

    assert result.pacts is state
    assert result.pacts[P1].created_at == 1000
    assert result.effects == ()
    assert len(result.anomalies) == 1


def test_checked_in_updates_only_last_check_in():
    state = apply_pact_created(EMPTY, created(ts=1000)).pacts
    before = state[P1]
    after = apply_checked_in(state, CheckedIn(src_address=P1, timestamp=4000)).pacts[P1]

    assert after.last_check_in == 4000
    assert after.created_at == before.created_at
    assert after.owner == before.owner
    assert after.beneficiary == before.beneficiary
    assert after.check_in_interval == before.check_in_interval


def test_checked_in_for_unknown_pact_is_noop():
    result = apply_checked_in(EMPTY, CheckedIn(src_address=P2, timestamp=4000))

    assert P2 not in result.pacts
    assert len(result.pacts) == 0
    assert "not found" in result.anomalies[0]
    assert not result.changed


def test_out_of_order_check_in_is_rejected():
    state = replay([created(ts=1000), CheckedIn(src_address=P1, timestamp=5000)]).pacts
    result = apply_checked_in(state, CheckedIn(src_address=P1, timestamp=3000))

    assert result.pacts[P1].last_check_in == 5000
    assert len(result.anomalies) == 1


def test_equal_timestamp_check_in_is_accepted():
    state = replay([created(ts=1000)]).pacts
    result = apply_checked_in(state, CheckedIn(src_address=P1, timestamp=1000))
    assert result.anomalies == ()
    assert result.pacts[P1].last_check_in == 1000


def test_last_check_in_is_monotonic_for_any_sequence():
    timestamps = [1500, 1200, 3000, 2999, 3000, 100, 8000, 7000]
    state = replay([created(ts=1000)]).pacts
    seen = [state[P1].last_check_in]
    for ts in timestamps:
        state = reduce(state, CheckedIn(src_address=P1, timestamp=ts)).pacts
        seen.append(state[P1].last_check_in)

    assert seen == sorted(seen)
    assert seen[-1] == 8000


def test_details_fill_only_defaulted_fields():
    state = replay([created()]).pacts
    details = PactDetails(pact_address=P1, check_in_interval=86400, protected_token=TOKEN, warden=WARDEN)
    enriched = apply_pact_details(state, details).pacts[P1]

    assert enriched.check_in_interval == 86400
    assert enriched.protected_token == TOKEN
    assert enriched.warden == WARDEN

    # Once known, the interval is immutable
    again = apply_pact_details(
        {P1: enriched}, PactDetails(pact_address=P1, check_in_interval=60)
    ).pacts[P1]
    assert again.check_in_interval == 86400


def test_changed_only_when_a_record_is_written():
    state = replay([created()]).pacts
    details = PactDetails(pact_address=P1, check_in_interval=86400, protected_token=TOKEN, warden=WARDEN)

    first = apply_pact_details(state, details)
    assert first.changed

    repeat = apply_pact_details(first.pacts, details)
    assert not repeat.changed
    assert repeat.pacts is first.pacts

    assert apply_checked_in(first.pacts, CheckedIn(src_address=P1, timestamp=5000)).changed
    assert not apply_checked_in(first.pacts, CheckedIn(src_address=P1, timestamp=1000)).changed
    assert not apply_pact_created(first.pacts, created()).changed


def test_details_for_unknown_pact_is_anomaly():
    result = apply_pact_details(EMPTY, PactDetails(pact_address=P2, check_in_interval=60))
    assert len(result.pacts) == 0
    assert len(result.anomalies) == 1


def test_replay_determinism_100_runs():
    events = [
        created(P1, 1000),
        created(P2, 1001),
        CheckedIn(src_address=P1, timestamp=1500),
        PactDetails(pact_address=P1, check_in_interval=86400, protected_token=TOKEN),
        CheckedIn(src_address=P2, timestamp=900),     # out of order, ignored
        CheckedIn(src_address=P2, timestamp=2500),
        CheckedIn(src_address="0x" + "99" * 20, timestamp=10),  # unknown
    ]

    results = [replay(events) for _ in range(100)]
    first = dict(results[0].pacts)
    for result in results[1:]:
        assert dict(result.pacts) == first
        assert result.anomalies == results[0].anomalies
        assert result.effects == results[0].effects

    assert first[P1].last_check_in == 1500
    assert first[P1].check_in_interval == 86400
    assert first[P2].last_check_in == 2500
    assert len(results[0].anomalies) == 2


def test_unknown_event_type_raises():
    with pytest.raises(UnknownEventError):
        reduce(EMPTY, object())
