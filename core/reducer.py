"""
Event Reducer - pure state transitions for the Pact view.

Every handler has the shape (pacts, event) -> ReduceResult:
- Pure (no I/O, no logging, the input mapping is never mutated)
- Deterministic (same ordered events -> same records)
- Side effects are returned as data (RegisterContract, EnrichPact) and
  carried out by whoever owns the I/O (PactStore, the API, the enricher)

Anomalies (unknown Pact, duplicate creation, out-of-order check-in) are
no-ops that come back as a message on the result. They never raise.
"""

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from .errors import UnknownEventError
from .pact import CheckedIn, Pact, PactCreated, PactDetails, PactEvent

PactMap = Mapping[str, Pact]

EMPTY: PactMap = MappingProxyType({})


# ============================================================
# EFFECTS
# ============================================================

@dataclass(frozen=True)
class RegisterContract:
    """Start delivering events emitted by this address (dynamic contract discovery)."""
    address: str


@dataclass(frozen=True)
class EnrichPact:
    """Read the fields PactCreated does not carry from the Pact contract."""
    address: str


@dataclass(frozen=True)
class ReduceResult:
    pacts: PactMap
    effects: tuple = ()
    anomalies: tuple = ()
    changed: bool = False          # A record was written


def _with(pacts: PactMap, pact: Pact) -> PactMap:
    updated = dict(pacts)
    updated[pact.id] = pact
    return MappingProxyType(updated)


# ============================================================
# HANDLERS
# ============================================================

def apply_pact_created(pacts: PactMap, event: PactCreated) -> ReduceResult:
    if event.pact_address in pacts:
        return ReduceResult(
            pacts=pacts,
            anomalies=(f"PactCreated for existing pact {event.pact_address} ignored",),
        )

    # Only event params and block metadata. The rest stays defaulted until enriched.
    pact = Pact(
        id=event.pact_address,
        owner=event.owner,
        beneficiary=event.beneficiary,
        last_check_in=event.block_timestamp,
        created_at=event.block_timestamp,
        check_in_interval=0,
        protected_token="",
        warden="",
    )
    return ReduceResult(
        pacts=_with(pacts, pact),
        changed=True,
        effects=(RegisterContract(event.pact_address), EnrichPact(event.pact_address)),
    )


def apply_checked_in(pacts: PactMap, event: CheckedIn) -> ReduceResult:
    pact = pacts.get(event.src_address)
    if pact is None:
        return ReduceResult(
            pacts=pacts,
            anomalies=(f"Pact with address {event.src_address} not found",),
        )

    if event.timestamp < pact.last_check_in:
        return ReduceResult(
            pacts=pacts,
            anomalies=(
                f"Out-of-order CheckedIn for {event.src_address}: "
                f"{event.timestamp} < lastCheckIn {pact.last_check_in}",
            ),
        )

    if event.timestamp == pact.last_check_in:
        return ReduceResult(pacts=pacts)
    return ReduceResult(pacts=_with(pacts, replace(pact, last_check_in=event.timestamp)), changed=True)


def apply_pact_details(pacts: PactMap, details: PactDetails) -> ReduceResult:
    pact = pacts.get(details.pact_address)
    if pact is None:
        return ReduceResult(
            pacts=pacts,
            anomalies=(f"PactDetails for unknown pact {details.pact_address} ignored",),
        )

    # Fill only what is still defaulted; immutable fields stay immutable once known.
    enriched = replace(
        pact,
        check_in_interval=pact.check_in_interval or details.check_in_interval,
        protected_token=pact.protected_token or details.protected_token,
        warden=pact.warden or details.warden,
    )
    if enriched == pact:
        return ReduceResult(pacts=pacts)
    return ReduceResult(pacts=_with(pacts, enriched), changed=True)


HANDLERS: dict[type, Callable[[PactMap, PactEvent], ReduceResult]] = {
    PactCreated: apply_pact_created,
    CheckedIn: apply_checked_in,
    PactDetails: apply_pact_details,
}


def reduce(pacts: PactMap, event: PactEvent) -> ReduceResult:
    """
    Apply one event.

    Raises:
        UnknownEventError: no handler for the event's type
    """
    handler = HANDLERS.get(type(event))
    if handler is None:
        raise UnknownEventError(f"No handler for event type: {type(event).__name__}")
    return handler(pacts, event)


def replay(events: Iterable[PactEvent], pacts: Optional[PactMap] = None) -> ReduceResult:
    """Fold an ordered event sequence. Effects and anomalies are accumulated in order."""
    state = EMPTY if pacts is None else pacts
    effects: list = []
    anomalies: list = []
    changed = False
    for event in events:
        result = reduce(state, event)
        state = result.pacts
        changed = changed or result.changed
        effects.extend(result.effects)
        anomalies.extend(result.anomalies)
    return ReduceResult(pacts=state, effects=tuple(effects), anomalies=tuple(anomalies), changed=changed)
