"""
Pact State Store - materialized view over the event log.

One writer (apply), any number of readers. The whole mapping is swapped
under a lock on each write, so a reader either sees the old record or the
new one, never a half-written Pact.
"""

import logging
import threading
from types import MappingProxyType
from typing import Iterable, Optional

from .pact import Pact, PactEvent
from .reducer import EMPTY, PactMap, ReduceResult, RegisterContract, reduce

logger = logging.getLogger("warden.store")


class PactStore:
    """In-memory Pact view driven only by the reducer."""

    def __init__(self, factory_address: str = ""):
        self._lock = threading.Lock()
        self._pacts: PactMap = EMPTY
        # Addresses whose events we accept. The factory is always watched.
        self._watched: frozenset = frozenset({factory_address.lower()}) if factory_address else frozenset()
        self._events_applied: int = 0
        self._anomalies: int = 0

    # ============================================================
    # WRITE PATH
    # ============================================================

    def apply(self, event: PactEvent) -> ReduceResult:
        """Reduce one event into the store. Anomalies are logged, never raised."""
        with self._lock:
            result = reduce(self._pacts, event)
            self._pacts = result.pacts
            self._events_applied += 1
            for effect in result.effects:
                if isinstance(effect, RegisterContract):
                    self._watched = self._watched | {effect.address}
            self._anomalies += len(result.anomalies)

        for anomaly in result.anomalies:
            logger.warning(f"Reducer anomaly: {anomaly}")
        for effect in result.effects:
            if isinstance(effect, RegisterContract):
                logger.info(f"Registered new Pact at {effect.address}")
        return result

    def apply_all(self, events: Iterable[PactEvent]) -> list[ReduceResult]:
        return [self.apply(event) for event in events]

    # ============================================================
    # READ PATH
    # ============================================================

    def all_pacts(self) -> list[Pact]:
        """Every Pact ordered by createdAt ascending (id breaks ties), stable for pagination."""
        snapshot = self._pacts
        return sorted(snapshot.values(), key=lambda p: (p.created_at, p.id))

    def get(self, pact_id: str) -> Optional[Pact]:
        return self._pacts.get(pact_id.lower())

    def snapshot(self) -> PactMap:
        """Read-only view of the current mapping."""
        return MappingProxyType(dict(self._pacts))

    def watched_addresses(self) -> frozenset:
        return self._watched

    def is_watched(self, address: str) -> bool:
        return address.lower() in self._watched

    def __len__(self) -> int:
        return len(self._pacts)

    def get_status(self) -> dict:
        return {
            "pacts": len(self._pacts),
            "watched_addresses": len(self._watched),
            "events_applied": self._events_applied,
            "anomalies": self._anomalies,
        }
