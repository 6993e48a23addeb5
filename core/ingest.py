"""
Event sink - the boundary where finalized events enter the local store.

The ingestion pipeline itself (chain streaming, reorgs, backfill) lives
outside the warden. It pushes already-finalized, ordered events here
(POST /events). This module applies them and carries out the reducer's
returned effects:

- RegisterContract: recorded by the store (watched addresses)
- EnrichPact: read checkInInterval / protectedToken / warden from the Pact
  contract and apply them as a PactDetails event

Enrichment failures are logged and leave the interval at 0, which the
scanner treats as "not yet known". retry_enrichment() (POST
/enrichment/retry) fills it in later.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from .pact import CheckedIn, PactDetails, PactEvent
from .reducer import EnrichPact, RegisterContract
from .store import PactStore

logger = logging.getLogger("warden.ingest")


class DetailsReader(Protocol):
    async def read_pact_details(self, pact_id: str) -> PactDetails: ...


@dataclass
class IngestReport:
    applied: int = 0
    anomalies: list[str] = field(default_factory=list)
    registered: list[str] = field(default_factory=list)
    enriched: list[str] = field(default_factory=list)
    enrich_failed: list[str] = field(default_factory=list)
    unregistered: list[str] = field(default_factory=list)    # CheckedIn sources never created here

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "anomalies": self.anomalies,
            "registered": self.registered,
            "enriched": self.enriched,
            "enrich_failed": self.enrich_failed,
            "unregistered": self.unregistered,
        }


class EventSink:
    def __init__(self, store: PactStore, reader: Optional[DetailsReader] = None):
        self.store = store
        self.reader = reader
        self._pending_enrichment: set[str] = set()

    async def ingest(self, events: Iterable[PactEvent]) -> IngestReport:
        """Apply events in order, then run any enrichment they requested."""
        report = IngestReport()
        to_enrich: list[str] = []

        for event in events:
            if isinstance(event, CheckedIn) and not self.store.is_watched(event.src_address):
                # Still reduced; the reducer reports the unknown Pact as an anomaly
                report.unregistered.append(event.src_address)
            result = self.store.apply(event)
            report.applied += 1
            report.anomalies.extend(result.anomalies)
            for effect in result.effects:
                if isinstance(effect, RegisterContract):
                    report.registered.append(effect.address)
                elif isinstance(effect, EnrichPact):
                    to_enrich.append(effect.address)

        self._pending_enrichment.update(to_enrich)
        await self._enrich(to_enrich, report)
        return report

    async def retry_enrichment(self) -> IngestReport:
        """Retry every Pact whose details could not be read yet."""
        report = IngestReport()
        await self._enrich(sorted(self._pending_enrichment), report)
        return report

    async def _enrich(self, addresses: list[str], report: IngestReport) -> None:
        if self.reader is None:
            return
        for address in addresses:
            try:
                details = await self.reader.read_pact_details(address)
            except Exception as e:
                report.enrich_failed.append(address)
                logger.warning(f"Enrichment failed for {address}: {e}")
                continue
            result = self.store.apply(details)
            report.anomalies.extend(result.anomalies)
            report.enriched.append(address)
            self._pending_enrichment.discard(address)

    @property
    def pending_enrichment(self) -> list[str]:
        return sorted(self._pending_enrichment)
