"""
WardenContext - every long-lived collaborator, built once at startup.

Passed by reference into the API and the scheduler. No module-level client
singletons: tests build a context from fakes with the same constructor.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .chain import PactLedger
from .indexer import IndexerClient, StoreSnapshotSource
from .ingest import EventSink
from .recovery import RecoveryExecutor
from .rules import WardenConfig
from .store import PactStore
from .warden import Warden

logger = logging.getLogger("warden.context")


@dataclass
class WardenContext:
    config: WardenConfig
    store: PactStore
    source: object            # IndexerClient | StoreSnapshotSource
    ledger: object            # PactLedger or a test double
    executor: RecoveryExecutor
    sink: EventSink
    warden: Warden

    @classmethod
    def build(cls, config: WardenConfig, ledger: Optional[object] = None, source: Optional[object] = None) -> "WardenContext":
        """
        Wire the whole graph.

        Raises:
            ConfigError: invalid private key (from PactLedger)
        """
        if ledger is None:
            ledger = PactLedger.connect(config)

        store = PactStore(factory_address=config.factory_address)
        if source is None:
            if config.snapshot_source == "local":
                source = StoreSnapshotSource(store)
            else:
                source = IndexerClient(config.indexer_url, timeout_seconds=config.query_timeout_seconds)

        executor = RecoveryExecutor(ledger, max_concurrency=config.max_concurrency)
        warden = Warden(source, executor, interval_seconds=config.scan_interval_seconds)
        sink = EventSink(store, reader=ledger)

        logger.info(
            f"Warden context ready: source={config.snapshot_source} | "
            f"interval={config.scan_interval_seconds}s | concurrency={config.max_concurrency}"
        )
        return cls(
            config=config,
            store=store,
            source=source,
            ledger=ledger,
            executor=executor,
            sink=sink,
            warden=warden,
        )

    @property
    def warden_address(self) -> str:
        return getattr(self.ledger, "address", "")

    async def close(self) -> None:
        close = getattr(self.source, "close", None)
        if close is not None:
            await close()

    def get_status(self) -> dict:
        source_status = getattr(self.source, "get_status", None)
        ledger_status = getattr(self.ledger, "get_status", None)
        return {
            "config": self.config.redacted(),
            "warden": self.warden.get_status(),
            "store": self.store.get_status(),
            "source": source_status() if source_status else {},
            "ledger": ledger_status() if ledger_status else {},
            "pending_enrichment": self.sink.pending_enrichment,
        }
