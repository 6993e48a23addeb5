"""
Snapshot sources - where the scanner gets "all Pacts" from.

IndexerClient asks the external GraphQL indexer (the default in production).
StoreSnapshotSource reads the local PactStore (fed through POST /events).

Both expose `async fetch_pacts() -> list[Pact]` and raise SnapshotQueryError
on any failure, which aborts only the current scan cycle.
"""

import logging
from typing import Optional

import aiohttp

from .errors import SnapshotQueryError
from .pact import Pact, normalize_address, parse_uint
from .store import PactStore

logger = logging.getLogger("warden.indexer")


# Ordered by creation so results are stable for pagination.
GET_ALL_PACTS = """
query GetAllPacts {
  Pact(order_by: { createdAt: asc }) {
    id
    owner
    beneficiary
    lastCheckIn
    checkInInterval
    createdAt
  }
}
"""


def parse_pact_row(row: dict) -> Pact:
    """
    One GraphQL row -> Pact.

    Numeric fields come back as strings (BigInt over JSON) and are parsed as
    ints. A null/missing checkInInterval parses to 0 = "not yet known".
    lastCheckIn is required: a Pact without one cannot have a deadline.
    """
    if not isinstance(row, dict) or not row.get("id"):
        raise ValueError(f"Pact row without id: {row!r}")
    if row.get("lastCheckIn") in (None, ""):
        raise ValueError("lastCheckIn: missing")
    last_check_in = parse_uint(row["lastCheckIn"], "lastCheckIn")
    return Pact(
        id=normalize_address(row["id"]),
        owner=normalize_address(row.get("owner") or ""),
        beneficiary=normalize_address(row.get("beneficiary") or ""),
        last_check_in=last_check_in,
        created_at=parse_uint(row.get("createdAt"), "createdAt") if row.get("createdAt") else last_check_in,
        check_in_interval=parse_uint(row.get("checkInInterval"), "checkInInterval"),
    )


def parse_pacts_response(payload: dict) -> list[Pact]:
    """
    Validate a GraphQL response body and parse every row.

    A malformed row is logged and skipped. The rest of the snapshot is kept.
    """
    if not isinstance(payload, dict):
        raise SnapshotQueryError("Indexer response is not a JSON object")
    errors = payload.get("errors")
    if errors:
        messages = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        raise SnapshotQueryError(f"Indexer returned GraphQL errors: {messages}")
    data = payload.get("data") or {}
    rows = data.get("Pact")
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise SnapshotQueryError("Indexer response field 'Pact' is not a list")

    pacts = []
    for row in rows:
        try:
            pacts.append(parse_pact_row(row))
        except ValueError as e:
            row_id = row.get("id") if isinstance(row, dict) else None
            logger.warning(f"Skipping malformed Pact row {row_id or '?'} from indexer: {e}")
    return pacts


class IndexerClient:
    """GraphQL client for the external indexer."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._last_error: str = ""

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def fetch_pacts(self) -> list[Pact]:
        session = await self._get_session()
        try:
            async with session.post(
                self.url,
                json={"query": GET_ALL_PACTS, "operationName": "GetAllPacts"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as resp:
                if resp.status != 200:
                    body = (await resp.text())[:200]
                    raise SnapshotQueryError(f"Indexer HTTP {resp.status}: {body}")
                payload = await resp.json(content_type=None)
        except SnapshotQueryError as e:
            self._last_error = str(e)
            raise
        except Exception as e:
            # aiohttp.ClientError, asyncio.TimeoutError, JSON decode errors
            self._last_error = f"{type(e).__name__}: {e}"
            raise SnapshotQueryError(f"Indexer query failed: {self._last_error}") from e

        try:
            pacts = parse_pacts_response(payload)
        except SnapshotQueryError as e:
            self._last_error = str(e)
            raise
        logger.debug(f"Indexer returned {len(pacts)} pact(s)")
        return pacts

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def get_status(self) -> dict:
        return {"source": "indexer", "url": self.url, "last_error": self._last_error}


class StoreSnapshotSource:
    """Adapts a local PactStore to the snapshot interface."""

    def __init__(self, store: PactStore):
        self.store = store

    async def fetch_pacts(self) -> list[Pact]:
        return self.store.all_pacts()

    async def close(self) -> None:
        return None

    def get_status(self) -> dict:
        return {"source": "local", **self.store.get_status()}
