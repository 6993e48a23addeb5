"""
Warden API Server - FastAPI surface

Endpoints:
- GET  /health             Liveness + last cycle summary
- GET  /status             Full warden status (config, scheduler, store, ledger)
- GET  /cycles             Recent cycle reports
- GET  /pacts              Local Pact view with deadlines and expiry flags
- GET  /pacts/{pact_id}    One Pact
- POST /events             Ingestion collaborator pushes finalized, ordered events
- POST /enrichment/retry   Retry detail reads for Pacts whose interval is still unknown
- POST /scan               Run one cycle now (skipped if one is in flight)

GET endpoints are public. POST endpoints require `Authorization: Bearer <EVENTS_API_TOKEN>`
when that variable is set.
"""

import hmac
import logging
import time
from typing import Optional, Union

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from core.context import WardenContext
from core.pact import event_from_dict

logger = logging.getLogger("warden.api")


# ============================================================
# MODELS
# ============================================================

IntLike = Union[int, str]


class EventIn(BaseModel):
    """
    One finalized event. Integers may be sent as strings (BigInt over JSON).

    type=PactCreated: pactAddress, owner, beneficiary, blockTimestamp
    type=CheckedIn:   srcAddress, timestamp
    type=PactDetails: pactAddress, checkInInterval, protectedToken, warden
    """
    type: str = Field(..., max_length=32)
    pactAddress: Optional[str] = Field(None, max_length=64)
    srcAddress: Optional[str] = Field(None, max_length=64)
    owner: Optional[str] = Field(None, max_length=64)
    beneficiary: Optional[str] = Field(None, max_length=64)
    protectedToken: Optional[str] = Field(None, max_length=64)
    warden: Optional[str] = Field(None, max_length=64)
    blockTimestamp: Optional[IntLike] = None
    timestamp: Optional[IntLike] = None
    checkInInterval: Optional[IntLike] = None


class EventBatch(BaseModel):
    events: list[EventIn] = Field(..., max_length=10_000)


class HealthResponse(BaseModel):
    alive: bool
    scheduler_running: bool
    cycles: int
    last_cycle_at: Optional[float] = None
    last_cycle_error: str = ""


# ============================================================
# APP
# ============================================================

def create_app(context: WardenContext) -> FastAPI:
    """Create the FastAPI app wired to one WardenContext."""
    app = FastAPI(
        title="aegis warden",
        description="Dead-man's-switch warden: watches Pacts and executes recovery once they expire.",
        version="0.1.0",
    )
    app.state.context = context

    def _require_token(authorization: Optional[str]) -> None:
        token = context.config.events_token
        if not token:
            return
        supplied = (authorization or "").removeprefix("Bearer ").strip()
        if not hmac.compare_digest(supplied.encode(), token.encode()):
            raise HTTPException(401, "invalid or missing bearer token")

    # ============================================================
    # READ ROUTES
    # ============================================================

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Heartbeat endpoint."""
        warden = context.warden
        last = warden.last_report()
        return HealthResponse(
            alive=True,
            scheduler_running=warden.is_running,
            cycles=len(warden.history()),
            last_cycle_at=last.finished_at if last else None,
            last_cycle_error=last.error if last else "",
        )

    @app.get("/status")
    async def status():
        return context.get_status()

    @app.get("/cycles")
    async def cycles(limit: int = 10):
        limit = max(1, min(limit, 50))
        return {"cycles": [r.to_dict() for r in context.warden.history()[-limit:]]}

    @app.get("/pacts")
    async def pacts():
        now = int(time.time())
        return {
            "now": now,
            "pacts": [
                {**p.to_dict(), "expired": p.is_expired(now)}
                for p in context.store.all_pacts()
            ],
        }

    @app.get("/pacts/{pact_id}")
    async def pact(pact_id: str):
        found = context.store.get(pact_id)
        if found is None:
            raise HTTPException(404, f"pact {pact_id} not found")
        return {**found.to_dict(), "expired": found.is_expired(int(time.time()))}

    # ============================================================
    # WRITE ROUTES
    # ============================================================

    @app.post("/events")
    async def push_events(batch: EventBatch, authorization: Optional[str] = Header(None)):
        """
        Apply finalized events in the order given. A malformed event rejects the
        whole batch before anything is applied; anomalies do not.
        """
        _require_token(authorization)
        try:
            events = [
                event_from_dict(e.model_dump(exclude_none=True))
                for e in batch.events
            ]
        except (KeyError, ValueError) as e:
            raise HTTPException(422, f"malformed event: {e}")

        report = await context.sink.ingest(events)
        if report.anomalies:
            logger.info(f"Event push: {report.applied} applied, {len(report.anomalies)} anomalies")
        return report.to_dict()

    @app.post("/enrichment/retry")
    async def retry_enrichment(authorization: Optional[str] = Header(None)):
        _require_token(authorization)
        report = await context.sink.retry_enrichment()
        return report.to_dict()

    @app.post("/scan")
    async def scan_now(authorization: Optional[str] = Header(None)):
        """Run one cycle immediately. Never overlaps with a scheduled cycle."""
        _require_token(authorization)
        report = await context.warden.run_cycle()
        if report is None:
            return {"skipped": True, "reason": "cycle already in flight"}
        return {"skipped": False, **report.to_dict()}

    return app
