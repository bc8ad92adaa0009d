"""
Analytics Ingest API Router
===========================

FastAPI router for the analytics sync and summary endpoints.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from coach_insights.analytics_ingest import AnalyticsIngestService
from coach_insights.store import SqlKeyValueStore
from database import SessionLocal


router = APIRouter(prefix="/api/analytics", tags=["analytics"])

_service: Optional[AnalyticsIngestService] = None


# ==============================================================================
# Request/Response Models
# ==============================================================================

class SyncRequestBody(BaseModel):
    # Entries stay untyped: invalid events are dropped during merge, not rejected
    events: Any = []


class InstallStats(BaseModel):
    unique: int = 0
    eventsPerInstall: Dict[str, int] = {}


class SummaryResponseBody(BaseModel):
    total: int
    latestEventAt: Optional[str] = None
    metrics: Dict[str, int]
    kpis: Dict[str, float]
    installs: Optional[InstallStats] = None


class SyncResponseBody(BaseModel):
    accepted: int
    totalStored: int
    summary: SummaryResponseBody


# ==============================================================================
# Dependencies
# ==============================================================================

def get_ingest_service() -> AnalyticsIngestService:
    """Process-wide service so every request shares the store's per-key locks."""
    global _service
    if _service is None:
        _service = AnalyticsIngestService(SqlKeyValueStore(SessionLocal))
    return _service


# ==============================================================================
# Endpoints
# ==============================================================================

@router.post("/sync", response_model=SyncResponseBody)
def sync_events(body: SyncRequestBody, service: AnalyticsIngestService = Depends(get_ingest_service)):
    """
    Merge a batch of client events.

    Events are deduplicated by id, so re-sending a batch is safe:
    it accepts 0 events and leaves the stored total unchanged.
    """
    if not isinstance(body.events, list):
        raise HTTPException(status_code=400, detail="events must be an array")
    return service.ingest(body.events)


@router.get("/summary", response_model=SummaryResponseBody)
def get_summary(service: AnalyticsIngestService = Depends(get_ingest_service)):
    """Recompute totals, counters and KPI ratios from the stored events."""
    return service.summary()
