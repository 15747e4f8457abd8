"""
API Routes — health, event tracking, counter queries, retention.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from bookmark_analytics import __version__
from bookmark_analytics.config import settings
from bookmark_analytics.errors import AnalyticsError, InvalidRequest, StorageUnavailable
from bookmark_analytics.schemas import (
    EventRequest,
    HealthResponse,
    PeriodListResponse,
    PeriodType,
    SummaryResponse,
)
from bookmark_analytics.services import analytics
from bookmark_analytics.storage.base import Backend

logger = logging.getLogger(__name__)

router = APIRouter()


def get_backend(request: Request) -> Backend:
    """FastAPI dependency — the backend chosen once in the lifespan."""
    return request.app.state.backend


def _http_error(exc: AnalyticsError) -> HTTPException:
    if isinstance(exc, InvalidRequest):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, StorageUnavailable):
        logger.error("Analytics storage unavailable: %s", exc)
        return HTTPException(status_code=503, detail={"error": "Storage unavailable", "details": str(exc)})
    logger.error("Analytics storage error: %s", exc)
    return HTTPException(status_code=500, detail={"error": "Failed to update analytics", "details": str(exc)})


# ── Health ──────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health(backend: Backend = Depends(get_backend)):
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        backend=backend.name,
        missing_columns=backend.missing_columns,
    )


# ── Track ───────────────────────────────────────────────

@router.post("/analytics/events", tags=["analytics"])
async def track_event(req: EventRequest, backend: Backend = Depends(get_backend)):
    try:
        counters = await analytics.record_event(
            backend, req.subject_id, req.action, req.payload(), req.event_at,
        )
    except AnalyticsError as e:
        raise _http_error(e)

    return {
        "success": True,
        "analytics": counters.model_dump(mode="json"),
        "action": req.action,
        "tracked_at": datetime.now(timezone.utc).isoformat(),
    }


# ── Query ───────────────────────────────────────────────

@router.get("/analytics", tags=["analytics"])
async def get_analytics(
    subject_id: str | None = Query(None, description="Bookmark ID; omit for all subjects"),
    backend: Backend = Depends(get_backend),
):
    try:
        result = await analytics.get_counters(
            backend,
            subject_id or analytics.ALL_SUBJECTS,
            active_window_days=settings.active_window_days,
        )
    except AnalyticsError as e:
        raise _http_error(e)

    return {"success": True, "data": result.model_dump(mode="json")}


@router.get("/analytics/periods/{period_type}", response_model=PeriodListResponse, tags=["analytics"])
async def get_period(
    period_type: PeriodType,
    subject_id: str | None = Query(None),
    limit: int = Query(30, ge=1, le=500),
    backend: Backend = Depends(get_backend),
):
    try:
        records = await analytics.list_period(backend, period_type, subject_id=subject_id, limit=limit)
    except AnalyticsError as e:
        raise _http_error(e)

    return PeriodListResponse(period_type=period_type, records=records, total=len(records))


@router.get("/analytics/summary", response_model=SummaryResponse, tags=["analytics"])
async def get_summary(backend: Backend = Depends(get_backend)):
    try:
        return await analytics.summarize(backend)
    except AnalyticsError as e:
        raise _http_error(e)


# ── Retention ───────────────────────────────────────────

@router.post("/analytics/prune", tags=["analytics"])
async def prune(backend: Backend = Depends(get_backend)):
    try:
        removed = await analytics.prune_expired(
            backend,
            daily_days=settings.daily_retention_days,
            weekly_buckets=settings.weekly_retention_buckets,
            monthly_buckets=settings.monthly_retention_buckets,
        )
    except AnalyticsError as e:
        raise _http_error(e)

    return {"success": True, "removed": removed}
