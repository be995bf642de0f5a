"""Admin routes for running feed cycles on demand."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from transit_feed.logging import get_logger
from transit_feed.routers.feeds import get_feed_worker
from transit_feed.services.feed.worker import FeedWorker

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class RunOnceResponse(BaseModel):
    """Response for the run-once endpoint."""

    cycle_id: str
    cycle_count: int
    started_at: str
    ended_at: str = ""
    duration_ms: int = 0
    status: str
    error: Optional[str] = None
    removal_count: int = 0
    feeds: Dict[str, Any]


class RemovalsRefreshResponse(BaseModel):
    status: str
    error: Optional[str] = None
    removal_count: int
    refreshed_at: Optional[str] = None


# TODO: Protect the admin routes once the deployment has an auth proxy in front of it.
@router.post(
    "/feed/run-once",
    response_model=RunOnceResponse,
    summary="Run one feed cycle now",
    description="Fetch, transform and publish synchronously; waits for a running cycle first.",
)
async def run_feed_once(worker: FeedWorker = Depends(get_feed_worker)) -> Dict[str, Any]:
    try:
        return await worker.run_once()
    except Exception as exc:
        logger.error("Run-once failed unexpectedly", exc_info=exc)
        raise HTTPException(
            status_code=500,
            detail=f"Feed cycle failed unexpectedly: {type(exc).__name__}: {exc}",
        ) from exc


@router.post(
    "/removals/refresh",
    response_model=RemovalsRefreshResponse,
    summary="Recompute the removal list now",
)
async def refresh_removals(worker: FeedWorker = Depends(get_feed_worker)) -> Dict[str, Any]:
    return await worker.refresh_removals()
