"""Published feed files and cycle metadata."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from transit_feed.logging import get_logger
from transit_feed.services.feed.worker import FeedWorker

logger = get_logger(__name__)

router = APIRouter(tags=["feeds"])

PROTOBUF_MEDIA_TYPE = "application/x-protobuf"


def get_feed_worker(request: Request) -> FeedWorker:
    """The worker owned by the application lifespan."""
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        raise HTTPException(status_code=503, detail="Feed worker is not initialised")
    return worker


# --- Response schemas ---


class LastCycleResponse(BaseModel):
    """Response for /meta/last-cycle."""

    cycle_id: str
    cycle_count: int
    started_at: str
    ended_at: str = ""
    duration_ms: int = 0
    status: str
    error: Optional[str] = None
    removal_count: int = 0
    feeds: Dict[str, Any]


class PublishedFeed(BaseModel):
    name: str
    published_at: str
    size_bytes: int
    entity_count: Optional[int] = None


class PublishedFeedsResponse(BaseModel):
    feeds: List[PublishedFeed]


def _published_file(worker: FeedWorker, name: str, fmt: str) -> bytes:
    data = worker.publisher.read(name, fmt)
    if data is None:
        raise HTTPException(status_code=404, detail=f"Feed {name}.{fmt} has not been published")
    return data


@router.get("/feeds", response_model=PublishedFeedsResponse, summary="List published feeds")
async def list_feeds(worker: FeedWorker = Depends(get_feed_worker)) -> dict[str, Any]:
    return {"feeds": list(worker.publisher.published().values())}


@router.get("/feeds/{name}.pb", summary="Last published protobuf snapshot")
async def get_feed_protobuf(name: str, worker: FeedWorker = Depends(get_feed_worker)) -> Response:
    return Response(
        content=_published_file(worker, name, "pb"), media_type=PROTOBUF_MEDIA_TYPE
    )


@router.get("/feeds/{name}.json", summary="Last published JSON snapshot")
async def get_feed_json(name: str, worker: FeedWorker = Depends(get_feed_worker)) -> Response:
    return Response(content=_published_file(worker, name, "json"), media_type="application/json")


@router.get(
    "/meta/last-cycle",
    response_model=LastCycleResponse,
    summary="Report of the last feed cycle",
)
async def get_last_cycle(worker: FeedWorker = Depends(get_feed_worker)) -> dict[str, Any]:
    report = worker.last_report()
    if report is None:
        raise HTTPException(status_code=404, detail="No feed cycle has run yet")
    return report
