"""Feed cycle orchestration and the polling loop around it."""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from transit_feed.config import Settings, get_settings
from transit_feed.logging import bind_log_context, clear_log_context, get_logger
from transit_feed.services.feed.builder import FeedBuilder
from transit_feed.services.feed.decoder import DecodeError_, GtfsRtDecoder
from transit_feed.services.feed.entities import FeedSnapshot, TripRemoval
from transit_feed.services.feed.fetcher import FeedFetchError, RemoteFeedFetcher
from transit_feed.services.feed.publisher import FeedPublishError, FeedPublisher
from transit_feed.services.feed.reconciliation import AbsenceDetector
from transit_feed.services.feed.removals import apply_removals
from transit_feed.services.feed.repositories import (
    BusTramRepository,
    PlannedDataRepository,
    RailRepository,
)
from transit_feed.services.realtime.errors import MalformedRowError
from transit_feed.services.realtime.rows import bus_tram_trip_from_row, rail_trip_from_row
from transit_feed.services.realtime.trip_update import TripContext

logger = get_logger(__name__)

# Published feed names
FEED_TRAIN_UPDATES = "trainUpdates"
FEED_TRIP_UPDATES = "tripUpdates"
FEED_REMOTE = "remote"


@dataclass
class CycleReport:
    """Summary of one feed cycle."""

    cycle_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    cycle_count: int = 0
    started_at: str = ""
    ended_at: str = ""
    duration_ms: int = 0
    status: str = "error"
    error: Optional[str] = None
    removal_count: int = 0
    feeds: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "cycle_count": self.cycle_count,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "error": self.error,
            "removal_count": self.removal_count,
            "feeds": self.feeds,
        }


def rail_operating_window(
    now: datetime, previous_day_cutoff_hour: int = 4, next_day_cutoff_hour: int = 23
) -> tuple[date, date]:
    """First and last operating date whose rail trips may be running at local ``now``."""
    today = now.date()
    first = today - timedelta(days=1) if now.hour < previous_day_cutoff_hour else today
    last = today + timedelta(days=1) if now.hour >= next_day_cutoff_hour else today
    return first, last


class FeedWorker:
    """Runs feed cycles: fetch, transform, apply removals, publish.

    Usage:
        worker = FeedWorker(settings)
        await worker.start()   # launches background task
        await worker.stop()    # cancels background task

        # Or run a single cycle:
        report = await worker.run_once()

    Every snapshot of a cycle is encoded before any file is written, so a
    cycle that fails while fetching, building or encoding leaves every
    previously published file untouched.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        rail_repository: Optional[RailRepository] = None,
        bus_tram_repository: Optional[BusTramRepository] = None,
        planned_repository: Optional[PlannedDataRepository] = None,
        publisher: Optional[FeedPublisher] = None,
        fetcher: Optional[RemoteFeedFetcher] = None,
        decoder: Optional[GtfsRtDecoder] = None,
    ) -> None:
        settings = settings or get_settings()
        self._poll_interval = settings.feed_poll_interval_sec
        self._removals_refresh_interval = settings.removals_refresh_interval_sec
        self._rail_horizon = timedelta(minutes=settings.rail_horizon_minutes)
        self._previous_day_cutoff_hour = settings.previous_day_cutoff_hour
        self._next_day_cutoff_hour = settings.next_day_cutoff_hour
        self._bus_tram_enabled = settings.bus_tram_feed_enabled
        self._remote_feed_url = settings.remote_feed_url
        self._timezone = ZoneInfo(settings.feed_timezone)

        self._rail_repository = rail_repository or RailRepository(
            agency=settings.rail_agency_code
        )
        self._bus_tram_repository = bus_tram_repository or BusTramRepository(
            rail_agency=settings.rail_agency_code, timezone=settings.feed_timezone
        )
        self._planned_repository = planned_repository or PlannedDataRepository(
            agency=settings.rail_agency_code,
            min_train_number=settings.replacement_service_min_train_number,
        )
        self._publisher = publisher or FeedPublisher(settings.feed_publish_dir)
        self._fetcher = fetcher or RemoteFeedFetcher(
            timeout_sec=settings.remote_feed_timeout_sec,
            max_retries=settings.remote_feed_max_retries,
            backoff_base=settings.remote_feed_backoff_base,
        )
        self._decoder = decoder or GtfsRtDecoder()

        context = TripContext.from_settings(settings)
        self._rail_builder = FeedBuilder(
            FEED_TRAIN_UPDATES, context, max_workers=settings.feed_transform_workers
        )
        self._bus_tram_builder = FeedBuilder(
            FEED_TRIP_UPDATES, context, max_workers=settings.feed_transform_workers
        )
        self._absence_detector = AbsenceDetector(
            self._planned_repository,
            self._rail_repository,
            timezone=self._timezone,
            previous_day_cutoff_hour=settings.previous_day_cutoff_hour,
            next_day_cutoff_hour=settings.next_day_cutoff_hour,
        )

        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._cycle_count = 0
        self._last_cycle_at: datetime | None = None
        self._last_report: CycleReport | None = None
        self._removals: list[TripRemoval] = []
        self._removals_refreshed_at: datetime | None = None
        self._removals_refreshed_monotonic: float | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_cycle_at(self) -> datetime | None:
        return self._last_cycle_at

    @property
    def publisher(self) -> FeedPublisher:
        return self._publisher

    @property
    def removals(self) -> list[TripRemoval]:
        return list(self._removals)

    def last_report(self) -> Optional[Dict[str, Any]]:
        return self._last_report.to_dict() if self._last_report else None

    async def start(self) -> None:
        """Start the background cycle loop."""
        if self._running:
            logger.warning("Worker already running, ignoring start request")
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Feed worker started", poll_interval_sec=self._poll_interval)

    async def stop(self) -> None:
        """Stop the background cycle loop."""
        if not self._running:
            return

        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Feed worker stopped")

    async def run_once(self) -> Dict[str, Any]:
        """Run a single feed cycle; cycles never overlap.

        Returns:
            Report dict of the cycle.
        """
        async with self._lock:
            report = await self._run_cycle()
        self._last_report = report
        return report.to_dict()

    async def refresh_removals(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Recompute the removal list; on failure the previous list is kept."""
        try:
            removals = await self._absence_detector.find_absent_trips(now)
        except Exception as exc:
            logger.error(
                "Removal list refresh failed, keeping previous list",
                removal_count=len(self._removals),
                error=str(exc),
            )
            return {
                "status": "error",
                "error": str(exc),
                "removal_count": len(self._removals),
            }

        self._removals = removals
        self._removals_refreshed_at = datetime.now(timezone.utc)
        self._removals_refreshed_monotonic = time.monotonic()
        return {
            "status": "ok",
            "error": None,
            "removal_count": len(removals),
            "refreshed_at": self._removals_refreshed_at.isoformat(),
        }

    async def get_status(self) -> Dict[str, Any]:
        """Current worker status for health/meta endpoints."""
        return {
            "running": self._running,
            "cycle_count": self._cycle_count,
            "last_cycle_at": self._last_cycle_at.isoformat() if self._last_cycle_at else None,
            "last_status": self._last_report.status if self._last_report else None,
            "poll_interval_sec": self._poll_interval,
            "removal_count": len(self._removals),
            "removals_refreshed_at": (
                self._removals_refreshed_at.isoformat() if self._removals_refreshed_at else None
            ),
        }

    async def _poll_loop(self) -> None:
        """Main loop that runs until stopped."""
        while self._running:
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Feed cycle failed unexpectedly", exc_info=exc)

            try:
                await asyncio.sleep(self._poll_interval)
            except asyncio.CancelledError:
                break

    def _removals_due(self) -> bool:
        if self._removals_refreshed_monotonic is None:
            return True
        elapsed = time.monotonic() - self._removals_refreshed_monotonic
        return elapsed >= self._removals_refresh_interval

    async def _run_cycle(self) -> CycleReport:
        self._cycle_count += 1
        started = datetime.now(timezone.utc)
        self._last_cycle_at = started
        report = CycleReport(cycle_count=self._cycle_count, started_at=started.isoformat())

        bind_log_context(cycle_id=report.cycle_id)
        logger.info("Starting feed cycle", cycle_count=self._cycle_count)

        try:
            if self._removals_due():
                await self.refresh_removals()
            report.removal_count = len(self._removals)

            snapshots = await self._build_snapshots(started, report)

            prepared = [self._publisher.prepare(snapshot) for snapshot in snapshots]
            for info in self._publisher.publish(prepared):
                report.feeds.setdefault(info["name"], {}).update(info)

            report.status = "ok"

        except (MalformedRowError, FeedPublishError) as exc:
            report.error = str(exc)
            logger.error("Feed cycle aborted", error=str(exc))

        except Exception as exc:
            report.error = f"{type(exc).__name__}: {exc}"
            logger.error("Unexpected feed cycle error", exc_info=exc)

        if self._remote_feed_url:
            report.feeds[FEED_REMOTE] = await self._mirror_remote(report.cycle_id)

        ended = datetime.now(timezone.utc)
        report.ended_at = ended.isoformat()
        report.duration_ms = int((ended - started).total_seconds() * 1000)
        logger.info("Feed cycle complete", status=report.status, duration_ms=report.duration_ms)
        clear_log_context()
        return report

    async def _build_snapshots(self, started: datetime, report: CycleReport) -> list[FeedSnapshot]:
        """Fetch every source, then transform; nothing is published from here."""
        local_now = started.astimezone(self._timezone)
        first_date, last_date = rail_operating_window(
            local_now, self._previous_day_cutoff_hour, self._next_day_cutoff_hour
        )

        rail_rows = await self._rail_repository.fetch_rail_updates(
            first_date, last_date, started - self._rail_horizon
        )
        bus_tram_rows: list[dict[str, Any]] = []
        if self._bus_tram_enabled:
            bus_tram_rows = await self._bus_tram_repository.fetch_bus_tram_updates(
                local_now.date()
            )

        rail_records = [rail_trip_from_row(row) for row in rail_rows]
        bus_tram_records = [bus_tram_trip_from_row(row) for row in bus_tram_rows]
        timestamp = int(started.timestamp())

        rail_snapshot, rail_report = await asyncio.to_thread(
            self._rail_builder.build, rail_records, timestamp
        )
        rail_snapshot = apply_removals(rail_snapshot, self._removals)
        report.feeds[FEED_TRAIN_UPDATES] = rail_report.to_dict()
        snapshots = [rail_snapshot]

        if self._bus_tram_enabled:
            bus_tram_snapshot, bus_tram_report = await asyncio.to_thread(
                self._bus_tram_builder.build, bus_tram_records, timestamp
            )
            report.feeds[FEED_TRIP_UPDATES] = bus_tram_report.to_dict()
            snapshots.append(bus_tram_snapshot)

        return snapshots

    async def _mirror_remote(self, cycle_id: str) -> Dict[str, Any]:
        """Download, validate and republish the upstream feed.

        Isolated from the rest of the cycle: a failure keeps the previous mirror.
        """
        result: Dict[str, Any] = {"status": "error", "entity_count": 0, "error": None}
        try:
            data, feed_hash = await self._fetcher.fetch(self._remote_feed_url or "", cycle_id)
            feed = self._decoder.decode(data, FEED_REMOTE, cycle_id)
            result["entity_count"] = self._decoder.get_entity_count(feed)
            result["feed_hash"] = feed_hash
            result.update(self._publisher.publish_bytes(FEED_REMOTE, data))
            result["status"] = "ok"
        except (FeedFetchError, DecodeError_, FeedPublishError) as exc:
            result["error"] = str(exc)
            logger.error("Upstream mirror failed", cycle_id=cycle_id, error=str(exc))
        return result
