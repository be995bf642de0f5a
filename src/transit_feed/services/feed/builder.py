"""Per-cycle transformation of source trips into one feed snapshot."""

from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from transit_feed.logging import get_logger
from transit_feed.services.feed.assembler import assemble_entity
from transit_feed.services.feed.entities import (
    FeedSnapshot,
    FeedTripEntity,
    ScheduleRelationship,
)
from transit_feed.services.realtime.errors import TripInvariantError
from transit_feed.services.realtime.trip_update import TripContext, TripRecord, TripUpdate

logger = get_logger(__name__)


@dataclass
class BuildReport:
    """Summary of one snapshot build."""

    name: str = ""
    trip_count: int = 0
    emitted_count: int = 0
    suppressed_count: int = 0
    dropped_count: int = 0
    duplicate_count: int = 0
    synthetic_deleted_count: int = 0
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "trip_count": self.trip_count,
            "emitted_count": self.emitted_count,
            "suppressed_count": self.suppressed_count,
            "dropped_count": self.dropped_count,
            "duplicate_count": self.duplicate_count,
            "synthetic_deleted_count": self.synthetic_deleted_count,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class _TripOutcome:
    entity: Optional[FeedTripEntity] = None
    synthetic: bool = False
    dropped: bool = False


class FeedBuilder:
    """Builds full-dataset snapshots for one source.

    Trips are transformed independently on a thread pool. Synthetic trips
    (no planned trip id) published as ADDED are remembered between builds;
    once one disappears from the source it is published a last time as
    DELETED and forgotten.
    """

    def __init__(
        self,
        name: str,
        context: TripContext,
        max_workers: int = 0,
    ) -> None:
        self.name = name
        self._context = context
        self._max_workers = max_workers or (os.cpu_count() or 1)
        self._synthetic_trips: dict[str, FeedTripEntity] = {}

    @property
    def synthetic_trip_ids(self) -> list[str]:
        return list(self._synthetic_trips)

    def build(
        self, records: Sequence[TripRecord], timestamp: Optional[int] = None
    ) -> tuple[FeedSnapshot, BuildReport]:
        """Transform all trips of one cycle into a snapshot."""
        started = time.monotonic()
        report = BuildReport(name=self.name, trip_count=len(records))

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix=f"feed-{self.name}"
        ) as executor:
            outcomes = list(executor.map(self._transform, records))

        entities: dict[str, FeedTripEntity] = {}
        seen_synthetic: set[str] = set()

        for outcome in outcomes:
            if outcome.dropped:
                report.dropped_count += 1
                continue
            if outcome.entity is None:
                report.suppressed_count += 1
                continue

            entity = outcome.entity
            if entity.id in entities:
                report.duplicate_count += 1
                logger.warning(
                    "Duplicate feed entity id, keeping first",
                    feed=self.name,
                    entity_id=entity.id,
                )
                continue
            entities[entity.id] = entity

            if outcome.synthetic and entity.schedule_relationship is ScheduleRelationship.ADDED:
                seen_synthetic.add(entity.trip.trip_id)
                self._synthetic_trips[entity.trip.trip_id] = entity

        for deleted in self._collect_disappeared(seen_synthetic):
            if deleted.id not in entities:
                entities[deleted.id] = deleted
                report.synthetic_deleted_count += 1

        report.emitted_count = len(entities)
        report.duration_ms = int((time.monotonic() - started) * 1000)

        snapshot = FeedSnapshot(
            name=self.name,
            timestamp=timestamp if timestamp is not None else int(time.time()),
            entities=tuple(entities.values()),
        )

        logger.info("Feed snapshot built", **report.to_dict())
        return snapshot, report

    def _transform(self, record: TripRecord) -> _TripOutcome:
        try:
            trip = TripUpdate.from_record(record, self._context)
            entity = assemble_entity(trip)
        except TripInvariantError as exc:
            logger.warning(
                "Dropping trip",
                feed=self.name,
                trip_id=record.trip_id,
                train_number=record.train_number,
                journey_number=record.journey_number,
                error=str(exc),
            )
            return _TripOutcome(dropped=True)

        return _TripOutcome(entity=entity, synthetic=not trip.has_planned_trip)

    def _collect_disappeared(self, seen: set[str]) -> list[FeedTripEntity]:
        gone = [trip_id for trip_id in self._synthetic_trips if trip_id not in seen]
        if not gone:
            return []

        logger.info(
            "Synthetic trips disappeared from source, publishing as deleted",
            feed=self.name,
            trip_ids=gone,
        )
        return [self._synthetic_trips.pop(trip_id).as_deleted() for trip_id in gone]
