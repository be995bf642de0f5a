"""Protocol-level value types for one published feed snapshot.

These mirror the GTFS-Realtime TripUpdate structure without depending on
the protobuf bindings; the encoder is the only place that knows the wire
format.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Optional


class ScheduleRelationship(str, Enum):
    """Trip schedule relationship."""

    SCHEDULED = "SCHEDULED"
    ADDED = "ADDED"
    CANCELED = "CANCELED"
    REPLACEMENT = "REPLACEMENT"
    DELETED = "DELETED"


class StopRelationship(str, Enum):
    """Per-stop schedule relationship."""

    SCHEDULED = "SCHEDULED"
    SKIPPED = "SKIPPED"
    NO_DATA = "NO_DATA"


@dataclass(frozen=True)
class StopTimeEvent:
    time: Optional[int]
    delay: int = 0


@dataclass(frozen=True)
class StopTimeUpdate:
    stop_sequence: int
    stop_id: Optional[str]
    arrival: StopTimeEvent
    departure: StopTimeEvent
    schedule_relationship: StopRelationship = StopRelationship.SCHEDULED


@dataclass(frozen=True)
class TripDescriptor:
    trip_id: str
    start_date: str
    start_time: Optional[str] = None
    route_id: Optional[str] = None
    direction_id: Optional[int] = None
    schedule_relationship: ScheduleRelationship = ScheduleRelationship.SCHEDULED


@dataclass(frozen=True)
class FeedTripEntity:
    """One trip entity of a snapshot."""

    trip: TripDescriptor
    stop_time_updates: tuple[StopTimeUpdate, ...] = ()
    timestamp: Optional[int] = None
    shape_id: Optional[str] = None

    @property
    def id(self) -> str:
        return f"{self.trip.trip_id}_{self.trip.start_date}"

    @property
    def schedule_relationship(self) -> ScheduleRelationship:
        return self.trip.schedule_relationship

    def as_deleted(self) -> FeedTripEntity:
        """Copy of this entity marked DELETED, without stop time updates."""
        return replace(
            self,
            trip=replace(self.trip, schedule_relationship=ScheduleRelationship.DELETED),
            stop_time_updates=(),
        )


@dataclass(frozen=True)
class TripRemoval:
    """A planned trip that must be published as DELETED on an operating date."""

    trip_id: str
    operating_date: date

    @property
    def start_date(self) -> str:
        return self.operating_date.strftime("%Y%m%d")

    def to_entity(self) -> FeedTripEntity:
        return FeedTripEntity(
            trip=TripDescriptor(
                trip_id=self.trip_id,
                start_date=self.start_date,
                schedule_relationship=ScheduleRelationship.DELETED,
            )
        )


@dataclass(frozen=True)
class FeedSnapshot:
    """A full-dataset snapshot: every entity of one cycle plus its assembly time."""

    name: str
    timestamp: int
    entities: tuple[FeedTripEntity, ...] = field(default_factory=tuple)

    @property
    def entity_count(self) -> int:
        return len(self.entities)

    def relationship_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entity in self.entities:
            key = entity.schedule_relationship.value
            counts[key] = counts.get(key, 0) + 1
        return counts
