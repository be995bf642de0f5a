"""Trip-level facts derived once over a trip's stops."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from transit_feed.config import Settings
from transit_feed.services.realtime.changes import (
    ROUTE_ALTERATION_TYPES,
    JourneyChangeType,
    parse_journey_changes,
)
from transit_feed.services.realtime.stop_collection import StopUpdateCollection
from transit_feed.services.realtime.stop_update import Source, StopRecord

UNKNOWN_START_TIME = "00:00:00"
UNKNOWN_START_DATE = "00000000"


@dataclass(frozen=True)
class TripRecord:
    """Raw facts for one vehicle journey as a source reported it."""

    source: Source
    stops: tuple[StopRecord, ...]
    trip_id: Optional[str] = None
    route_id: Optional[str] = None
    direction_id: Optional[int] = None
    shape_id: Optional[str] = None
    agency: Optional[str] = None
    changes: tuple[Any, ...] = ()
    timestamp: Optional[datetime] = None

    # Rail only
    train_number: Optional[int] = None
    short_train_number: Optional[int] = None
    train_type: Optional[str] = None

    # Bus/tram only
    journey_number: Optional[int] = None
    line_planning_number: Optional[str] = None
    operating_date: Optional[date] = None


@dataclass(frozen=True)
class TripContext:
    """Settings every trip is evaluated against."""

    timezone: ZoneInfo
    irregular_train_number_threshold: int = 900_000

    @classmethod
    def from_settings(cls, settings: Settings) -> TripContext:
        return cls(
            timezone=ZoneInfo(settings.feed_timezone),
            irregular_train_number_threshold=settings.irregular_train_number_threshold,
        )


@dataclass(frozen=True)
class TripClassification:
    cancelled: bool = False
    added: bool = False
    changed_trip: bool = False
    irregular: bool = False


def _classify_rail_trip(
    record: TripRecord, stops: StopUpdateCollection, context: TripContext  # noqa: ARG001
) -> TripClassification:
    tags = set(parse_journey_changes(record.changes))

    # A relief or otherwise synthetic train reports a long train number
    # whose short form differs (e.g. 301234 vs 1234).
    renumbered = (
        record.train_number is not None
        and record.short_train_number is not None
        and record.train_number != record.short_train_number
    )

    return TripClassification(
        cancelled=JourneyChangeType.CANCELLED_TRAIN in tags,
        added=(
            record.trip_id is None
            or JourneyChangeType.EXTRA_TRAIN in tags
            or renumbered
        ),
        changed_trip=bool(tags & ROUTE_ALTERATION_TYPES),
        irregular=(
            record.train_number is not None
            and record.train_number >= context.irregular_train_number_threshold
        ),
    )


def _classify_bus_tram_trip(
    record: TripRecord, stops: StopUpdateCollection, context: TripContext  # noqa: ARG001
) -> TripClassification:
    return TripClassification(
        cancelled=stops.all_cancelled,
        added=record.trip_id is None,
    )


_CLASSIFIERS: dict[
    Source, Callable[[TripRecord, StopUpdateCollection, TripContext], TripClassification]
] = {
    Source.RAIL: _classify_rail_trip,
    Source.BUS_TRAM: _classify_bus_tram_trip,
}


def _rail_synthetic_trip_id(record: TripRecord) -> str:
    return f"{record.train_number}_{record.train_type}_{record.agency}"


def _bus_tram_synthetic_trip_id(record: TripRecord) -> str:
    return f"{record.agency}_{record.line_planning_number}_{record.journey_number}"


_SYNTHETIC_IDS: dict[Source, Callable[[TripRecord], str]] = {
    Source.RAIL: _rail_synthetic_trip_id,
    Source.BUS_TRAM: _bus_tram_synthetic_trip_id,
}


@dataclass(frozen=True)
class TripUpdate:
    """One vehicle journey with repaired stops and its trip-level classification."""

    record: TripRecord
    stops: StopUpdateCollection
    classification: TripClassification
    context: TripContext

    @classmethod
    def from_record(cls, record: TripRecord, context: TripContext) -> TripUpdate:
        """Build the stop collection, repair it and classify the trip.

        Raises:
            TripInvariantError: If the trip has no stops or carries a code
                we cannot map.
        """
        stops = StopUpdateCollection.from_records(record.stops, trip_id=record.trip_id).repair()
        classification = _CLASSIFIERS[record.source](record, stops, context)
        return cls(record=record, stops=stops, classification=classification, context=context)

    @property
    def source(self) -> Source:
        return self.record.source

    @property
    def trip_id(self) -> Optional[str]:
        """Planned-data trip id, or None when the trip could not be matched."""
        return self.record.trip_id

    @property
    def has_planned_trip(self) -> bool:
        return self.record.trip_id is not None

    @property
    def synthetic_trip_id(self) -> str:
        """Identity minted from source fields for trips without a planned trip id."""
        return _SYNTHETIC_IDS[self.source](self.record)

    @property
    def route_id(self) -> Optional[str]:
        return self.record.route_id

    @property
    def direction_id(self) -> Optional[int]:
        return self.record.direction_id

    @property
    def shape_id(self) -> Optional[str]:
        return self.record.shape_id

    @property
    def is_cancelled(self) -> bool:
        return self.classification.cancelled

    @property
    def is_added(self) -> bool:
        return self.classification.added

    @property
    def has_changed_trip(self) -> bool:
        return self.classification.changed_trip

    @property
    def is_irregular(self) -> bool:
        return self.classification.irregular

    @property
    def had_platform_change(self) -> bool:
        return self.stops.had_platform_change

    @property
    def had_changed_stops(self) -> bool:
        return self.stops.had_extra_stops

    @property
    def destination(self) -> Optional[str]:
        return self.stops.destination

    def _local_start(self) -> Optional[datetime]:
        departure = self.stops.first().departure_time
        if departure is None:
            return None
        if departure.tzinfo is None:
            departure = departure.replace(tzinfo=timezone.utc)
        return departure.astimezone(self.context.timezone)

    @property
    def start_time(self) -> str:
        """Local departure time of the first stop as HH:MM:SS."""
        start = self._local_start()
        if start is None:
            return UNKNOWN_START_TIME
        return start.strftime("%H:%M:%S")

    @property
    def start_date(self) -> str:
        """Local date of the first stop's departure as YYYYMMDD."""
        start = self._local_start()
        if start is None:
            return UNKNOWN_START_DATE
        return start.strftime("%Y%m%d")

    @property
    def timestamp(self) -> Optional[int]:
        """Observation time in epoch seconds, if the source reported one."""
        if self.record.timestamp is None:
            return None
        return int(self.record.timestamp.timestamp())
