"""Per-stop temporal repair and classification.

A StopRecord holds the raw facts of one stop visit exactly as a source
reported them. StopUpdate.from_record turns those into a consistent
(arrival, departure) pair plus a handful of classification flags. Both
types are immutable; trip-level repairs produce new StopUpdate values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, NamedTuple, Optional

from transit_feed.services.realtime.changes import (
    EXTRA_STOP_TYPES,
    TRACK_CHANGE_TYPES,
    StationChangeType,
    TripStopStatus,
    parse_station_changes,
    parse_trip_stop_status,
)

# Used when a stop reports a negative dwell and no planned dwell is known.
NEGATIVE_DWELL_FALLBACK = timedelta(seconds=60)

# Terminal arrivals are published this much before the nominal arrival.
TERMINAL_ARRIVAL_OFFSET = timedelta(seconds=1)


class Source(str, Enum):
    """Realtime source a record came from."""

    RAIL = "rail"
    BUS_TRAM = "bus_tram"


@dataclass(frozen=True)
class StopRecord:
    """Raw facts for one stop visit within one trip."""

    source: Source
    sequence: int
    stop_id: Optional[str] = None
    arrival_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    planned_arrival_time: Optional[datetime] = None
    planned_departure_time: Optional[datetime] = None
    arrival_delay: int = 0
    departure_delay: int = 0
    destination: Optional[str] = None
    name: Optional[str] = None

    # Rail only
    station_code: Optional[str] = None
    changes: tuple[Any, ...] = ()
    planned_track: Optional[str] = None
    actual_track: Optional[str] = None

    # Bus/tram only
    trip_stop_status: Optional[str] = None


@dataclass(frozen=True)
class StopClassification:
    """What a source says about a stop, reduced to booleans."""

    cancelled: bool = False
    arrival_cancelled: bool = False
    departure_cancelled: bool = False
    track_changed: bool = False
    extra_stop: bool = False


class TimedEvent(NamedTuple):
    """An arrival or departure: absolute time (None when unknown) and delay in seconds."""

    time: Optional[datetime]
    delay: int


def _classify_rail_stop(
    record: StopRecord, is_first_stop: bool, is_last_stop: bool
) -> StopClassification:
    tags = set(parse_station_changes(record.changes))

    cancelled_passing = StationChangeType.CANCELLED_PASSING in tags
    cancelled_arrival = StationChangeType.CANCELLED_ARRIVAL in tags
    cancelled_departure = StationChangeType.CANCELLED_DEPARTURE in tags

    # Cancelling one side of an interior stop only means the train no longer
    # calls there in that direction; at a terminal it removes the only side
    # that mattered.
    cancelled = (
        cancelled_passing
        or (cancelled_arrival and cancelled_departure)
        or (is_first_stop and cancelled_departure)
        or (is_last_stop and cancelled_arrival)
    )

    track_changed = False
    if not cancelled:
        track_changed = bool(tags & TRACK_CHANGE_TYPES) or (
            bool(record.planned_track)
            and bool(record.actual_track)
            and record.planned_track != record.actual_track
        )

    return StopClassification(
        cancelled=cancelled,
        arrival_cancelled=cancelled_arrival,
        departure_cancelled=cancelled_departure,
        track_changed=track_changed,
        extra_stop=bool(tags & EXTRA_STOP_TYPES),
    )


def _classify_bus_tram_stop(
    record: StopRecord, is_first_stop: bool, is_last_stop: bool  # noqa: ARG001
) -> StopClassification:
    cancelled = parse_trip_stop_status(record.trip_stop_status) is TripStopStatus.CANCEL
    return StopClassification(
        cancelled=cancelled,
        arrival_cancelled=cancelled,
        departure_cancelled=cancelled,
    )


_CLASSIFIERS: dict[Source, Callable[[StopRecord, bool, bool], StopClassification]] = {
    Source.RAIL: _classify_rail_stop,
    Source.BUS_TRAM: _classify_bus_tram_stop,
}


def classify_stop(
    record: StopRecord, *, is_first_stop: bool = False, is_last_stop: bool = False
) -> StopClassification:
    """Classify a stop with the rules of the source it came from.

    Raises:
        UnknownChangeTagError: If the record carries a code we cannot map.
    """
    return _CLASSIFIERS[record.source](record, is_first_stop, is_last_stop)


def derive_departure(record: StopRecord) -> Optional[datetime]:
    """Departure instant for a stop, repairing negative dwell times."""
    arrival = record.arrival_time
    departure = record.departure_time

    if arrival is not None and departure is not None:
        if departure >= arrival:
            return departure
        # Negative dwell: keep the realtime arrival and reapply the planned dwell.
        planned_arrival = record.planned_arrival_time
        planned_departure = record.planned_departure_time
        if planned_arrival is not None and planned_departure is not None:
            return max(arrival + (planned_departure - planned_arrival), arrival)
        return arrival + NEGATIVE_DWELL_FALLBACK

    if departure is not None:
        return departure
    if arrival is not None:
        return arrival

    if record.planned_departure_time is not None:
        return record.planned_departure_time
    return record.planned_arrival_time


def derive_arrival(record: StopRecord, *, is_last_stop: bool = False) -> Optional[datetime]:
    """Arrival instant for a stop."""
    arrival: Optional[datetime]

    if record.arrival_time is not None:
        arrival = record.arrival_time
    elif record.departure_time is not None:
        arrival = record.departure_time
    elif record.planned_arrival_time is not None:
        # The departure delay is assumed to apply uniformly to the whole stop.
        arrival = record.planned_arrival_time + timedelta(seconds=record.departure_delay)
    else:
        arrival = record.planned_departure_time

    if arrival is not None and is_last_stop:
        arrival -= TERMINAL_ARRIVAL_OFFSET

    return arrival


@dataclass(frozen=True)
class StopUpdate:
    """A stop visit with consistent times and its classification.

    Invariant: ``departure_time >= arrival_time`` whenever both are known.
    """

    record: StopRecord
    arrival_time: Optional[datetime]
    departure_time: Optional[datetime]
    arrival_delay: int
    departure_delay: int
    classification: StopClassification = field(default_factory=StopClassification)
    is_first_stop: bool = False
    is_last_stop: bool = False

    @classmethod
    def from_record(
        cls,
        record: StopRecord,
        *,
        is_first_stop: bool = False,
        is_last_stop: bool = False,
    ) -> StopUpdate:
        """Derive a StopUpdate from raw facts.

        Raises:
            UnknownChangeTagError: If the record carries a code we cannot map.
        """
        arrival = derive_arrival(record, is_last_stop=is_last_stop)
        departure = derive_departure(record)

        if arrival is not None and departure is not None and departure < arrival:
            departure = arrival

        return cls(
            record=record,
            arrival_time=arrival,
            departure_time=departure,
            arrival_delay=record.arrival_delay,
            departure_delay=record.departure_delay,
            classification=classify_stop(
                record, is_first_stop=is_first_stop, is_last_stop=is_last_stop
            ),
            is_first_stop=is_first_stop,
            is_last_stop=is_last_stop,
        )

    @property
    def source(self) -> Source:
        return self.record.source

    @property
    def stop_id(self) -> Optional[str]:
        return self.record.stop_id

    @property
    def sequence(self) -> int:
        return self.record.sequence

    @property
    def planned_arrival_time(self) -> Optional[datetime]:
        return self.record.planned_arrival_time

    @property
    def planned_departure_time(self) -> Optional[datetime]:
        return self.record.planned_departure_time

    @property
    def destination(self) -> Optional[str]:
        return self.record.destination

    @property
    def label(self) -> str:
        """Human readable stop reference for log lines."""
        return self.record.station_code or self.record.name or self.record.stop_id or "?"

    @property
    def is_cancelled(self) -> bool:
        return self.classification.cancelled

    @property
    def is_arrival_cancelled(self) -> bool:
        return self.classification.arrival_cancelled

    @property
    def is_departure_cancelled(self) -> bool:
        return self.classification.departure_cancelled

    @property
    def did_track_change(self) -> bool:
        return self.classification.track_changed

    @property
    def is_extra_stop(self) -> bool:
        return self.classification.extra_stop

    @property
    def arrival_event(self) -> TimedEvent:
        """Arrival as published; the origin has no arrival of its own."""
        if self.is_first_stop:
            return self.departure_event
        return TimedEvent(self.arrival_time, self.arrival_delay)

    @property
    def departure_event(self) -> TimedEvent:
        """Departure as published; the destination has no departure of its own."""
        if self.is_last_stop:
            if self.is_first_stop:
                return TimedEvent(self.departure_time, self.departure_delay)
            return TimedEvent(self.arrival_time, self.arrival_delay)
        return TimedEvent(self.departure_time, self.departure_delay)
