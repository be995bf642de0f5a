"""Schedule-relationship decision and stop-time event synthesis."""

from __future__ import annotations

from typing import Optional

from transit_feed.logging import get_logger
from transit_feed.services.feed.entities import (
    FeedTripEntity,
    ScheduleRelationship,
    StopRelationship,
    StopTimeEvent,
    StopTimeUpdate,
    TripDescriptor,
)
from transit_feed.services.realtime.stop_update import StopUpdate, TimedEvent
from transit_feed.services.realtime.trip_update import TripUpdate

logger = get_logger(__name__)

# Keeps a synthetic or renumbered trip id apart from any real planned id.
ADDED_TRIP_SUFFIX = "_added"


def decide_schedule_relationship(
    *,
    has_changed_trip: bool = False,
    had_platform_change: bool = False,
    had_changed_stops: bool = False,
    is_irregular: bool = False,
    is_added: bool = False,
    is_cancelled: bool = False,
) -> Optional[ScheduleRelationship]:
    """Apply the relationship rules in priority order; later rules win.

    Returns None when the trip must not be published at all: an added trip
    that is also cancelled never existed in the published schedule.
    """
    if is_added and is_cancelled:
        return None

    relationship = ScheduleRelationship.SCHEDULED
    if has_changed_trip or had_platform_change or had_changed_stops or is_irregular:
        relationship = ScheduleRelationship.REPLACEMENT
    if is_added:
        relationship = ScheduleRelationship.ADDED
    if is_cancelled:
        relationship = ScheduleRelationship.CANCELED
    return relationship


def _event(timed: TimedEvent) -> StopTimeEvent:
    time = int(timed.time.timestamp()) if timed.time is not None else None
    return StopTimeEvent(time=time, delay=timed.delay)


def stop_time_update(stop: StopUpdate) -> StopTimeUpdate:
    """Convert one repaired stop into its published stop time update.

    Cancelled stops stay in the list as SKIPPED and keep both events.
    """
    return StopTimeUpdate(
        stop_sequence=stop.sequence,
        stop_id=stop.stop_id,
        arrival=_event(stop.arrival_event),
        departure=_event(stop.departure_event),
        schedule_relationship=(
            StopRelationship.SKIPPED if stop.is_cancelled else StopRelationship.SCHEDULED
        ),
    )


def dedupe_stop_keys(updates: list[StopTimeUpdate]) -> list[StopTimeUpdate]:
    """Keep the first occurrence of every stop key.

    Stops without a key are never considered duplicates.
    """
    seen: set[str] = set()
    kept: list[StopTimeUpdate] = []
    for update in updates:
        if update.stop_id is not None:
            if update.stop_id in seen:
                continue
            seen.add(update.stop_id)
        kept.append(update)
    return kept


def published_trip_id(trip: TripUpdate, relationship: ScheduleRelationship) -> str:
    trip_id = trip.trip_id or trip.synthetic_trip_id
    if relationship is ScheduleRelationship.ADDED:
        return f"{trip_id}{ADDED_TRIP_SUFFIX}"
    return trip_id


def assemble_entity(trip: TripUpdate) -> Optional[FeedTripEntity]:
    """Turn a TripUpdate into a feed entity, or None when it is suppressed."""
    is_added = trip.is_added or not trip.has_planned_trip
    relationship = decide_schedule_relationship(
        has_changed_trip=trip.has_changed_trip,
        had_platform_change=trip.had_platform_change,
        had_changed_stops=trip.had_changed_stops,
        is_irregular=trip.is_irregular,
        is_added=is_added,
        is_cancelled=trip.is_cancelled,
    )
    if relationship is None:
        logger.debug(
            "Suppressing added and cancelled trip",
            trip_id=trip.trip_id,
            synthetic_trip_id=trip.synthetic_trip_id,
        )
        return None

    updates: list[StopTimeUpdate] = []
    if relationship is not ScheduleRelationship.CANCELED:
        updates = [stop_time_update(stop) for stop in trip.stops]
        if trip.is_irregular:
            updates = dedupe_stop_keys(updates)

    return FeedTripEntity(
        trip=TripDescriptor(
            trip_id=published_trip_id(trip, relationship),
            route_id=trip.route_id,
            direction_id=trip.direction_id,
            start_time=trip.start_time,
            start_date=trip.start_date,
            schedule_relationship=relationship,
        ),
        stop_time_updates=tuple(updates),
        timestamp=trip.timestamp,
        shape_id=trip.shape_id,
    )
