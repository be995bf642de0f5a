"""Change tags reported by the realtime sources.

Tags are the only signal used to classify cancellations, platform changes
and route changes. Rail tags come from the journey (trip-level) and from
each station visit (stop-level); the bus/tram source only reports a coarse
per-stop status.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable

from transit_feed.services.realtime.errors import UnknownChangeTagError


class JourneyChangeType(str, Enum):
    """Trip-level change codes (rail)."""

    EXTRA_TRAIN = "24"
    CANCELLED_TRAIN = "25"
    CHANGE_STOP_BEHAVIOUR = "30"
    DIVERTED_TRAIN = "33"
    SHORTENED_DESTINATION = "34"
    EXTENDED_DESTINATION = "35"
    ORIGIN_SHORTENING = "36"
    ORIGIN_EXTENSION = "37"
    CHANGED_DESTINATION = "41"
    CHANGED_ORIGIN = "42"
    NOT_ACTUAL_LOGICAL_JOURNEY = "50"
    TRAIN_REPLACEMENT_SERVICE = "51"
    NOT_LOGICAL_INTERCITY = "80"
    NOT_LOGICAL_SPRINTER = "81"


class StationChangeType(str, Enum):
    """Stop-level change codes (rail)."""

    DEPARTURE_DELAY = "10"
    ARRIVAL_DELAY = "11"
    DEPARTURE_TIME_CHANGE = "12"
    ARRIVAL_TIME_CHANGE = "13"
    DEPARTURE_TRACK_CHANGE = "20"
    ARRIVAL_TRACK_CHANGE = "21"
    FIX_DEPARTURE_TRACK = "22"
    FIX_ARRIVAL_TRACK = "23"
    EXTRA_DEPARTURE = "31"
    CANCELLED_DEPARTURE = "32"
    EXTRA_ARRIVAL = "38"
    CANCELLED_ARRIVAL = "39"
    EXTRA_PASSING = "43"
    CANCELLED_PASSING = "44"


class TripStopStatus(str, Enum):
    """Coarse per-stop status (bus/tram)."""

    UNKNOWN = "UNKNOWN"
    DRIVING = "DRIVING"
    PLANNED = "PLANNED"
    PASSED = "PASSED"
    ARRIVED = "ARRIVED"
    CANCEL = "CANCEL"


ROUTE_ALTERATION_TYPES = frozenset(
    {
        JourneyChangeType.CHANGE_STOP_BEHAVIOUR,
        JourneyChangeType.DIVERTED_TRAIN,
        JourneyChangeType.SHORTENED_DESTINATION,
        JourneyChangeType.EXTENDED_DESTINATION,
        JourneyChangeType.ORIGIN_SHORTENING,
        JourneyChangeType.ORIGIN_EXTENSION,
        JourneyChangeType.CHANGED_DESTINATION,
        JourneyChangeType.CHANGED_ORIGIN,
    }
)

TRACK_CHANGE_TYPES = frozenset(
    {
        StationChangeType.ARRIVAL_TRACK_CHANGE,
        StationChangeType.DEPARTURE_TRACK_CHANGE,
        StationChangeType.FIX_ARRIVAL_TRACK,
        StationChangeType.FIX_DEPARTURE_TRACK,
    }
)

EXTRA_STOP_TYPES = frozenset(
    {
        StationChangeType.EXTRA_PASSING,
        StationChangeType.EXTRA_ARRIVAL,
        StationChangeType.EXTRA_DEPARTURE,
    }
)


def raw_change_code(change: Any) -> str:
    """Extract the change code from a raw tag.

    The sources hand out tags as bare codes ("32", 32) or as objects
    carrying a ``changeType`` key.
    """
    if isinstance(change, dict):
        change = change.get("changeType", change.get("change_type"))
    if change is None:
        return ""
    return str(change).strip()


def parse_journey_changes(raw: Iterable[Any]) -> tuple[JourneyChangeType, ...]:
    """Map raw trip-level codes onto JourneyChangeType.

    Raises:
        UnknownChangeTagError: If a code has no known meaning.
    """
    parsed: list[JourneyChangeType] = []
    for change in raw:
        code = raw_change_code(change)
        try:
            parsed.append(JourneyChangeType(code))
        except ValueError as exc:
            raise UnknownChangeTagError(f"Unknown journey change code {code!r}") from exc
    return tuple(parsed)


def parse_station_changes(raw: Iterable[Any]) -> tuple[StationChangeType, ...]:
    """Map raw stop-level codes onto StationChangeType.

    Raises:
        UnknownChangeTagError: If a code has no known meaning.
    """
    parsed: list[StationChangeType] = []
    for change in raw:
        code = raw_change_code(change)
        try:
            parsed.append(StationChangeType(code))
        except ValueError as exc:
            raise UnknownChangeTagError(f"Unknown station change code {code!r}") from exc
    return tuple(parsed)


def parse_trip_stop_status(raw: Any) -> TripStopStatus:
    """Map a bus/tram status string onto TripStopStatus (None means UNKNOWN)."""
    if raw is None or raw == "":
        return TripStopStatus.UNKNOWN
    try:
        return TripStopStatus(str(raw).strip().upper())
    except ValueError as exc:
        raise UnknownChangeTagError(f"Unknown trip stop status {raw!r}") from exc
