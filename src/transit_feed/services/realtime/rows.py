"""Raw source rows to StopRecord/TripRecord.

Rows come straight from the repositories: a mapping per trip with the
stops aggregated into a JSON array. Stop fields keep the camelCase keys
the aggregation queries build; trip fields are snake_case column aliases.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from transit_feed.services.realtime.errors import MalformedRowError
from transit_feed.services.realtime.stop_update import Source, StopRecord
from transit_feed.services.realtime.trip_update import TripRecord

# PostgreSQL interval text: "00:05:00", "-00:01:30", "1 day 02:00:00", "-1 days +23:59:00"
_INTERVAL_RE = re.compile(
    r"^(?:(?P<days>[+-]?\d+)\s+days?\s*)?"
    r"(?P<sign>[+-])?(?P<hours>\d+):(?P<minutes>\d{2}):(?P<seconds>\d{2})(?:\.\d+)?$"
)


def parse_delay(value: Any) -> int:
    """Normalize a delay magnitude to signed integer seconds.

    Accepts integer/float seconds, ``timedelta`` and interval text.
    Absent values are 0.

    Raises:
        MalformedRowError: If the value cannot be read as a delay.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise MalformedRowError(f"Invalid delay value: {value!r}")
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip()
    if re.fullmatch(r"[+-]?\d+", text):
        return int(text)

    match = _INTERVAL_RE.match(text)
    if match is None:
        raise MalformedRowError(f"Invalid delay value: {value!r}")

    seconds = (
        int(match["hours"]) * 3600 + int(match["minutes"]) * 60 + int(match["seconds"])
    )
    if match["sign"] == "-":
        seconds = -seconds
    if match["days"]:
        seconds += int(match["days"]) * 86400
    return seconds


def parse_instant(value: Any) -> Optional[datetime]:
    """Normalize a time value to an aware datetime.

    Accepts epoch seconds, ISO 8601 text and datetimes; naive values are UTC.
    ``None``, ``""`` and ``0`` mean unknown.

    Raises:
        MalformedRowError: If the value cannot be read as a time.
    """
    if value is None or value == "" or value == 0:
        return None
    if isinstance(value, bool):
        raise MalformedRowError(f"Invalid time value: {value!r}")
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if re.fullmatch(r"\d+(\.\d+)?", text):
            return datetime.fromtimestamp(float(text), tz=timezone.utc)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise MalformedRowError(f"Invalid time value: {value!r}") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise MalformedRowError(f"Invalid date value: {value!r}") from exc


def _optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedRowError(f"Invalid {field_name}: {value!r}") from exc


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _json_list(value: Any, field_name: str) -> list[Any]:
    """jsonb columns arrive decoded or as text depending on the driver codec."""
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise MalformedRowError(f"Invalid JSON in {field_name}") from exc
    if isinstance(value, dict):
        return [value]
    if not isinstance(value, list):
        raise MalformedRowError(f"Expected a list for {field_name}, got {type(value).__name__}")
    return value


def _sequence(stop: Mapping[str, Any], *keys: str) -> int:
    for key in keys:
        if stop.get(key) is not None:
            sequence = _optional_int(stop[key], key)
            if sequence is not None:
                return sequence
    raise MalformedRowError(f"Stop without sequence number: {dict(stop)!r}")


def rail_stop_from_row(stop: Mapping[str, Any]) -> StopRecord:
    """Read one element of a rail trip's aggregated stops."""
    if not isinstance(stop, Mapping):
        raise MalformedRowError(f"Expected a stop object, got {type(stop).__name__}")

    return StopRecord(
        source=Source.RAIL,
        sequence=_sequence(stop, "sequence", "stopOrder"),
        stop_id=_optional_str(stop.get("stopId")),
        arrival_time=parse_instant(stop.get("arrivalTime")),
        departure_time=parse_instant(stop.get("departureTime")),
        planned_arrival_time=parse_instant(stop.get("plannedArrivalTime")),
        planned_departure_time=parse_instant(stop.get("plannedDepartureTime")),
        arrival_delay=parse_delay(stop.get("arrivalDelay")),
        departure_delay=parse_delay(stop.get("departureDelay")),
        destination=_optional_str(stop.get("destination")),
        name=_optional_str(stop.get("name")),
        station_code=_optional_str(stop.get("stationCode")),
        changes=tuple(_json_list(stop.get("changes"), "changes")),
        planned_track=_optional_str(stop.get("plannedTrack")),
        actual_track=_optional_str(stop.get("actualTrack")),
    )


def bus_tram_stop_from_row(stop: Mapping[str, Any]) -> StopRecord:
    """Read one element of a bus/tram trip's aggregated stops."""
    if not isinstance(stop, Mapping):
        raise MalformedRowError(f"Expected a stop object, got {type(stop).__name__}")

    return StopRecord(
        source=Source.BUS_TRAM,
        sequence=_sequence(stop, "stopOrder", "sequence"),
        stop_id=_optional_str(stop.get("stopId")),
        arrival_time=parse_instant(stop.get("arrivalTime")),
        departure_time=parse_instant(stop.get("departureTime")),
        planned_arrival_time=parse_instant(stop.get("plannedArrivalTime")),
        planned_departure_time=parse_instant(stop.get("plannedDepartureTime")),
        arrival_delay=parse_delay(stop.get("arrivalDelay")),
        departure_delay=parse_delay(stop.get("departureDelay")),
        destination=_optional_str(stop.get("destination")),
        name=_optional_str(stop.get("name")),
        trip_stop_status=_optional_str(stop.get("tripStopStatus")),
    )


def rail_trip_from_row(row: Mapping[str, Any]) -> TripRecord:
    """Read one rail trip row.

    Raises:
        MalformedRowError: If the row or one of its stops cannot be read.
    """
    return TripRecord(
        source=Source.RAIL,
        stops=tuple(rail_stop_from_row(stop) for stop in _json_list(row.get("stops"), "stops")),
        trip_id=_optional_str(row.get("trip_id")),
        route_id=_optional_str(row.get("route_id")),
        direction_id=_optional_int(row.get("direction_id"), "direction_id"),
        shape_id=_optional_str(row.get("shape_id")),
        agency=_optional_str(row.get("agency")),
        changes=tuple(_json_list(row.get("changes"), "changes")),
        timestamp=parse_instant(row.get("timestamp")),
        train_number=_optional_int(row.get("train_number"), "train_number"),
        short_train_number=_optional_int(row.get("short_train_number"), "short_train_number"),
        train_type=_optional_str(row.get("train_type")),
    )


def bus_tram_trip_from_row(row: Mapping[str, Any]) -> TripRecord:
    """Read one bus/tram trip row.

    Raises:
        MalformedRowError: If the row or one of its stops cannot be read.
    """
    return TripRecord(
        source=Source.BUS_TRAM,
        stops=tuple(
            bus_tram_stop_from_row(stop) for stop in _json_list(row.get("stops"), "stops")
        ),
        trip_id=_optional_str(row.get("trip_id")),
        route_id=_optional_str(row.get("route_id")),
        direction_id=_optional_int(row.get("direction_id"), "direction_id"),
        shape_id=_optional_str(row.get("shape_id")),
        agency=_optional_str(row.get("agency")),
        timestamp=parse_instant(row.get("timestamp")),
        journey_number=_optional_int(row.get("journey_number"), "journey_number"),
        line_planning_number=_optional_str(row.get("line_planning_number")),
        operating_date=_parse_date(row.get("operating_date")),
    )
