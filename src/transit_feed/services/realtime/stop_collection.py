"""Ordered stop updates of one trip and the trip-level repairs over them."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional, overload

from transit_feed.logging import get_logger
from transit_feed.services.realtime.errors import EmptyStopCollectionError
from transit_feed.services.realtime.stop_update import StopRecord, StopUpdate

logger = get_logger(__name__)

ONE_SECOND = timedelta(seconds=1)

# Dwell time a train needs at a station; delay beyond it can be caught up there.
MIN_DWELL = timedelta(seconds=60)

# Dwell assumed when a repaired stop has no planned departure.
FALLBACK_DWELL = timedelta(seconds=30)


class StopUpdateCollection(Sequence[StopUpdate]):
    """Non-empty, sequence-ordered stops of one trip.

    Exactly one stop is flagged first (lowest sequence) and one last
    (highest sequence); a single-stop trip carries both flags on that stop.
    """

    def __init__(self, stops: Iterable[StopUpdate], trip_id: Optional[str] = None) -> None:
        self._stops: tuple[StopUpdate, ...] = tuple(stops)
        self._trip_id = trip_id
        if not self._stops:
            raise EmptyStopCollectionError(f"Trip {trip_id} has no stops")

    @classmethod
    def from_records(
        cls, records: Iterable[StopRecord], trip_id: Optional[str] = None
    ) -> StopUpdateCollection:
        """Order raw records by sequence and derive their stop updates.

        Raises:
            EmptyStopCollectionError: If there are no records.
            UnknownChangeTagError: If a record carries a code we cannot map.
        """
        ordered = sorted(records, key=lambda record: record.sequence)
        if not ordered:
            raise EmptyStopCollectionError(f"Trip {trip_id} has no stops")

        last_index = len(ordered) - 1
        return cls(
            (
                StopUpdate.from_record(
                    record,
                    is_first_stop=index == 0,
                    is_last_stop=index == last_index,
                )
                for index, record in enumerate(ordered)
            ),
            trip_id=trip_id,
        )

    @overload
    def __getitem__(self, index: int) -> StopUpdate: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[StopUpdate]: ...

    def __getitem__(self, index):  # type: ignore[no-untyped-def]
        return self._stops[index]

    def __len__(self) -> int:
        return len(self._stops)

    def __iter__(self) -> Iterator[StopUpdate]:
        return iter(self._stops)

    @property
    def trip_id(self) -> Optional[str]:
        return self._trip_id

    def first(self) -> StopUpdate:
        return self._stops[0]

    def last(self) -> StopUpdate:
        return self._stops[-1]

    # --- Aggregate predicates ---

    @property
    def all_cancelled(self) -> bool:
        return all(stop.is_cancelled for stop in self._stops)

    @property
    def any_cancelled(self) -> bool:
        return any(stop.is_cancelled for stop in self._stops)

    @property
    def had_platform_change(self) -> bool:
        return any(stop.did_track_change for stop in self._stops)

    @property
    def had_extra_stops(self) -> bool:
        return any(stop.is_extra_stop for stop in self._stops)

    def last_served_stop(self) -> Optional[StopUpdate]:
        """The last stop that is still called at, if any."""
        for stop in reversed(self._stops):
            if not stop.is_cancelled:
                return stop
        return None

    @property
    def destination(self) -> Optional[str]:
        """Destination of the last served stop, or of the last stop if none is served."""
        served = self.last_served_stop()
        if served is not None:
            return served.destination
        return self.last().destination

    # --- Repairs ---

    def repair(self) -> StopUpdateCollection:
        """Return a copy with non-increasing times fixed and delays carried into cancelled stops."""
        stops = list(self._stops)
        self._fix_non_increasing_times(stops)
        self._propagate_delays_to_cancelled_stops(stops)
        return StopUpdateCollection(stops, trip_id=self._trip_id)

    def _fix_non_increasing_times(self, stops: list[StopUpdate]) -> None:
        for index in range(1, len(stops)):
            current = stops[index]
            previous = stops[index - 1]

            if current.is_cancelled:
                continue
            if previous.is_cancelled or previous.is_departure_cancelled:
                continue

            previous_departure = previous.departure_time
            if previous_departure is None:
                continue

            arrival_bad = (
                not current.is_arrival_cancelled
                and current.arrival_time is not None
                and current.arrival_time < previous_departure
            )
            departure_bad = (
                not current.is_departure_cancelled
                and current.departure_time is not None
                and current.departure_time < previous_departure
            )
            if not arrival_bad and not departure_bad:
                continue

            logger.info(
                "Fixing non-increasing stop times",
                trip_id=self._trip_id,
                stop=current.label,
                sequence=current.sequence,
                arrival_bad=arrival_bad,
                departure_bad=departure_bad,
            )

            if arrival_bad:
                current = _fix_arrival(previous, current)
            if departure_bad:
                current = _fix_departure(current)

            stops[index] = _with_valid_dwell(current)

    def _propagate_delays_to_cancelled_stops(self, stops: list[StopUpdate]) -> None:
        last_served: Optional[StopUpdate] = None
        last_delay = 0
        last_departure: Optional[datetime] = None

        for index, stop in enumerate(stops):
            if not stop.is_cancelled:
                last_served = stop
                last_delay = stop.departure_delay if stop.departure_delay > 0 else stop.arrival_delay
                last_departure = _served_departure(stop, last_delay)
                continue

            if last_served is not None and last_departure is not None:
                repaired = _carry_delay(stop, last_delay, last_departure)
            else:
                repaired = _use_planned_times(stop)

            if (repaired.arrival_time, repaired.departure_time) != (
                stop.arrival_time,
                stop.departure_time,
            ):
                logger.debug(
                    "Propagated delay to cancelled stop",
                    trip_id=self._trip_id,
                    stop=stop.label,
                    sequence=stop.sequence,
                    delay_sec=repaired.departure_delay,
                )
            stops[index] = repaired


def _fix_arrival(previous: StopUpdate, stop: StopUpdate) -> StopUpdate:
    """Re-derive arrival from the planned arrival plus the delay carried from the previous stop."""
    planned_arrival = stop.planned_arrival_time
    previous_departure = previous.departure_time
    if planned_arrival is None or previous_departure is None:
        return stop

    carried_delay = previous.departure_delay
    arrival = max(planned_arrival + timedelta(seconds=carried_delay), previous_departure + ONE_SECOND)

    if stop.is_departure_cancelled:
        return replace(stop, arrival_time=arrival, arrival_delay=carried_delay)

    planned_dwell = timedelta(0)
    if stop.planned_departure_time is not None:
        planned_dwell = stop.planned_departure_time - planned_arrival

    departure_delay = carried_delay
    if planned_dwell > MIN_DWELL:
        departure_delay = carried_delay - int((planned_dwell - MIN_DWELL).total_seconds())

    if stop.planned_departure_time is not None:
        departure = max(stop.planned_departure_time + timedelta(seconds=departure_delay), arrival)
    else:
        departure = arrival + FALLBACK_DWELL

    return replace(
        stop,
        arrival_time=arrival,
        arrival_delay=carried_delay,
        departure_time=departure,
        departure_delay=departure_delay,
    )


def _fix_departure(stop: StopUpdate) -> StopUpdate:
    """Re-derive departure from the arrival plus the planned dwell."""
    if stop.is_arrival_cancelled:
        return stop
    planned_arrival = stop.planned_arrival_time
    planned_departure = stop.planned_departure_time
    if planned_arrival is None or planned_departure is None or stop.arrival_time is None:
        return stop

    departure = max(
        stop.arrival_time + (planned_departure - planned_arrival),
        stop.arrival_time + ONE_SECOND,
    )
    return replace(stop, departure_time=departure, departure_delay=stop.arrival_delay)


def _served_departure(stop: StopUpdate, delay: int) -> Optional[datetime]:
    """Best known departure of a served stop, used as the floor for the cancelled stops after it."""
    candidates = [t for t in (stop.departure_time, stop.arrival_time) if t is not None]
    if candidates:
        return max(candidates)
    if stop.planned_departure_time is not None:
        return stop.planned_departure_time + timedelta(seconds=delay)
    if stop.planned_arrival_time is not None:
        return stop.planned_arrival_time + timedelta(seconds=delay)
    return None


def _carry_delay(stop: StopUpdate, delay: int, floor: datetime) -> StopUpdate:
    if stop.planned_arrival_time is not None:
        arrival = max(stop.planned_arrival_time + timedelta(seconds=delay), floor + ONE_SECOND)
    else:
        arrival = floor + ONE_SECOND

    if stop.planned_departure_time is not None:
        departure = max(stop.planned_departure_time + timedelta(seconds=delay), arrival)
    else:
        departure = arrival

    return replace(
        stop,
        arrival_time=arrival,
        departure_time=departure,
        arrival_delay=delay,
        departure_delay=delay,
    )


def _use_planned_times(stop: StopUpdate) -> StopUpdate:
    """Cancelled stops before any served stop keep their planned times, undelayed."""
    arrival = stop.arrival_time
    departure = stop.departure_time
    arrival_delay = stop.arrival_delay
    departure_delay = stop.departure_delay

    if stop.planned_arrival_time is not None:
        arrival = stop.planned_arrival_time
        arrival_delay = 0
    if stop.planned_departure_time is not None:
        departure = stop.planned_departure_time
        departure_delay = 0
        if arrival is not None:
            departure = max(departure, arrival)
    elif arrival is not None:
        departure = arrival
        departure_delay = 0

    return _with_valid_dwell(
        replace(
            stop,
            arrival_time=arrival,
            departure_time=departure,
            arrival_delay=arrival_delay,
            departure_delay=departure_delay,
        )
    )


def _with_valid_dwell(stop: StopUpdate) -> StopUpdate:
    if (
        stop.arrival_time is not None
        and stop.departure_time is not None
        and stop.departure_time < stop.arrival_time
    ):
        return replace(stop, departure_time=stop.arrival_time)
    return stop
