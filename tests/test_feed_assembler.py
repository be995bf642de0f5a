"""Tests for schedule relationship decisions and entity assembly."""

import itertools

import pytest

from transit_feed.services.feed.assembler import (
    assemble_entity,
    decide_schedule_relationship,
    dedupe_stop_keys,
    stop_time_update,
)
from transit_feed.services.feed.entities import (
    ScheduleRelationship,
    StopRelationship,
    StopTimeEvent,
    StopTimeUpdate,
)
from transit_feed.services.realtime.stop_update import StopUpdate
from transit_feed.services.realtime.trip_update import TripUpdate

from .fixtures.rows_fixture import (
    at,
    bus_stop,
    bus_trip,
    rail_stop,
    rail_trip,
    served_stop,
    trip_context,
)

FLAGS = (
    "has_changed_trip",
    "had_platform_change",
    "had_changed_stops",
    "is_irregular",
    "is_added",
    "is_cancelled",
)


def _expected(flags: dict[str, bool]) -> ScheduleRelationship | None:
    if flags["is_added"] and flags["is_cancelled"]:
        return None
    if flags["is_cancelled"]:
        return ScheduleRelationship.CANCELED
    if flags["is_added"]:
        return ScheduleRelationship.ADDED
    if any(flags[name] for name in FLAGS[:4]):
        return ScheduleRelationship.REPLACEMENT
    return ScheduleRelationship.SCHEDULED


def _entity(record):
    return assemble_entity(TripUpdate.from_record(record, trip_context()))


class TestDecideScheduleRelationship:
    """Priority rules for the trip schedule relationship."""

    def test_every_flag_combination(self) -> None:
        for values in itertools.product([False, True], repeat=len(FLAGS)):
            flags = dict(zip(FLAGS, values))
            assert decide_schedule_relationship(**flags) == _expected(flags), flags

    def test_defaults_to_scheduled(self) -> None:
        assert decide_schedule_relationship() is ScheduleRelationship.SCHEDULED

    def test_cancel_beats_replacement(self) -> None:
        relationship = decide_schedule_relationship(has_changed_trip=True, is_cancelled=True)
        assert relationship is ScheduleRelationship.CANCELED


class TestStopTimeUpdate:
    """Per-stop conversion."""

    def test_events_in_epoch_seconds(self) -> None:
        stop = StopUpdate.from_record(
            rail_stop(2, arrival=at(5), departure=at(6), arrival_delay=30, departure_delay=40)
        )
        update = stop_time_update(stop)
        assert update.stop_sequence == 2
        assert update.stop_id == "stop_2"
        assert update.arrival == StopTimeEvent(int(at(5).timestamp()), 30)
        assert update.departure == StopTimeEvent(int(at(6).timestamp()), 40)
        assert update.schedule_relationship is StopRelationship.SCHEDULED

    def test_cancelled_stop_is_skipped(self) -> None:
        stop = StopUpdate.from_record(served_stop(2, 10, changes=("44",)))
        assert stop_time_update(stop).schedule_relationship is StopRelationship.SKIPPED

    def test_unknown_times_stay_unknown(self) -> None:
        update = stop_time_update(StopUpdate.from_record(rail_stop(2)))
        assert update.arrival.time is None
        assert update.departure.time is None

    def test_dedupe_keeps_first_occurrence(self) -> None:
        event = StopTimeEvent(time=1, delay=0)
        updates = [
            StopTimeUpdate(1, "A", event, event),
            StopTimeUpdate(2, "B", event, event),
            StopTimeUpdate(3, "A", event, event),
            StopTimeUpdate(4, None, event, event),
            StopTimeUpdate(5, None, event, event),
        ]
        kept = dedupe_stop_keys(updates)
        assert [u.stop_sequence for u in kept] == [1, 2, 4, 5]


class TestAssembleEntity:
    """Trip update to feed entity."""

    def test_scheduled_trip(self) -> None:
        entity = _entity(rail_trip())
        assert entity is not None
        assert entity.id == "T123_20240501"
        assert entity.trip.trip_id == "T123"
        assert entity.trip.route_id == "R1"
        assert entity.trip.direction_id == 0
        assert entity.trip.start_time == "10:01:00"
        assert entity.schedule_relationship is ScheduleRelationship.SCHEDULED
        assert [u.stop_sequence for u in entity.stop_time_updates] == [1, 2, 3]

    def test_trip_without_planned_id_is_added_under_synthetic_id(self) -> None:
        entity = _entity(rail_trip(trip_id=None, train_number=1234, train_type="IC", agency="NS"))
        assert entity is not None
        assert entity.trip.trip_id == "1234_IC_NS_added"
        assert entity.schedule_relationship is ScheduleRelationship.ADDED
        assert len(entity.stop_time_updates) == 3

    def test_renumbered_trip_keeps_planned_id_with_suffix(self) -> None:
        entity = _entity(rail_trip(train_number=301234, short_train_number=1234))
        assert entity is not None
        assert entity.trip.trip_id == "T123_added"

    def test_cancelled_trip_has_no_stops(self) -> None:
        entity = _entity(rail_trip(changes=("25",)))
        assert entity is not None
        assert entity.schedule_relationship is ScheduleRelationship.CANCELED
        assert entity.trip.trip_id == "T123"
        assert entity.stop_time_updates == ()

    def test_added_and_cancelled_is_suppressed(self) -> None:
        assert _entity(rail_trip(trip_id=None, changes=("25",))) is None
        assert _entity(rail_trip(changes=("24", "25"))) is None

    def test_bus_trip_without_planned_id_and_all_stops_cancelled_is_suppressed(self) -> None:
        stops = [bus_stop(1, 0, "CANCEL"), bus_stop(2, 5, "CANCEL")]
        assert _entity(bus_trip(stops, trip_id=None)) is None

    def test_replacement_keeps_skipped_stops(self) -> None:
        stops = [served_stop(1, 0), served_stop(2, 10, changes=("44",)), served_stop(3, 20)]
        entity = _entity(rail_trip(stops, changes=("33",)))
        assert entity is not None
        assert entity.schedule_relationship is ScheduleRelationship.REPLACEMENT
        assert [u.schedule_relationship for u in entity.stop_time_updates] == [
            StopRelationship.SCHEDULED,
            StopRelationship.SKIPPED,
            StopRelationship.SCHEDULED,
        ]

    def test_platform_change_is_replacement(self) -> None:
        stops = [served_stop(1, 0), served_stop(2, 10, planned_track="1", actual_track="2")]
        entity = _entity(rail_trip(stops))
        assert entity is not None
        assert entity.schedule_relationship is ScheduleRelationship.REPLACEMENT

    def test_irregular_trip_drops_repeated_stops(self) -> None:
        stops = [
            served_stop(1, 0, stop_id="A"),
            served_stop(2, 10, stop_id="B"),
            served_stop(3, 20, stop_id="A"),
        ]
        entity = _entity(rail_trip(stops, train_number=900123))
        assert entity is not None
        assert entity.schedule_relationship is ScheduleRelationship.REPLACEMENT
        assert [u.stop_id for u in entity.stop_time_updates] == ["A", "B"]

    def test_regular_trip_keeps_repeated_stops(self) -> None:
        stops = [
            served_stop(1, 0, stop_id="A"),
            served_stop(2, 10, stop_id="B"),
            served_stop(3, 20, stop_id="A"),
        ]
        entity = _entity(rail_trip(stops))
        assert entity is not None
        assert [u.stop_id for u in entity.stop_time_updates] == ["A", "B", "A"]

    def test_first_and_last_stop_events(self) -> None:
        entity = _entity(rail_trip())
        assert entity is not None
        first, last = entity.stop_time_updates[0], entity.stop_time_updates[-1]
        assert first.arrival == first.departure
        assert last.arrival == last.departure

    def test_single_stop_trip(self) -> None:
        entity = _entity(rail_trip([served_stop(1, 0)]))
        assert entity is not None
        (update,) = entity.stop_time_updates
        assert update.arrival == update.departure

    def test_shape_and_timestamp_carried(self) -> None:
        entity = _entity(rail_trip(shape_id="S1"))
        assert entity is not None
        assert entity.shape_id == "S1"
        assert entity.timestamp == int(at(-1).timestamp())

    @pytest.mark.parametrize("changes", [(), ("33",), ("25",)])
    def test_as_deleted_clears_stops(self, changes: tuple[str, ...]) -> None:
        entity = _entity(rail_trip(changes=changes))
        assert entity is not None
        deleted = entity.as_deleted()
        assert deleted.schedule_relationship is ScheduleRelationship.DELETED
        assert deleted.stop_time_updates == ()
        assert deleted.id == entity.id
