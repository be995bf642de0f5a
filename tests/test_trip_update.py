"""Tests for trip-level classification and start time rendering."""

from datetime import datetime, timezone

import pytest

from transit_feed.config import Settings
from transit_feed.services.realtime.errors import EmptyStopCollectionError, UnknownChangeTagError
from transit_feed.services.realtime.trip_update import (
    UNKNOWN_START_DATE,
    UNKNOWN_START_TIME,
    TripContext,
    TripUpdate,
)

from .fixtures.rows_fixture import (
    AMSTERDAM,
    bus_stop,
    bus_trip,
    rail_stop,
    rail_trip,
    served_stop,
    trip_context,
)


class TestRailTripClassification:
    """Unit tests for rail trip flags."""

    def test_regular_trip(self) -> None:
        trip = TripUpdate.from_record(rail_trip(), trip_context())
        assert not trip.is_added
        assert not trip.is_cancelled
        assert not trip.has_changed_trip
        assert not trip.is_irregular
        assert trip.has_planned_trip

    def test_cancelled_by_journey_tag(self) -> None:
        trip = TripUpdate.from_record(rail_trip(changes=("25",)), trip_context())
        assert trip.is_cancelled

    def test_cancelled_stops_alone_do_not_cancel_rail_trip(self) -> None:
        stops = [served_stop(1, 0, changes=("44",)), served_stop(2, 10, changes=("44",))]
        trip = TripUpdate.from_record(rail_trip(stops), trip_context())
        assert trip.stops.all_cancelled
        assert not trip.is_cancelled

    def test_added_without_planned_trip(self) -> None:
        trip = TripUpdate.from_record(rail_trip(trip_id=None), trip_context())
        assert trip.is_added
        assert not trip.has_planned_trip

    def test_added_by_extra_train_tag(self) -> None:
        trip = TripUpdate.from_record(rail_trip(changes=({"changeType": "24"},)), trip_context())
        assert trip.is_added

    def test_added_when_renumbered(self) -> None:
        record = rail_trip(train_number=301234, short_train_number=1234)
        trip = TripUpdate.from_record(record, trip_context())
        assert trip.is_added

    @pytest.mark.parametrize("code", ["30", "33", "34", "35", "36", "37", "41", "42"])
    def test_route_alterations_change_trip(self, code: str) -> None:
        trip = TripUpdate.from_record(rail_trip(changes=(code,)), trip_context())
        assert trip.has_changed_trip

    @pytest.mark.parametrize("code", ["50", "51", "80", "81"])
    def test_informational_tags_do_not_change_trip(self, code: str) -> None:
        trip = TripUpdate.from_record(rail_trip(changes=(code,)), trip_context())
        assert not trip.has_changed_trip
        assert not trip.is_added
        assert not trip.is_cancelled

    def test_irregular_train_number(self) -> None:
        trip = TripUpdate.from_record(
            rail_trip(train_number=900123), trip_context(threshold=900_000)
        )
        assert trip.is_irregular

    def test_threshold_comes_from_context(self) -> None:
        trip = TripUpdate.from_record(rail_trip(train_number=5000), trip_context(threshold=4000))
        assert trip.is_irregular

    def test_unknown_journey_code_raises(self) -> None:
        with pytest.raises(UnknownChangeTagError):
            TripUpdate.from_record(rail_trip(changes=("77",)), trip_context())

    def test_no_stops_raises(self) -> None:
        with pytest.raises(EmptyStopCollectionError):
            TripUpdate.from_record(rail_trip([]), trip_context())

    def test_synthetic_trip_id(self) -> None:
        trip = TripUpdate.from_record(
            rail_trip(trip_id=None, train_number=1234, train_type="IC", agency="NS"),
            trip_context(),
        )
        assert trip.synthetic_trip_id == "1234_IC_NS"

    def test_platform_and_stop_changes(self) -> None:
        stops = [
            served_stop(1, 0),
            served_stop(2, 10, planned_track="3", actual_track="4"),
            served_stop(3, 20, changes=("38",)),
        ]
        trip = TripUpdate.from_record(rail_trip(stops), trip_context())
        assert trip.had_platform_change
        assert trip.had_changed_stops


class TestBusTramTripClassification:
    """Unit tests for bus/tram trip flags."""

    def test_cancelled_when_every_stop_cancelled(self) -> None:
        stops = [bus_stop(1, 0, "CANCEL"), bus_stop(2, 5, "CANCEL")]
        trip = TripUpdate.from_record(bus_trip(stops), trip_context())
        assert trip.is_cancelled

    def test_partly_cancelled_trip_runs(self) -> None:
        stops = [bus_stop(1, 0, "CANCEL"), bus_stop(2, 5, "DRIVING")]
        trip = TripUpdate.from_record(bus_trip(stops), trip_context())
        assert not trip.is_cancelled

    def test_added_without_planned_trip(self) -> None:
        trip = TripUpdate.from_record(bus_trip(trip_id=None), trip_context())
        assert trip.is_added
        assert trip.synthetic_trip_id == "GVB_17_123"

    def test_never_irregular(self) -> None:
        trip = TripUpdate.from_record(bus_trip(journey_number=999_999), trip_context())
        assert not trip.is_irregular
        assert not trip.has_changed_trip


class TestTripStart:
    """start_time/start_date rendering in the feed timezone."""

    def test_start_in_local_time(self) -> None:
        trip = TripUpdate.from_record(rail_trip(), trip_context())
        # First stop departs 08:01 UTC, 10:01 in Amsterdam.
        assert trip.start_time == "10:01:00"
        assert trip.start_date == "20240501"

    def test_start_after_local_midnight(self) -> None:
        departure = datetime(2024, 5, 1, 22, 30, tzinfo=timezone.utc)
        stops = [
            rail_stop(1, departure=departure, planned_departure=departure),
            rail_stop(2, arrival=departure.replace(hour=23), planned_arrival=departure),
        ]
        trip = TripUpdate.from_record(rail_trip(stops), trip_context())
        assert trip.start_time == "00:30:00"
        assert trip.start_date == "20240502"

    def test_naive_times_are_utc(self) -> None:
        departure = datetime(2024, 1, 15, 7, 0)
        stops = [
            rail_stop(1, departure=departure),
            rail_stop(2, arrival=departure.replace(hour=8)),
        ]
        trip = TripUpdate.from_record(rail_trip(stops), trip_context())
        assert trip.start_time == "08:00:00"

    def test_unknown_start(self) -> None:
        trip = TripUpdate.from_record(rail_trip([rail_stop(1)]), trip_context())
        assert trip.start_time == UNKNOWN_START_TIME
        assert trip.start_date == UNKNOWN_START_DATE

    def test_timestamp_in_epoch_seconds(self) -> None:
        trip = TripUpdate.from_record(rail_trip(), trip_context())
        assert trip.timestamp == int(datetime(2024, 5, 1, 7, 59, tzinfo=timezone.utc).timestamp())

    def test_context_from_settings(self) -> None:
        settings = Settings(FEED_TIMEZONE="Europe/Amsterdam", irregular_train_number_threshold=123)

        context = TripContext.from_settings(settings)
        assert context.timezone == AMSTERDAM
        assert context.irregular_train_number_threshold == 123
