"""Tests for FeedBuilder snapshot construction."""

from transit_feed.services.feed.builder import FeedBuilder
from transit_feed.services.feed.entities import ScheduleRelationship

from .fixtures.rows_fixture import rail_trip, served_stop, trip_context


def _builder() -> FeedBuilder:
    return FeedBuilder("trainUpdates", trip_context(), max_workers=2)


class TestFeedBuilder:
    """Unit tests for FeedBuilder."""

    def test_build_snapshot(self) -> None:
        records = [rail_trip(trip_id="T1"), rail_trip(trip_id="T2", changes=("25",))]
        snapshot, report = _builder().build(records, timestamp=1714550400)

        assert snapshot.name == "trainUpdates"
        assert snapshot.timestamp == 1714550400
        assert [e.id for e in snapshot.entities] == ["T1_20240501", "T2_20240501"]
        assert snapshot.relationship_counts() == {"SCHEDULED": 1, "CANCELED": 1}
        assert report.trip_count == 2
        assert report.emitted_count == 2

    def test_timestamp_defaults_to_now(self) -> None:
        snapshot, _ = _builder().build([])
        assert snapshot.timestamp > 0
        assert snapshot.entities == ()

    def test_broken_trip_is_dropped(self) -> None:
        records = [
            rail_trip(trip_id="T1"),
            rail_trip([], trip_id="T2"),
            rail_trip(trip_id="T3", changes=("99",)),
        ]
        snapshot, report = _builder().build(records)

        assert [e.trip.trip_id for e in snapshot.entities] == ["T1"]
        assert report.dropped_count == 2

    def test_suppressed_trip_is_counted(self) -> None:
        records = [rail_trip(trip_id=None, changes=("25",))]
        snapshot, report = _builder().build(records)

        assert snapshot.entity_count == 0
        assert report.suppressed_count == 1

    def test_duplicate_entity_keeps_first(self) -> None:
        records = [
            rail_trip(trip_id="T1", route_id="first"),
            rail_trip(trip_id="T1", route_id="second"),
        ]
        snapshot, report = _builder().build(records)

        assert snapshot.entity_count == 1
        assert snapshot.entities[0].trip.route_id == "first"
        assert report.duplicate_count == 1

    def test_order_follows_input(self) -> None:
        records = [rail_trip(trip_id=f"T{i}") for i in range(20)]
        snapshot, _ = _builder().build(records)
        assert [e.trip.trip_id for e in snapshot.entities] == [f"T{i}" for i in range(20)]

    def test_disappeared_synthetic_trip_is_deleted_once(self) -> None:
        builder = _builder()
        synthetic = rail_trip(trip_id=None, train_number=4321, train_type="SPR", agency="NS")

        first, _ = builder.build([synthetic, rail_trip(trip_id="T1")])
        assert builder.synthetic_trip_ids == ["4321_SPR_NS_added"]
        added = next(e for e in first.entities if e.trip.trip_id == "4321_SPR_NS_added")
        assert added.schedule_relationship is ScheduleRelationship.ADDED

        second, report = builder.build([rail_trip(trip_id="T1")])
        deleted = next(e for e in second.entities if e.trip.trip_id == "4321_SPR_NS_added")
        assert deleted.schedule_relationship is ScheduleRelationship.DELETED
        assert deleted.stop_time_updates == ()
        assert deleted.id == added.id
        assert report.synthetic_deleted_count == 1
        assert builder.synthetic_trip_ids == []

        third, _ = builder.build([rail_trip(trip_id="T1")])
        assert [e.trip.trip_id for e in third.entities] == ["T1"]

    def test_synthetic_trip_still_present_is_not_deleted(self) -> None:
        builder = _builder()
        synthetic = rail_trip(trip_id=None, stops=[served_stop(1, 0), served_stop(2, 5)])

        builder.build([synthetic])
        snapshot, report = builder.build([synthetic])

        assert snapshot.relationship_counts() == {"ADDED": 1}
        assert report.synthetic_deleted_count == 0

    def test_planned_added_trip_is_not_tracked(self) -> None:
        builder = _builder()
        builder.build([rail_trip(train_number=301234, short_train_number=1234)])
        assert builder.synthetic_trip_ids == []

    def test_report_to_dict(self) -> None:
        _, report = _builder().build([rail_trip()])
        data = report.to_dict()
        assert data["name"] == "trainUpdates"
        assert data["emitted_count"] == 1
        assert set(data) >= {"dropped_count", "duplicate_count", "duration_ms"}
