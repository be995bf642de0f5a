"""Serialized GTFS-RT feeds as an upstream server would return them."""

from __future__ import annotations

from google.transit import gtfs_realtime_pb2

DEFAULT_FEED_TIMESTAMP = 1714550400


def build_upstream_feed(
    trip_ids: list[str] | None = None,
    feed_timestamp: int = DEFAULT_FEED_TIMESTAMP,
    start_date: str = "20240501",
) -> bytes:
    """FULL_DATASET feed with one trip update entity per trip id."""
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.incrementality = gtfs_realtime_pb2.FeedHeader.FULL_DATASET
    feed.header.timestamp = feed_timestamp

    for index, trip_id in enumerate(trip_ids if trip_ids is not None else ["trip_001"]):
        entity = feed.entity.add()
        entity.id = f"{trip_id}_{start_date}"
        trip_update = entity.trip_update
        trip_update.trip.trip_id = trip_id
        trip_update.trip.start_date = start_date

        stu = trip_update.stop_time_update.add()
        stu.stop_id = f"stop_{index:03d}"
        stu.stop_sequence = 1
        stu.arrival.delay = index * 30
        stu.departure.delay = index * 30

    return feed.SerializeToString()


def build_headerless_feed() -> bytes:
    """A well-formed message that lacks the mandatory GTFS-RT header."""
    feed = gtfs_realtime_pb2.FeedMessage()
    entity = feed.entity.add()
    entity.id = "orphan"
    entity.trip_update.trip.trip_id = "orphan"
    return feed.SerializePartialToString()
