"""FeedSnapshot to GTFS-RT protobuf and JSON."""

from __future__ import annotations

from google.protobuf import json_format
from google.protobuf.message import EncodeError
from google.transit import gtfs_realtime_pb2

from transit_feed.logging import get_logger
from transit_feed.services.feed.entities import FeedSnapshot, FeedTripEntity, StopTimeEvent

logger = get_logger(__name__)

GTFS_REALTIME_VERSION = "2.0"

# Older bindings do not carry the experimental FeedEntity.shape field.
_ENTITY_HAS_SHAPE = "shape" in gtfs_realtime_pb2.FeedEntity.DESCRIPTOR.fields_by_name


class FeedEncodeError(Exception):
    """Raised when a snapshot cannot be serialized."""


def _set_event(target: gtfs_realtime_pb2.TripUpdate.StopTimeEvent, event: StopTimeEvent) -> None:
    if event.time is not None:
        target.time = event.time
    target.delay = event.delay


def _fill_entity(target: gtfs_realtime_pb2.FeedEntity, entity: FeedTripEntity) -> None:
    target.id = entity.id

    trip = target.trip_update.trip
    trip.trip_id = entity.trip.trip_id
    trip.start_date = entity.trip.start_date
    if entity.trip.start_time:
        trip.start_time = entity.trip.start_time
    if entity.trip.route_id:
        trip.route_id = entity.trip.route_id
    if entity.trip.direction_id is not None:
        trip.direction_id = entity.trip.direction_id
    trip.schedule_relationship = gtfs_realtime_pb2.TripDescriptor.ScheduleRelationship.Value(
        entity.trip.schedule_relationship.value
    )

    if entity.timestamp is not None:
        target.trip_update.timestamp = entity.timestamp

    for update in entity.stop_time_updates:
        stu = target.trip_update.stop_time_update.add()
        stu.stop_sequence = update.stop_sequence
        if update.stop_id:
            stu.stop_id = update.stop_id
        _set_event(stu.arrival, update.arrival)
        _set_event(stu.departure, update.departure)
        stu.schedule_relationship = (
            gtfs_realtime_pb2.TripUpdate.StopTimeUpdate.ScheduleRelationship.Value(
                update.schedule_relationship.value
            )
        )

    if entity.shape_id and _ENTITY_HAS_SHAPE:
        target.shape.shape_id = entity.shape_id


def to_feed_message(snapshot: FeedSnapshot) -> gtfs_realtime_pb2.FeedMessage:
    """Build the FeedMessage for a snapshot.

    Raises:
        FeedEncodeError: If an entity does not fit the protobuf schema.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = GTFS_REALTIME_VERSION
    feed.header.incrementality = gtfs_realtime_pb2.FeedHeader.FULL_DATASET
    feed.header.timestamp = snapshot.timestamp

    for entity in snapshot.entities:
        try:
            _fill_entity(feed.entity.add(), entity)
        except (TypeError, ValueError) as exc:
            msg = f"Cannot encode entity {entity.id} of {snapshot.name}"
            raise FeedEncodeError(msg) from exc

    return feed


def encode_snapshot(snapshot: FeedSnapshot) -> bytes:
    """Serialize a snapshot to protobuf bytes.

    Raises:
        FeedEncodeError: If serialization fails.
    """
    feed = to_feed_message(snapshot)
    try:
        data = feed.SerializeToString()
    except EncodeError as exc:
        msg = f"Cannot serialize {snapshot.name}"
        raise FeedEncodeError(msg) from exc

    logger.debug(
        "Snapshot encoded",
        feed=snapshot.name,
        entity_count=snapshot.entity_count,
        size_bytes=len(data),
    )
    return data


def snapshot_to_json(snapshot: FeedSnapshot) -> bytes:
    """JSON twin of the protobuf snapshot, for debugging consumers."""
    feed = to_feed_message(snapshot)
    return json_format.MessageToJson(feed, indent=None).encode("utf-8")
