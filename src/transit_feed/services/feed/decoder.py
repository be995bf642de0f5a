"""GTFS-RT protobuf decode layer."""

from __future__ import annotations

from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from transit_feed.logging import get_logger

logger = get_logger(__name__)


class DecodeError_(Exception):
    """Raised when protobuf decoding fails."""


class GtfsRtDecoder:
    """Decodes raw protobuf bytes into GTFS-RT FeedMessage objects."""

    @staticmethod
    def decode(data: bytes, feed_name: str, cycle_id: str) -> gtfs_realtime_pb2.FeedMessage:
        """Decode protobuf bytes into a FeedMessage.

        Args:
            data: Raw protobuf bytes.
            feed_name: Label for logging.
            cycle_id: Correlation ID of the feed cycle.

        Raises:
            DecodeError_: If protobuf parsing fails or the header is missing.
        """
        try:
            feed = gtfs_realtime_pb2.FeedMessage()
            feed.ParseFromString(data)
        except DecodeError as exc:
            msg = f"Failed to decode {feed_name} protobuf"
            logger.error(msg, feed=feed_name, cycle_id=cycle_id, error=str(exc))
            raise DecodeError_(msg) from exc

        if not feed.header.gtfs_realtime_version:
            msg = f"{feed_name} has no GTFS-RT header"
            logger.error(msg, feed=feed_name, cycle_id=cycle_id)
            raise DecodeError_(msg)

        logger.info(
            "GTFS-RT feed decoded",
            feed=feed_name,
            cycle_id=cycle_id,
            entity_count=len(feed.entity),
            feed_timestamp=feed.header.timestamp,
            gtfs_rt_version=feed.header.gtfs_realtime_version,
        )
        return feed

    @staticmethod
    def get_feed_timestamp(feed: gtfs_realtime_pb2.FeedMessage) -> int:
        """Header timestamp in unix seconds, or 0 if not set."""
        return feed.header.timestamp if feed.header.timestamp else 0

    @staticmethod
    def get_entity_count(feed: gtfs_realtime_pb2.FeedMessage) -> int:
        return len(feed.entity)
