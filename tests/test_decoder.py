"""Tests for the GTFS-RT protobuf decoder."""

import pytest

from transit_feed.services.feed.decoder import DecodeError_, GtfsRtDecoder

from .fixtures.upstream_feed_fixture import build_headerless_feed, build_upstream_feed


class TestGtfsRtDecoder:
    """Unit tests for GtfsRtDecoder."""

    def test_decode_feed(self) -> None:
        data = build_upstream_feed(["trip_001"], feed_timestamp=1700000000)
        feed = GtfsRtDecoder.decode(data, "remote", "cycle-1")
        assert feed.header.timestamp == 1700000000
        assert len(feed.entity) == 1
        assert feed.entity[0].trip_update.trip.trip_id == "trip_001"

    def test_decode_feed_without_entities(self) -> None:
        feed = GtfsRtDecoder.decode(build_upstream_feed([]), "remote", "cycle-1")
        assert len(feed.entity) == 0

    def test_decode_invalid_protobuf_raises(self) -> None:
        with pytest.raises(DecodeError_):
            GtfsRtDecoder.decode(b"not a protobuf", "remote", "cycle-1")

    def test_decode_empty_bytes_raises(self) -> None:
        with pytest.raises(DecodeError_):
            GtfsRtDecoder.decode(b"", "remote", "cycle-1")

    def test_decode_headerless_feed_raises(self) -> None:
        with pytest.raises(DecodeError_):
            GtfsRtDecoder.decode(build_headerless_feed(), "remote", "cycle-1")

    def test_get_feed_timestamp(self) -> None:
        feed = GtfsRtDecoder.decode(
            build_upstream_feed(feed_timestamp=1700000000), "remote", "cycle-1"
        )
        assert GtfsRtDecoder.get_feed_timestamp(feed) == 1700000000

    def test_get_entity_count(self) -> None:
        data = build_upstream_feed([f"trip_{i:03d}" for i in range(7)])
        feed = GtfsRtDecoder.decode(data, "remote", "cycle-1")
        assert GtfsRtDecoder.get_entity_count(feed) == 7
