"""GTFS-Realtime feed assembly and publishing pipeline."""

from transit_feed.services.feed.builder import FeedBuilder
from transit_feed.services.feed.decoder import GtfsRtDecoder
from transit_feed.services.feed.fetcher import RemoteFeedFetcher
from transit_feed.services.feed.publisher import FeedPublisher
from transit_feed.services.feed.reconciliation import AbsenceDetector
from transit_feed.services.feed.worker import FeedWorker

__all__ = [
    "AbsenceDetector",
    "FeedBuilder",
    "FeedPublisher",
    "FeedWorker",
    "GtfsRtDecoder",
    "RemoteFeedFetcher",
]
