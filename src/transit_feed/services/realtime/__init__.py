"""Realtime source model: stop and trip facts derived from raw source rows."""

from transit_feed.services.realtime.errors import (
    EmptyStopCollectionError,
    MalformedRowError,
    TripInvariantError,
    UnknownChangeTagError,
)
from transit_feed.services.realtime.stop_collection import StopUpdateCollection
from transit_feed.services.realtime.stop_update import Source, StopRecord, StopUpdate
from transit_feed.services.realtime.trip_update import TripContext, TripRecord, TripUpdate

__all__ = [
    "EmptyStopCollectionError",
    "MalformedRowError",
    "Source",
    "StopRecord",
    "StopUpdate",
    "StopUpdateCollection",
    "TripContext",
    "TripInvariantError",
    "TripRecord",
    "TripUpdate",
    "UnknownChangeTagError",
]
