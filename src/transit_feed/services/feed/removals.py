"""Apply a removal list to a freshly built snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from transit_feed.logging import get_logger
from transit_feed.services.feed.entities import FeedSnapshot, FeedTripEntity, TripRemoval

logger = get_logger(__name__)


def apply_removals(snapshot: FeedSnapshot, removals: Iterable[TripRemoval]) -> FeedSnapshot:
    """Publish every (trip, operating date) in ``removals`` as DELETED.

    Entities already present for that trip and start date are overwritten
    in place (DELETED, no stop time updates); missing ones are appended.
    """
    wanted = {(removal.trip_id, removal.start_date): removal for removal in removals}
    if not wanted:
        return snapshot

    entities: list[FeedTripEntity] = []
    overwritten: set[tuple[str, str]] = set()

    for entity in snapshot.entities:
        key = (entity.trip.trip_id, entity.trip.start_date)
        if key in wanted:
            entities.append(entity.as_deleted())
            overwritten.add(key)
        else:
            entities.append(entity)

    appended = 0
    for key, removal in wanted.items():
        if key not in overwritten:
            entities.append(removal.to_entity())
            appended += 1

    logger.info(
        "Applied trip removals",
        feed=snapshot.name,
        removal_count=len(wanted),
        overwritten_count=len(overwritten),
        appended_count=appended,
    )
    return replace(snapshot, entities=tuple(entities))
