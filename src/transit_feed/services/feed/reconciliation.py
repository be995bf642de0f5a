"""Absence detection for planned replacement-service trips.

Some planned trips (train replacement buses) are never reported by the
rail source at all. Trips that are planned for an operating date but have
no rail record for it are collected into a removal list.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional, Protocol, Sequence
from zoneinfo import ZoneInfo

from transit_feed.logging import get_logger
from transit_feed.services.feed.entities import TripRemoval

logger = get_logger(__name__)


class PlannedTripSource(Protocol):
    async def fetch_planned_replacement_service_trip_numbers(
        self, operating_date: date
    ) -> list[int]: ...


class RailPresenceSource(Protocol):
    async def fetch_trip_numbers_absent_from_rail_source(
        self, trip_numbers: Sequence[int], operating_date: date
    ) -> list[str]: ...


def operating_dates_to_check(
    now: datetime, previous_day_cutoff_hour: int = 4, next_day_cutoff_hour: int = 23
) -> list[date]:
    """Operating dates whose trips may be running at local time ``now``.

    Early in the morning the previous service day is still running; late
    in the evening the next one may already be visible.
    """
    today = now.date()
    dates = [today]
    if now.hour < previous_day_cutoff_hour:
        dates.append(today - timedelta(days=1))
    if now.hour >= next_day_cutoff_hour:
        dates.append(today + timedelta(days=1))
    return dates


class AbsenceDetector:
    """Finds planned replacement-service trips the rail source never reported."""

    def __init__(
        self,
        planned: PlannedTripSource,
        rail: RailPresenceSource,
        timezone: ZoneInfo,
        previous_day_cutoff_hour: int = 4,
        next_day_cutoff_hour: int = 23,
    ) -> None:
        self._planned = planned
        self._rail = rail
        self._timezone = timezone
        self._previous_day_cutoff_hour = previous_day_cutoff_hour
        self._next_day_cutoff_hour = next_day_cutoff_hour

    async def find_absent_trips(self, now: Optional[datetime] = None) -> list[TripRemoval]:
        """Removal list for every operating date currently in play.

        Pairs found on more than one pass are returned once.
        """
        local_now = (now or datetime.now(self._timezone)).astimezone(self._timezone)
        found: dict[TripRemoval, None] = {}

        for operating_date in operating_dates_to_check(
            local_now, self._previous_day_cutoff_hour, self._next_day_cutoff_hour
        ):
            for trip_id in await self._absent_for_date(operating_date):
                found.setdefault(TripRemoval(str(trip_id), operating_date), None)

        removals = list(found)
        logger.info("Absent replacement-service trips found", count=len(removals))
        return removals

    async def _absent_for_date(self, operating_date: date) -> list[str]:
        planned = await self._planned.fetch_planned_replacement_service_trip_numbers(
            operating_date
        )
        logger.debug(
            "Planned replacement-service trips",
            operating_date=operating_date.isoformat(),
            count=len(planned),
        )
        if not planned:
            return []

        absent = await self._rail.fetch_trip_numbers_absent_from_rail_source(
            planned, operating_date
        )
        logger.debug(
            "Replacement-service trips absent from rail source",
            operating_date=operating_date.isoformat(),
            count=len(absent),
        )
        return absent
