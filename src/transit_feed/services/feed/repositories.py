"""Raw SQL access to the realtime sources and the planned data.

Every query is issued once per cycle; rows are returned as plain dicts and
interpreted by ``services.realtime.rows``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import bindparam, text

from transit_feed.database import get_session_context
from transit_feed.logging import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

SessionContext = Callable[[], AbstractAsyncContextManager["AsyncSession"]]

# Rail trips with their stops aggregated per logical journey part. Trip ids
# are resolved on the long train number first, then on the short one.
_RAIL_UPDATES_SQL = text(
    """
    WITH trips AS (
        SELECT "tripId", "routeId", "directionId", "tripShortName", "shapeId"
        FROM "StaticData-NL".trips
        WHERE agency = :agency
          AND "serviceId" IN (
              SELECT "serviceId" FROM "StaticData-NL".calendar_dates
              WHERE date BETWEEN :first_date AND :last_date
          )
    ),
    stops AS (
        SELECT "stopId", "zoneId", "platformCode"
        FROM "StaticData-NL".stops
        WHERE "zoneId" LIKE :zone_prefix
    )
    SELECT r."trainNumber"                                         AS train_number,
           r."shortTrainNumber"                                    AS short_train_number,
           r."trainType"                                           AS train_type,
           r.agency                                                AS agency,
           r."timestamp"                                           AS timestamp,
           coalesce(jpjl."logicalJourneyPartChanges", jpjl."logicalJourneyChanges") AS changes,
           coalesce(trips."tripId", t_short."tripId")::text        AS trip_id,
           coalesce(trips."routeId", t_short."routeId")::text      AS route_id,
           coalesce(trips."directionId", t_short."directionId")    AS direction_id,
           coalesce(trips."shapeId", t_short."shapeId")::text      AS shape_id,
           jsonb_agg(
               jsonb_build_object(
                   'stationCode', si."stationCode",
                   'name', si."stationName",
                   'destination', si."destination",
                   'plannedArrivalTime', si."plannedArrivalTime",
                   'plannedDepartureTime', si."plannedDepartureTime",
                   'arrivalTime', coalesce(si."actualArrivalTime", si."plannedArrivalTime"),
                   'departureTime', coalesce(si."actualDepartureTime", si."plannedDepartureTime"),
                   'arrivalDelay', si."actualArrivalTime" - si."plannedArrivalTime",
                   'departureDelay', si."actualDepartureTime" - si."plannedDepartureTime",
                   'changes', si.changes,
                   'stopId', coalesce(
                       s."stopId",
                       (SELECT "stopId" FROM stops
                        WHERE stops."zoneId" = concat(:zone_code, lower(si."stationCode"))
                        LIMIT 1),
                       si."stationCode"
                   ),
                   'plannedTrack', coalesce(si."plannedArrivalTrack", si."plannedDepartureTrack"),
                   'actualTrack', coalesce(si."actualArrivalTrack", si."actualDepartureTrack"),
                   'sequence', si."stopOrder"
               ) ORDER BY si."stopOrder"
           ) AS stops
    FROM "InfoPlus".ritinfo r
    JOIN "InfoPlus".journey_part_journey_links jpjl
        ON jpjl."trainNumber" = r."trainNumber"
       AND jpjl."operationDate" = r."operationDate"
    JOIN "InfoPlus".stop_information si
        ON jpjl."logicalJourneyPartNumber" = si."logicalJourneyPartNumber"
       AND jpjl."operationDate" = si."operationDate"
       AND si."plannedWillStop" = true
       AND coalesce(si."plannedDepartureTime", si."plannedArrivalTime",
                    si."actualDepartureTime", si."actualArrivalTime") IS NOT NULL
    LEFT JOIN "StaticData-NL".stops s
        ON s."zoneId" = concat(:zone_code, lower(si."stationCode"))
       AND s."platformCode" = coalesce(
               si."departureTrackMessage" -> 'Uitingen' ->> 'Uiting',
               si."arrivalTrackMessage" -> 'Uitingen' ->> 'Uiting')
    LEFT JOIN trips ON trips."tripShortName"::int = jpjl."logicalJourneyPartNumber"
    LEFT JOIN trips t_short ON t_short."tripShortName"::int = r."shortTrainNumber"
    WHERE r."operationDate" BETWEEN :first_date AND :last_date
    GROUP BY r."trainNumber", jpjl."logicalJourneyPartNumber", r."shortTrainNumber",
             r."trainType", r.agency, r."timestamp",
             coalesce(jpjl."logicalJourneyPartChanges", jpjl."logicalJourneyChanges"),
             coalesce(trips."tripId", t_short."tripId"),
             coalesce(trips."routeId", t_short."routeId"),
             coalesce(trips."directionId", t_short."directionId"),
             coalesce(trips."shapeId", t_short."shapeId")
    HAVING max(coalesce(si."actualDepartureTime", si."plannedDepartureTime")) >= :horizon
    """
)

_ABSENT_FROM_RAIL_SQL = text(
    """
    SELECT DISTINCT "tripId"::text AS trip_id
    FROM "StaticData-NL".trips
    WHERE "journeyNumber" IN :trip_numbers
      AND agency = :agency
      AND "serviceId" IN (
          SELECT "serviceId" FROM "StaticData-NL".calendar_dates WHERE date = :operating_date
      )
      AND "journeyNumber" NOT IN (
          SELECT DISTINCT "trainNumber"
          FROM "InfoPlus".ritinfo
          WHERE "trainNumber" IN :trip_numbers
            AND "operationDate" = :operating_date
      )
    """
).bindparams(bindparam("trip_numbers", expanding=True))

_PLANNED_REPLACEMENT_SQL = text(
    """
    SELECT DISTINCT "journeyNumber" AS journey_number
    FROM "StaticData-NL".trips
    WHERE agency = :agency
      AND "journeyNumber" >= :min_train_number
      AND "serviceId" IN (
          SELECT "serviceId" FROM "StaticData-NL".calendar_dates WHERE date = :operating_date
      )
    """
)

# Bus/tram passing times; clock times are relative to the operating date.
_BUS_TRAM_UPDATES_SQL = text(
    """
    WITH trips AS (
        SELECT "tripId", "journeyNumber", "planningNumber", agency, "routeId",
               "directionId", "shapeId"
        FROM "StaticData-NL".trips
        WHERE agency != :rail_agency
          AND "serviceId" IN (
              SELECT "serviceId" FROM "StaticData-NL".calendar_dates WHERE date = :operating_date
          )
    )
    SELECT current_trips.stops,
           current_trips."DataOwnerCode"       AS agency,
           current_trips."JourneyNumber"       AS journey_number,
           current_trips."LinePlanningNumber"  AS line_planning_number,
           current_trips."OperationDate"       AS operating_date,
           trips."tripId"::text                AS trip_id,
           trips."routeId"::text               AS route_id,
           trips."directionId"                 AS direction_id,
           trips."shapeId"::text               AS shape_id
    FROM (
        SELECT pt."JourneyNumber",
               pt."LinePlanningNumber",
               pt."DataOwnerCode",
               pt."OperationDate",
               jsonb_agg(
                   jsonb_build_object(
                       'arrivalTime', EXTRACT(EPOCH FROM (CAST(:operating_date AS date) +
                           coalesce(nullif(pt."RecordedArrivalTime", '0'),
                                    nullif(pt."ExpectedArrivalTime", '0'),
                                    pt."TargetArrivalTime")::interval)
                           AT TIME ZONE :timezone)::bigint,
                       'departureTime', EXTRACT(EPOCH FROM (CAST(:operating_date AS date) +
                           coalesce(nullif(pt."RecordedDepartureTime", '0'),
                                    nullif(pt."ExpectedDepartureTime", '0'),
                                    pt."TargetDepartureTime")::interval)
                           AT TIME ZONE :timezone)::bigint,
                       'plannedArrivalTime', EXTRACT(EPOCH FROM (CAST(:operating_date AS date) +
                           pt."TargetArrivalTime"::interval) AT TIME ZONE :timezone)::bigint,
                       'plannedDepartureTime', EXTRACT(EPOCH FROM (CAST(:operating_date AS date) +
                           pt."TargetDepartureTime"::interval) AT TIME ZONE :timezone)::bigint,
                       'arrivalDelay', EXTRACT(EPOCH FROM (
                           coalesce(nullif(pt."RecordedArrivalTime", '0'),
                                    pt."ExpectedArrivalTime")::interval
                           - pt."TargetArrivalTime"::interval))::int,
                       'departureDelay', EXTRACT(EPOCH FROM (
                           coalesce(nullif(pt."RecordedDepartureTime", '0'),
                                    pt."ExpectedDepartureTime")::interval
                           - pt."TargetDepartureTime"::interval))::int,
                       'stopId', coalesce(s1."stopId", s2."stopId", s3."stopId")::text,
                       'destination', pt."DestinationName50",
                       'tripStopStatus', pt."TripStopStatus",
                       'stopOrder', pt."UserStopOrderNumber"
                   ) ORDER BY pt."UserStopOrderNumber"
               ) AS stops
        FROM "PassTimes".passtimes pt
        JOIN "StaticData-NL".quay_index qi
            ON qi.dataownercode = pt."DataOwnerCode"
           AND qi.userstopcode = pt."UserStopCode"
        LEFT JOIN "StaticData-NL".stops s1
            ON (CASE WHEN length(s1."stopCode"::text) < 8
                     THEN lpad(s1."stopCode"::text, 5, '0')
                     ELSE s1."stopCode"::text END) = qi.userstopcode
        LEFT JOIN "StaticData-NL".stops s2
            ON 'NL:Q:' || (CASE WHEN length(s2."stopCode"::text) < 8
                                THEN lpad(s2."stopCode"::text, 5, '0')
                                ELSE s2."stopCode"::text END) = qi.quaycode
        LEFT JOIN "StaticData-NL".stops s3 ON s3."stopCode" = qi.userstopcode
        WHERE pt."OperationDate" = :operating_date
          AND pt."VejoDepartureTime" > (current_timestamp - interval '1 hour')::time::text
          AND pt."TripStopStatus" IN ('DRIVING', 'CANCEL', 'ARRIVED', 'UNKNOWN', 'PASSED')
        GROUP BY pt."JourneyNumber", pt."LinePlanningNumber", pt."DataOwnerCode", pt."OperationDate"
    ) AS current_trips
    LEFT JOIN trips
        ON trips."journeyNumber" = current_trips."JourneyNumber"
       AND trips."planningNumber" = current_trips."LinePlanningNumber"
       AND trips.agency = current_trips."DataOwnerCode"
    """
)


class RailRepository:
    """Rail realtime source (InfoPlus journeys and station visits)."""

    def __init__(
        self,
        agency: str = "IFF",
        session_context: SessionContext = get_session_context,
    ) -> None:
        self._agency = agency
        self._session_context = session_context

    async def fetch_rail_updates(
        self, first_operating_date: date, last_operating_date: date, horizon: datetime
    ) -> list[dict[str, Any]]:
        """Trips operating between the two dates that still run after ``horizon``."""
        params = {
            "agency": self._agency,
            "zone_prefix": f"{self._agency}:%",
            "zone_code": f"{self._agency}:",
            "first_date": first_operating_date,
            "last_date": last_operating_date,
            "horizon": horizon,
        }
        async with self._session_context() as session:
            result = await session.execute(_RAIL_UPDATES_SQL, params)
            rows = [dict(row) for row in result.mappings().all()]

        logger.info(
            "Rail updates fetched",
            first_operating_date=first_operating_date.isoformat(),
            last_operating_date=last_operating_date.isoformat(),
            trip_count=len(rows),
        )
        return rows

    async def fetch_trip_numbers_absent_from_rail_source(
        self, trip_numbers: Sequence[int], operating_date: date
    ) -> list[str]:
        """Trip ids planned on ``operating_date`` whose train has no rail record that day."""
        if not trip_numbers:
            return []

        async with self._session_context() as session:
            result = await session.execute(
                _ABSENT_FROM_RAIL_SQL,
                {
                    "trip_numbers": list(trip_numbers),
                    "agency": self._agency,
                    "operating_date": operating_date,
                },
            )
            return [str(row.trip_id) for row in result.all()]


class PlannedDataRepository:
    """Planned (static GTFS) data."""

    def __init__(
        self,
        agency: str = "IFF",
        min_train_number: int = 900_000,
        session_context: SessionContext = get_session_context,
    ) -> None:
        self._agency = agency
        self._min_train_number = min_train_number
        self._session_context = session_context

    async def fetch_planned_replacement_service_trip_numbers(
        self, operating_date: date
    ) -> list[int]:
        async with self._session_context() as session:
            result = await session.execute(
                _PLANNED_REPLACEMENT_SQL,
                {
                    "agency": self._agency,
                    "min_train_number": self._min_train_number,
                    "operating_date": operating_date,
                },
            )
            return [int(row.journey_number) for row in result.all()]


class BusTramRepository:
    """Bus/tram realtime source (passing times)."""

    def __init__(
        self,
        rail_agency: str = "IFF",
        timezone: str = "Europe/Amsterdam",
        session_context: SessionContext = get_session_context,
    ) -> None:
        self._rail_agency = rail_agency
        self._timezone = timezone
        self._session_context = session_context

    async def fetch_bus_tram_updates(self, operating_date: date) -> list[dict[str, Any]]:
        params = {
            "rail_agency": self._rail_agency,
            "operating_date": operating_date,
            "timezone": self._timezone,
        }
        async with self._session_context() as session:
            result = await session.execute(_BUS_TRAM_UPDATES_SQL, params)
            rows = [dict(row) for row in result.mappings().all()]

        logger.info(
            "Bus/tram updates fetched",
            operating_date=operating_date.isoformat(),
            trip_count=len(rows),
        )
        return rows
