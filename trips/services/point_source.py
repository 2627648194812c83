"""GPS point source backed by the trip_gps_points collection."""

from __future__ import annotations

import logging
from typing import Protocol

from core.retry import retry_async
from db.models import TripGpsPoint
from trips.models import GpsPoint

logger = logging.getLogger(__name__)


class PointSource(Protocol):
    async def fetch_points(self, trip_id: str) -> list[GpsPoint]: ...


class TripPointSource:
    """Reads a trip's recorded fixes in recording order."""

    @retry_async()
    async def fetch_points(self, trip_id: str) -> list[GpsPoint]:
        rows = (
            await TripGpsPoint.find(TripGpsPoint.trip_id == trip_id)
            .sort(+TripGpsPoint.sequence_order)
            .to_list()
        )
        logger.debug("Fetched %d GPS points for trip %s", len(rows), trip_id)
        return [
            GpsPoint(
                latitude=row.latitude,
                longitude=row.longitude,
                timestamp=row.captured_at,
                accuracy=row.accuracy,
            )
            for row in rows
        ]
