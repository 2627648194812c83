"""Single-trip road matching orchestration.

One call to :meth:`TripRouteMatcher.attempt_match` performs at most one
engine request for one trip. The trip is re-read from storage on every call;
the matcher keeps no trip state between calls.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING

from config import (
    MAX_MATCH_ATTEMPTS,
    MIN_MATCH_POINTS,
    POINT_FETCH_TIMEOUT_SECONDS,
    get_osrm_base_url,
)
from core.exceptions import (
    EngineUnavailableError,
    InsufficientPointsError,
    MatchInProgressError,
    MatchPersistenceError,
    MaxAttemptsReachedError,
    TripNotFoundError,
)
from core.http.osrm import OsrmClient
from trips.models import MatchOutcome, MatchResponse, TripMatchState
from trips.services.match_store import TripMatchStore
from trips.services.point_source import PointSource, TripPointSource
from trips.services.road_matcher import OsrmRoadMatcher, RoadMatcher
from trips.state import MatchStatus, TransportMode, can_start_attempt

if TYPE_CHECKING:
    from collections.abc import Callable

    from trips.models import GpsPoint

logger = logging.getLogger(__name__)

WALKING_SKIP_REASON = "Walking trips do not require road matching"
ALREADY_MATCHED_REASON = "Trip already matched"
ALREADY_SKIPPED_REASON = "Trip matching was skipped"


def distance_change_pct(
    road_distance_km: float | None,
    haversine_distance_km: float | None,
) -> float | None:
    """Signed percentage change from haversine to road distance.

    Rounded to one decimal with halves going up, so 6.25 reports as 6.3.
    """
    if road_distance_km is None or not haversine_distance_km or haversine_distance_km <= 0:
        return None
    pct = (road_distance_km - haversine_distance_km) / haversine_distance_km * 100
    return math.floor(pct * 10 + 0.5) / 10


def _default_matcher_factory(base_url: str) -> RoadMatcher:
    return OsrmRoadMatcher(OsrmClient(base_url))


class TripRouteMatcher:
    """Drives one matching attempt for a trip through the state machine."""

    def __init__(
        self,
        store: TripMatchStore | None = None,
        point_source: PointSource | None = None,
        matcher: RoadMatcher | None = None,
        *,
        matcher_factory: Callable[[str], RoadMatcher] = _default_matcher_factory,
        point_fetch_timeout: float = POINT_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store or TripMatchStore()
        self.point_source = point_source or TripPointSource()
        self._matcher = matcher
        self._matcher_factory = matcher_factory
        self._point_fetch_timeout = point_fetch_timeout

    def _resolve_matcher(self) -> RoadMatcher:
        if self._matcher is not None:
            return self._matcher
        base_url = get_osrm_base_url()
        if not base_url:
            msg = "OSRM_BASE_URL not configured"
            raise EngineUnavailableError(msg)
        return self._matcher_factory(base_url)

    async def attempt_match(self, trip_id: str) -> MatchResponse:
        matcher = self._resolve_matcher()

        trip = await self.store.read_trip_match_state(trip_id)
        if trip is None:
            msg = "Trip not found"
            raise TripNotFoundError(msg, {"trip_id": trip_id})

        if trip.transport_mode == TransportMode.WALKING:
            logger.info("Trip %s is a walking trip, skipping road matching", trip_id)
            return MatchResponse(
                success=True,
                trip_id=trip_id,
                match_status=MatchStatus.SKIPPED,
                haversine_distance_km=trip.haversine_distance_km,
                reason=WALKING_SKIP_REASON,
            )

        if trip.match_attempts >= MAX_MATCH_ATTEMPTS:
            msg = "Maximum matching attempts reached"
            raise MaxAttemptsReachedError(
                msg,
                {"trip_id": trip_id, "match_attempts": trip.match_attempts},
            )

        if trip.match_status == MatchStatus.MATCHED:
            return self._build_response(trip, reason=ALREADY_MATCHED_REASON)
        if trip.match_status == MatchStatus.SKIPPED:
            return self._build_response(trip, reason=ALREADY_SKIPPED_REASON)

        if not can_start_attempt(
            trip.match_status,
            trip.match_attempts,
            started_at=trip.match_started_at,
        ):
            msg = "A matching attempt for this trip is already in progress"
            raise MatchInProgressError(msg, {"trip_id": trip_id})

        lease_id = await self.store.set_status(
            trip_id,
            MatchStatus.PROCESSING,
            trip.match_status,
            expected_attempts=trip.match_attempts,
            expected_lease_id=trip.match_lease_id,
        )
        if lease_id is None:
            msg = "A matching attempt for this trip is already in progress"
            raise MatchInProgressError(msg, {"trip_id": trip_id})

        points, fetch_error = await self._fetch_points(trip_id)
        if fetch_error is not None:
            outcome = MatchOutcome.failure(fetch_error)
        elif len(points) < MIN_MATCH_POINTS:
            outcome = MatchOutcome.failure(
                f"Insufficient GPS points: {len(points)} (minimum {MIN_MATCH_POINTS})",
            )
            await self._commit(trip, outcome, lease_id)
            raise InsufficientPointsError(
                outcome.match_error or "Insufficient GPS points",
                {"trip_id": trip_id, "points": len(points)},
            )
        else:
            outcome = await self._run_matcher(matcher, trip, points)

        await self._commit(trip, outcome, lease_id)

        if outcome.engine_unavailable:
            raise EngineUnavailableError(
                outcome.match_error or "OSRM unavailable",
                {"trip_id": trip_id},
            )

        logger.info(
            "Trip %s match finished: %s (%d geometry points)",
            trip_id,
            outcome.match_status.value,
            outcome.geometry_points,
        )
        return MatchResponse(
            success=outcome.success,
            trip_id=trip_id,
            match_status=outcome.match_status,
            road_distance_km=outcome.road_distance_km,
            match_confidence=outcome.match_confidence,
            geometry_points=outcome.geometry_points,
            haversine_distance_km=trip.haversine_distance_km,
            distance_change_pct=distance_change_pct(
                outcome.road_distance_km,
                trip.haversine_distance_km,
            ),
        )

    async def _fetch_points(self, trip_id: str) -> tuple[list[GpsPoint], str | None]:
        """Load the trace; a timeout or read failure becomes a match error."""
        try:
            async with asyncio.timeout(self._point_fetch_timeout):
                points = await self.point_source.fetch_points(trip_id)
        except TimeoutError:
            logger.warning("GPS point fetch timed out for trip %s", trip_id)
            return [], (
                f"GPS point fetch timed out after {self._point_fetch_timeout:g}s"
            )
        except Exception as exc:
            logger.exception("GPS point fetch failed for trip %s", trip_id)
            return [], f"Failed to fetch GPS points: {exc}"
        return list(points), None

    @staticmethod
    async def _run_matcher(
        matcher: RoadMatcher,
        trip: TripMatchState,
        points: list[GpsPoint],
    ) -> MatchOutcome:
        """Invoke the matcher; an unexpected error becomes a failed outcome."""
        try:
            return await matcher.match(points, trip.haversine_distance_km)
        except Exception as exc:
            logger.exception("Road matcher raised for trip %s", trip.trip_id)
            return MatchOutcome.failure(f"Road matching failed: {exc}")

    async def _commit(
        self,
        trip: TripMatchState,
        outcome: MatchOutcome,
        lease_id: str,
    ) -> None:
        try:
            stored = await self.store.commit_outcome(
                trip.trip_id,
                outcome,
                trip.match_attempts,
                lease_id=lease_id,
            )
        except Exception as exc:
            msg = f"Failed to store match result: {exc}"
            raise MatchPersistenceError(msg, {"trip_id": trip.trip_id}) from exc
        if not stored:
            msg = "Failed to store match result: trip state changed concurrently"
            raise MatchPersistenceError(msg, {"trip_id": trip.trip_id})

    @staticmethod
    def _build_response(
        trip: TripMatchState,
        *,
        reason: str | None = None,
    ) -> MatchResponse:
        geometry = trip.route_geometry or {}
        return MatchResponse(
            success=trip.match_status in (MatchStatus.MATCHED, MatchStatus.SKIPPED),
            trip_id=trip.trip_id,
            match_status=trip.match_status,
            road_distance_km=trip.road_distance_km,
            match_confidence=trip.match_confidence,
            geometry_points=len(geometry.get("coordinates") or []),
            haversine_distance_km=trip.haversine_distance_km,
            distance_change_pct=distance_change_pct(
                trip.road_distance_km,
                trip.haversine_distance_km,
            ),
            reason=reason,
        )
