"""Road matching of recorded GPS traces through OSRM."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from config import (
    MATCH_LOW_CONFIDENCE_MATCHED_RATIO,
    MATCH_MAX_DISTANCE_RATIO,
    MATCH_MIN_CONFIDENCE,
    MATCH_MIN_MATCHED_RATIO,
    OSRM_DEFAULT_RADIUS_M,
    OSRM_MAX_RADIUS_M,
    OSRM_MAX_TRACE_POINTS,
    OSRM_MIN_RADIUS_M,
)
from core.constants import METERS_PER_KM
from core.date_utils import to_unix_seconds
from core.exceptions import ExternalServiceException
from trips.models import GpsPoint, MatchOutcome
from trips.state import MatchStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.http.osrm import OsrmClient

logger = logging.getLogger(__name__)


class RoadMatcher(Protocol):
    async def match(
        self,
        points: Sequence[GpsPoint],
        reference_distance_km: float,
    ) -> MatchOutcome: ...


def simplify_trace(points: Sequence[GpsPoint], max_points: int) -> list[GpsPoint]:
    """Evenly thin a trace to ``max_points``, keeping the first and last fix."""
    if len(points) <= max_points or max_points < 2:
        return list(points)
    if max_points == 2:
        return [points[0], points[-1]]

    step = (len(points) - 1) / (max_points - 1)
    return [points[round(i * step)] for i in range(max_points)]


def point_radius(accuracy: float | None) -> float:
    if accuracy is None:
        return OSRM_DEFAULT_RADIUS_M
    return max(OSRM_MIN_RADIUS_M, min(OSRM_MAX_RADIUS_M, float(accuracy)))


class OsrmRoadMatcher:
    """
    Snaps a trip trace onto the road network with a single OSRM call.

    The matcher never raises for engine problems. Transport failures,
    timeouts and engine 5xx responses produce a failed outcome flagged
    ``engine_unavailable``; engine rejections and quality-gate failures
    produce a plain failed outcome.
    """

    def __init__(
        self,
        client: OsrmClient,
        *,
        max_trace_points: int = OSRM_MAX_TRACE_POINTS,
    ) -> None:
        self._client = client
        self._max_trace_points = max_trace_points

    async def match(
        self,
        points: Sequence[GpsPoint],
        reference_distance_km: float,
    ) -> MatchOutcome:
        trace = simplify_trace(points, self._max_trace_points)
        if len(trace) < 2:
            return MatchOutcome.failure(
                f"At least two GPS points are required, got {len(trace)}",
            )

        coordinates = [[p.longitude, p.latitude] for p in trace]
        timestamps = [to_unix_seconds(p.timestamp) for p in trace]
        radiuses = [point_radius(p.accuracy) for p in trace]

        try:
            result = await self._client.match(
                coordinates,
                timestamps=timestamps,
                radiuses=radiuses,
            )
        except ExternalServiceException as exc:
            unavailable = bool(exc.details.get("unavailable"))
            logger.warning(
                "OSRM match failed (%s): %s",
                "unavailable" if unavailable else "rejected",
                exc.message,
            )
            return MatchOutcome.failure(exc.message, engine_unavailable=unavailable)

        return self._build_outcome(result, len(trace), reference_distance_km)

    @staticmethod
    def _build_outcome(
        result: dict[str, Any],
        trace_size: int,
        reference_distance_km: float,
    ) -> MatchOutcome:
        code = result.get("code")
        if code != "Ok" or not result.get("matchings"):
            return MatchOutcome.failure(f"OSRM error: {code or 'no matchings'}")

        coords = result.get("coordinates") or []
        if len(coords) < 2:
            return MatchOutcome.failure("OSRM returned an empty route geometry")

        confidence = derive_confidence(result.get("confidences") or [])
        road_distance_km = float(result.get("distance_m") or 0.0) / METERS_PER_KM
        matched_ratio = (
            result.get("matched_points", 0) / trace_size if trace_size else 0.0
        )

        if matched_ratio < MATCH_MIN_MATCHED_RATIO:
            return MatchOutcome.failure(
                f"Only {round(matched_ratio * 100)}% of GPS points matched to roads",
            )

        # OSRM confidence drops with the number of plausible alternatives, so
        # a low score alone does not reject a well covered trace
        if (
            confidence < MATCH_MIN_CONFIDENCE
            and matched_ratio < MATCH_LOW_CONFIDENCE_MATCHED_RATIO
        ):
            return MatchOutcome.failure(
                f"Match confidence too low: {confidence:.2f} with only "
                f"{round(matched_ratio * 100)}% points matched",
            )

        if (
            reference_distance_km > 0
            and road_distance_km > MATCH_MAX_DISTANCE_RATIO * reference_distance_km
        ):
            return MatchOutcome.failure(
                f"Road distance {road_distance_km:.1f}km exceeds "
                f"{MATCH_MAX_DISTANCE_RATIO:g}x haversine {reference_distance_km:.1f}km",
            )

        return MatchOutcome(
            success=True,
            match_status=MatchStatus.MATCHED,
            route_geometry={"type": "LineString", "coordinates": coords},
            road_distance_km=round(road_distance_km, 3),
            match_confidence=confidence,
            geometry_points=len(coords),
        )


def derive_confidence(confidences: Sequence[float]) -> float:
    """
    Collapse per-matching OSRM confidences into one score.

    Mean of the engine values clamped to [0, 1] and rounded to two decimals,
    so a higher engine certainty never yields a lower score.
    """
    if not confidences:
        return 0.0
    mean = sum(confidences) / len(confidences)
    return round(max(0.0, min(1.0, mean)), 2)
