"""
OSRM HTTP client utilities.

Wraps the OSRM ``match`` service used to snap recorded GPS traces onto the
road network. The client performs exactly one request per call; retrying is
the caller's concern.
"""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from config import OSRM_PROFILE, OSRM_TIMEOUT_SECONDS
from core.exceptions import ExternalServiceException
from core.http.request import request_json
from core.http.session import get_session

logger = logging.getLogger(__name__)

# OSRM answers NoMatch / InvalidInput with a JSON body and HTTP 400
MATCH_RESPONSE_STATUSES = (200, 400)


class OsrmClient:
    def __init__(
        self,
        base_url: str,
        *,
        profile: str = OSRM_PROFILE,
        timeout: float = OSRM_TIMEOUT_SECONDS,
        session: Any | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._profile = profile
        self._timeout = timeout
        self._session = session

    @property
    def base_url(self) -> str:
        return self._base_url

    def match_url(self, coordinates: list[list[float]]) -> str:
        path = ";".join(f"{lon},{lat}" for lon, lat in coordinates)
        return f"{self._base_url}/match/v1/{self._profile}/{path}"

    async def match(
        self,
        coordinates: list[list[float]],
        *,
        timestamps: list[int] | None = None,
        radiuses: list[float] | None = None,
    ) -> dict[str, Any]:
        """Call the OSRM match service and return a normalized result.

        Args:
            coordinates: Ordered [lon, lat] pairs.
            timestamps: Optional unix seconds, one per coordinate.
            radiuses: Optional search radius in meters, one per coordinate.

        Returns:
            Dictionary with ``code``, ``message``, ``coordinates``,
            ``distance_m``, ``confidences``, ``matched_points`` and ``raw``.

        Raises:
            ExternalServiceException: On transport failure, timeout,
                unexpected HTTP status or a malformed body. ``details``
                carries ``unavailable=True`` for transport-level problems.
        """
        if len(coordinates) < 2:
            msg = "OSRM match requires at least two coordinates."
            raise ExternalServiceException(msg)

        params: dict[str, str] = {
            "geometries": "geojson",
            "overview": "full",
            "gaps": "split",
        }
        if timestamps and len(timestamps) == len(coordinates):
            params["timestamps"] = ";".join(str(int(ts)) for ts in timestamps)
        if radiuses and len(radiuses) == len(coordinates):
            params["radiuses"] = ";".join(_format_number(r) for r in radiuses)

        url = self.match_url(coordinates)
        session = self._session or await get_session()
        try:
            data = await request_json(
                "GET",
                url,
                session=session,
                params=params,
                expected_status=MATCH_RESPONSE_STATUSES,
                service_name="OSRM",
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
        except ExternalServiceException as exc:
            status = exc.details.get("status")
            if isinstance(status, int) and status >= 500:
                exc.details["unavailable"] = True
            raise
        except TimeoutError as exc:
            msg = f"OSRM request timed out after {self._timeout:g}s"
            raise ExternalServiceException(
                msg,
                {"url": self._base_url, "unavailable": True},
            ) from exc
        except aiohttp.ClientError as exc:
            msg = f"OSRM request failed: {exc}"
            raise ExternalServiceException(
                msg,
                {"url": self._base_url, "unavailable": True},
            ) from exc

        if not isinstance(data, dict):
            msg = "OSRM returned a malformed response"
            raise ExternalServiceException(msg, {"url": self._base_url})
        return self._normalize_match_response(data)

    @staticmethod
    def _normalize_match_response(data: dict[str, Any]) -> dict[str, Any]:
        code = data.get("code")
        matchings = data.get("matchings")
        if not isinstance(matchings, list):
            matchings = []

        coords: list[list[float]] = []
        distance_m = 0.0
        confidences: list[float] = []
        for matching in matchings:
            if not isinstance(matching, dict):
                continue
            segment = OsrmClient._coerce_shape_coordinates(matching.get("geometry"))
            if coords and segment and coords[-1] == segment[0]:
                segment = segment[1:]
            coords.extend(segment)
            try:
                distance_m += float(matching.get("distance") or 0.0)
            except (TypeError, ValueError):
                pass
            confidence = matching.get("confidence")
            if isinstance(confidence, int | float):
                confidences.append(float(confidence))

        tracepoints = data.get("tracepoints")
        matched_points = (
            sum(1 for tp in tracepoints if tp is not None)
            if isinstance(tracepoints, list)
            else 0
        )

        return {
            "code": code,
            "message": data.get("message"),
            "matchings": len(matchings),
            "coordinates": coords,
            "distance_m": distance_m,
            "confidences": confidences,
            "matched_points": matched_points,
            "raw": data,
        }

    @staticmethod
    def _coerce_shape_coordinates(shape: Any) -> list[list[float]]:
        if isinstance(shape, dict):
            coords = shape.get("coordinates")
        elif isinstance(shape, list):
            coords = shape
        else:
            return []

        if not isinstance(coords, list):
            return []

        normalized: list[list[float]] = []
        for point in coords:
            if not isinstance(point, list | tuple) or len(point) < 2:
                continue
            try:
                normalized.append([float(point[0]), float(point[1])])
            except (TypeError, ValueError):
                continue
        return normalized


def _format_number(value: float) -> str:
    return f"{value:g}"


__all__ = ["OsrmClient"]
