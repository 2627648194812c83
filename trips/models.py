"""Pydantic models for road matching API and service operations."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from trips.state import MatchStatus, TransportMode


class GpsPoint(BaseModel):
    """A recorded GPS fix, immutable once fetched."""

    latitude: float
    longitude: float
    timestamp: datetime
    accuracy: float | None = None

    model_config = ConfigDict(frozen=True)


class TripMatchState(BaseModel):
    """Projection of the trip fields road matching reads before acting."""

    trip_id: str
    haversine_distance_km: float = 0.0
    transport_mode: TransportMode = TransportMode.DRIVING
    match_status: MatchStatus = MatchStatus.PENDING
    match_attempts: int = 0
    match_confidence: float | None = None
    road_distance_km: float | None = None
    route_geometry: dict[str, Any] | None = None
    match_error: str | None = None
    matched_at: datetime | None = None
    match_started_at: datetime | None = None
    match_lease_id: str | None = None

    model_config = ConfigDict(extra="ignore")


class MatchOutcome(BaseModel):
    """Normalized result of one road matching call."""

    success: bool
    match_status: MatchStatus
    route_geometry: dict[str, Any] | None = None
    road_distance_km: float | None = None
    match_confidence: float | None = Field(default=None, ge=0, le=1)
    match_error: str | None = None
    geometry_points: int = 0
    engine_unavailable: bool = False

    @model_validator(mode="after")
    def check_exclusive_fields(self) -> MatchOutcome:
        matched_fields = (
            self.route_geometry,
            self.road_distance_km,
            self.match_confidence,
        )
        if self.match_status not in (MatchStatus.MATCHED, MatchStatus.FAILED):
            msg = f"outcome status must be matched or failed, got {self.match_status}"
            raise ValueError(msg)
        if self.match_status == MatchStatus.MATCHED:
            if any(value is None for value in matched_fields) or self.match_error:
                msg = "matched outcome requires geometry, distance and confidence only"
                raise ValueError(msg)
        elif any(value is not None for value in matched_fields) or not self.match_error:
            msg = "failed outcome requires an error and no match fields"
            raise ValueError(msg)
        return self

    @classmethod
    def failure(cls, error: str, *, engine_unavailable: bool = False) -> MatchOutcome:
        return cls(
            success=False,
            match_status=MatchStatus.FAILED,
            match_error=error,
            geometry_points=0,
            engine_unavailable=engine_unavailable,
        )


class MatchTripRequest(BaseModel):
    trip_id: str | None = None


class MatchResponse(BaseModel):
    """Summary returned to the caller of a matching attempt."""

    success: bool
    trip_id: str
    match_status: MatchStatus
    road_distance_km: float | None = None
    match_confidence: float | None = None
    geometry_points: int = 0
    haversine_distance_km: float | None = None
    distance_change_pct: float | None = None
    reason: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON body for the API; optional fields only appear when set."""
        return self.model_dump(mode="json", exclude_none=True)
