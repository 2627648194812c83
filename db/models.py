"""Beanie ODM document models for MongoDB collections.

This module defines the document models used by road matching:
- ``Trip`` holds the trip projection the matcher reads and the matching
  fields it owns.
- ``TripGpsPoint`` holds the recorded GPS samples of a trip, one document
  per fix, ordered by ``sequence_order``.

Usage:
    from db.models import Trip

    trip = await Trip.find_one(Trip.trip_id == "abc123")
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import Field, field_validator
from pymongo import ASCENDING, IndexModel

from core.date_utils import parse_timestamp
from trips.state import MatchStatus, TransportMode


class Trip(Document):
    """Trip document with its road-matching fields."""

    trip_id: Indexed(str, unique=True)
    haversine_distance_km: float = Field(default=0.0, ge=0)
    transport_mode: TransportMode = TransportMode.DRIVING

    # Road matching
    match_status: MatchStatus = MatchStatus.PENDING
    match_attempts: int = Field(default=0, ge=0)
    match_confidence: float | None = Field(default=None, ge=0, le=1)
    road_distance_km: float | None = Field(default=None, ge=0)
    route_geometry: dict[str, Any] | None = None
    match_error: str | None = None
    matched_at: datetime | None = None
    match_started_at: datetime | None = None
    match_lease_id: str | None = None

    @field_validator("matched_at", "match_started_at", mode="before")
    @classmethod
    def parse_datetime_fields(cls, v: Any) -> datetime | None:
        if v is None:
            return None
        return parse_timestamp(v)

    @field_validator("transport_mode", mode="before")
    @classmethod
    def normalize_transport_mode(cls, v: Any) -> Any:
        if v is None:
            return TransportMode.UNKNOWN
        if isinstance(v, str):
            value = v.strip().lower()
            if value in {mode.value for mode in TransportMode}:
                return value
            return TransportMode.UNKNOWN
        return v

    class Settings:
        name = "trips"
        indexes = [
            IndexModel([("match_status", ASCENDING)], name="trips_match_status_idx"),
        ]


class TripGpsPoint(Document):
    """A single recorded GPS fix belonging to a trip."""

    trip_id: str
    sequence_order: int
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float | None = None
    captured_at: datetime

    @field_validator("captured_at", mode="before")
    @classmethod
    def parse_captured_at(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    class Settings:
        name = "trip_gps_points"
        indexes = [
            IndexModel(
                [("trip_id", ASCENDING), ("sequence_order", ASCENDING)],
                name="trip_gps_points_trip_sequence_idx",
            ),
        ]


ALL_DOCUMENT_MODELS = [Trip, TripGpsPoint]
