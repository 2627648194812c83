"""API routes for single-trip road matching."""

import logging

from fastapi import APIRouter

from core.api import api_route
from core.exceptions import ValidationError
from trips.models import MatchTripRequest
from trips.services.route_matching import TripRouteMatcher

logger = logging.getLogger(__name__)
router = APIRouter()

service = TripRouteMatcher()


@router.post("/api/trips/match-route", response_model=dict[str, object])
@api_route(logger)
async def match_trip_route(request: MatchTripRequest):
    """Run one road matching attempt for a trip."""
    trip_id = (request.trip_id or "").strip()
    if not trip_id:
        msg = "trip_id is required"
        raise ValidationError(msg)

    response = await service.attempt_match(trip_id)
    return response.to_payload()


@router.get("/api/health", response_model=dict[str, str])
async def health_check():
    return {"status": "ok"}
