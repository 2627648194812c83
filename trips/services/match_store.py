"""Conditional reads and writes of a trip's road-matching fields.

Every write is a single ``update_one`` whose filter pins the state the caller
last observed. A write that matches nothing means another attempt changed the
trip first; callers get ``False`` back and decide how to report it. The
attempt counter only ever moves through ``$inc``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from core.date_utils import get_current_utc_time
from db.models import Trip
from trips.models import MatchOutcome, TripMatchState
from trips.state import MatchStatus

logger = logging.getLogger(__name__)

MATCHED_FIELDS = ("route_geometry", "road_distance_km", "match_confidence")


class TripMatchStore:
    async def read_trip_match_state(self, trip_id: str) -> TripMatchState | None:
        trip = await Trip.find_one(Trip.trip_id == trip_id)
        if trip is None:
            return None
        return TripMatchState.model_validate(trip.model_dump())

    async def set_status(
        self,
        trip_id: str,
        status: MatchStatus,
        expected_prior_status: MatchStatus | None = None,
        *,
        expected_attempts: int | None = None,
        expected_lease_id: str | None = None,
    ) -> str | None:
        """
        Move a trip to ``status`` if it is still in the observed state.

        Entering ``processing`` stamps ``match_started_at`` and a fresh lease
        id, which is returned so the outcome commit can be tied to this
        attempt. Other statuses return an empty string on success.

        Returns:
            The lease id (or ``""``) on success, None on conflict.
        """
        query: dict[str, Any] = {"trip_id": trip_id}
        if expected_prior_status is not None:
            query["match_status"] = expected_prior_status.value
        if expected_attempts is not None:
            query["match_attempts"] = expected_attempts
        if expected_prior_status == MatchStatus.PROCESSING:
            query["match_lease_id"] = expected_lease_id

        lease_id = ""
        updates: dict[str, Any] = {"match_status": status.value}
        if status == MatchStatus.PROCESSING:
            lease_id = uuid.uuid4().hex
            updates["match_started_at"] = get_current_utc_time()
            updates["match_lease_id"] = lease_id

        result = await Trip.get_motor_collection().update_one(
            query,
            {"$set": updates},
        )
        if not result.matched_count:
            logger.warning(
                "Status change to %s for trip %s lost a race (expected %s)",
                status.value,
                trip_id,
                expected_prior_status.value if expected_prior_status else "any",
            )
            return None

        logger.info("Trip %s moved to %s", trip_id, status.value)
        return lease_id

    async def commit_outcome(
        self,
        trip_id: str,
        outcome: MatchOutcome,
        expected_attempts: int | None = None,
        *,
        lease_id: str | None = None,
    ) -> bool:
        """
        Store a terminal outcome and count the attempt.

        Only a trip still ``processing`` under ``lease_id`` is updated. The
        fields of the other outcome kind are removed so a trip never carries
        both a route and an error.
        """
        query: dict[str, Any] = {
            "trip_id": trip_id,
            "match_status": MatchStatus.PROCESSING.value,
        }
        if expected_attempts is not None:
            query["match_attempts"] = expected_attempts
        if lease_id is not None:
            query["match_lease_id"] = lease_id

        to_set: dict[str, Any] = {
            "match_status": outcome.match_status.value,
            "matched_at": get_current_utc_time(),
        }
        to_unset: dict[str, str] = {"match_lease_id": ""}
        if outcome.match_status == MatchStatus.MATCHED:
            to_set.update(
                {
                    "route_geometry": outcome.route_geometry,
                    "road_distance_km": outcome.road_distance_km,
                    "match_confidence": outcome.match_confidence,
                },
            )
            to_unset["match_error"] = ""
        else:
            to_set["match_error"] = outcome.match_error
            to_unset.update(dict.fromkeys(MATCHED_FIELDS, ""))

        result = await Trip.get_motor_collection().update_one(
            query,
            {"$set": to_set, "$unset": to_unset, "$inc": {"match_attempts": 1}},
        )
        if not result.matched_count:
            logger.warning(
                "Outcome commit for trip %s lost a race (expected attempts %s)",
                trip_id,
                expected_attempts,
            )
            return False

        logger.info(
            "Stored %s outcome for trip %s",
            outcome.match_status.value,
            trip_id,
        )
        return True
